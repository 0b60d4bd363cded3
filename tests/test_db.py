import logging

import pytest

from sievelab import config, db
from sievelab.services.gradation import analyze
from sievelab.services.snapshot import default_snapshot, with_value


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    path = tmp_path / "data" / "sievelab.db"
    monkeypatch.setattr(db, "DB_PATH", path)
    db.init_db()
    return path


def _filled_snapshot():
    snap = default_snapshot(case_count=2)
    for row, value in enumerate(["100", "98", "95", "90", "80", "65", "40", "30", "15", "4"]):
        snap = with_value(snap, row, "Case 1", value)
    return snap


def test_init_db_is_repeatable(temp_db):
    db.init_db()
    assert temp_db.exists()


def test_app_settings_round_trip():
    assert db.get_app_setting("backup_dir", "none") == "none"
    db.set_app_setting("backup_dir", "/tmp/a")
    db.set_app_setting("backup_dir", "/tmp/b")
    assert db.get_app_setting("backup_dir") == "/tmp/b"


def test_save_and_load_run():
    snap = _filled_snapshot()
    report = analyze(snap)
    db.save_run("  Borrow pit A  ", snap, report)
    assert db.load_run("Borrow pit A") == snap
    stored = db.load_run_results("Borrow pit A")
    assert stored["calculable"] is True
    assert stored["results"][1]["D10"] == "Insufficient Data"
    assert isinstance(stored["results"][0]["D10"], float)
    assert [r["name"] for r in db.list_runs()] == ["Borrow pit A"]


def test_save_run_overwrites_by_name():
    snap = _filled_snapshot()
    db.save_run("A", snap)
    newer = with_value(snap, 0, "Case 2", "100")
    db.save_run("A", newer)
    assert db.load_run("A") == newer
    assert len(db.list_runs()) == 1


def test_save_run_requires_name():
    with pytest.raises(ValueError):
        db.save_run("  ", default_snapshot())


def test_missing_and_deleted_runs():
    assert db.load_run("nope") is None
    assert db.load_run_results("nope") is None
    db.save_run("tmp", default_snapshot())
    assert db.delete_run("tmp") is True
    assert db.delete_run("tmp") is False


def test_backup_database(tmp_path):
    out = db.backup_database(tmp_path / "backups")
    assert out.exists()
    assert out.name.startswith("sievelab_backup_")


def test_settings_defaults():
    s = config.load_settings()
    assert s == config.DEFAULT_SETTINGS


def test_settings_round_trip():
    config.save_settings(
        {
            "size_decimals": "4",
            "ratio_decimals": 1,
            "show_cc": "no",
            "validation_gate": "CASE",
            "case_count": "3",
            "sieve_sizes": "[19, 4.75, 0.075]",
        }
    )
    s = config.load_settings()
    assert s["size_decimals"] == 4
    assert s["ratio_decimals"] == 1
    assert s["show_cc"] is False
    assert s["validation_gate"] == "case"
    assert s["case_count"] == 3
    assert s["sieve_sizes"] == [19.0, 4.75, 0.075]


@pytest.mark.parametrize(
    "key, value",
    [
        ("size_decimals", "-1"),
        ("validation_gate", "loose"),
        ("sieve_sizes", "[1, 0]"),
        ("sieve_sizes", "[1, NaN]"),
        ("sieve_sizes", "[Infinity]"),
        ("show_cc", "maybe"),
        ("case_count", "x"),
    ],
)
def test_save_settings_rejects_bad_values(key, value):
    with pytest.raises(ValueError):
        config.save_settings({key: value})


def test_save_settings_rejects_unknown_key():
    with pytest.raises(KeyError):
        config.save_settings({"colour": "blue"})


def test_bad_stored_setting_falls_back_with_warning(caplog):
    db.set_app_setting("ratio_decimals", "lots")
    with caplog.at_level(logging.WARNING, logger="sievelab.config"):
        s = config.load_settings()
    assert s["ratio_decimals"] == config.DEFAULT_SETTINGS["ratio_decimals"]
    assert "ratio_decimals" in caplog.text
