import json
import logging
import os
import sqlite3
import sys
from datetime import datetime
from pathlib import Path

from sievelab.services.snapshot import from_dict, to_dict

logger = logging.getLogger(__name__)


def _resolve_db_path():
    override = os.getenv("SIEVELAB_DB_PATH")
    if override:
        return Path(override).expanduser()
    # In a frozen executable, keep DB in a persistent user location.
    if getattr(sys, "frozen", False):
        root = Path(os.getenv("LOCALAPPDATA", str(Path.home()))) / "SieveLab" / "data"
        return root / "sievelab.db"
    return Path(__file__).resolve().parent.parent / "data" / "sievelab.db"


DB_PATH = _resolve_db_path()


def get_connection():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    conn = get_connection()
    cur = conn.cursor()
    _migrate_settings(cur)
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            snapshot_json TEXT NOT NULL,
            results_json TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_analysis_runs_name ON analysis_runs(name);")
    conn.commit()
    conn.close()
    logger.info("Database ready at %s", DB_PATH)


def now_iso():
    return datetime.now().isoformat(timespec="seconds")


def get_app_setting(key, default=None):
    conn = get_connection()
    row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    if not row:
        return default
    return row["value"]


def set_app_setting(key, value):
    conn = get_connection()
    conn.execute(
        """
        INSERT INTO app_settings (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )
    conn.commit()
    conn.close()


def _results_payload(report):
    if report is None:
        return {}
    return {
        "snapshot_version": report.snapshot_version,
        "gate": report.gate,
        "calculable": report.calculable,
        "results": [
            {k: (v if isinstance(v, (int, float, str)) else str(v)) for k, v in r.as_row().items()}
            for r in report.results
        ],
        "messages": [
            {
                "sieve_size": m.sieve_size,
                "case_name": m.case_name,
                "severity": m.severity.value,
                "reason": m.reason,
            }
            for m in report.messages
        ],
    }


def save_run(name, snapshot, report=None):
    name = (name or "").strip()
    if not name:
        raise ValueError("Run name is required.")
    conn = get_connection()
    conn.execute(
        """
        INSERT INTO analysis_runs (name, snapshot_json, results_json, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            snapshot_json = excluded.snapshot_json,
            results_json = excluded.results_json,
            updated_at = excluded.updated_at
        """,
        (name, json.dumps(to_dict(snapshot)), json.dumps(_results_payload(report)), now_iso()),
    )
    conn.commit()
    conn.close()
    logger.info("Saved run %r (snapshot v%s)", name, snapshot.version)


def load_run(name):
    conn = get_connection()
    row = conn.execute("SELECT snapshot_json FROM analysis_runs WHERE name = ?", (name,)).fetchone()
    conn.close()
    if not row:
        return None
    return from_dict(json.loads(row["snapshot_json"]))


def load_run_results(name):
    conn = get_connection()
    row = conn.execute("SELECT results_json FROM analysis_runs WHERE name = ?", (name,)).fetchone()
    conn.close()
    if not row:
        return None
    return json.loads(row["results_json"] or "{}")


def list_runs():
    conn = get_connection()
    rows = conn.execute("SELECT name, updated_at FROM analysis_runs ORDER BY updated_at DESC, name").fetchall()
    conn.close()
    return [dict(r) for r in rows]


def delete_run(name):
    conn = get_connection()
    cur = conn.execute("DELETE FROM analysis_runs WHERE name = ?", (name,))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def backup_database(target_dir):
    out_dir = Path(target_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_path = out_dir / f"sievelab_backup_{stamp}.db"

    src = get_connection()
    dst = sqlite3.connect(str(out_path))
    try:
        src.backup(dst)
    finally:
        dst.close()
        src.close()
    logger.info("Database backup written to %s", out_path)
    return out_path


def _migrate_settings(cur):
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT
        );
        """
    )
