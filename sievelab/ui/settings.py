import json
import tkinter as tk
from pathlib import Path
from tkinter import filedialog, messagebox, ttk

from sievelab.config import load_settings, save_settings
from sievelab.db import DB_PATH, backup_database, get_app_setting, set_app_setting
from sievelab.services.gradation import GATES


class SettingsTab(ttk.Frame):
    def __init__(self, parent, on_settings_changed=None):
        super().__init__(parent)
        self.on_settings_changed = on_settings_changed
        self.backup_dir_var = tk.StringVar(value="")
        self.size_decimals_var = tk.StringVar(value="")
        self.ratio_decimals_var = tk.StringVar(value="")
        self.gate_var = tk.StringVar(value="")
        self.case_count_var = tk.StringVar(value="")
        self.sieve_sizes_var = tk.StringVar(value="")
        self._build_ui()
        self.refresh()

    def _build_ui(self):
        wrap = ttk.Frame(self)
        wrap.pack(fill=tk.BOTH, expand=True, padx=12, pady=12)

        calc_box = ttk.LabelFrame(wrap, text="Analysis")
        calc_box.pack(fill=tk.X, pady=(0, 10))
        rows = [
            ("Size decimals (D10/D30/D60)", self.size_decimals_var),
            ("Ratio decimals (Cu/Cc)", self.ratio_decimals_var),
            ("Default case count", self.case_count_var),
            ("Default sieve sizes (mm, comma separated)", self.sieve_sizes_var),
        ]
        for r, (label, var) in enumerate(rows):
            ttk.Label(calc_box, text=label).grid(row=r, column=0, sticky=tk.W, padx=8, pady=4)
            ttk.Entry(calc_box, textvariable=var, width=60).grid(row=r, column=1, sticky=tk.W, padx=8, pady=4)
        ttk.Label(calc_box, text="Validation gate").grid(row=len(rows), column=0, sticky=tk.W, padx=8, pady=4)
        ttk.Combobox(calc_box, textvariable=self.gate_var, values=list(GATES), state="readonly", width=12).grid(
            row=len(rows), column=1, sticky=tk.W, padx=8, pady=4
        )
        ttk.Label(
            calc_box,
            text="batch: any input error blocks every case.  case: only cases with errors are skipped.",
        ).grid(row=len(rows) + 1, column=0, columnspan=2, sticky=tk.W, padx=8, pady=(0, 4))
        ttk.Button(calc_box, text="Save Settings", command=self._save_settings).grid(
            row=len(rows) + 2, column=1, sticky=tk.W, padx=8, pady=(4, 10)
        )

        db_box = ttk.LabelFrame(wrap, text="Database")
        db_box.pack(fill=tk.X, pady=(0, 10))
        ttk.Label(db_box, text=f"Active DB: {DB_PATH}").pack(anchor=tk.W, padx=8, pady=8)

        backup_box = ttk.LabelFrame(wrap, text="Backup")
        backup_box.pack(fill=tk.X)

        ttk.Label(backup_box, text="Backup Folder").grid(row=0, column=0, sticky=tk.W, padx=8, pady=8)
        ttk.Entry(backup_box, textvariable=self.backup_dir_var, width=70).grid(row=0, column=1, sticky=tk.W, padx=8, pady=8)
        ttk.Button(backup_box, text="Browse", command=self._browse_backup_dir).grid(row=0, column=2, sticky=tk.W, padx=8, pady=8)

        actions = ttk.Frame(backup_box)
        actions.grid(row=1, column=1, sticky=tk.W, padx=8, pady=(0, 10))
        ttk.Button(actions, text="Save Backup Folder", command=self._save_backup_dir).pack(side=tk.LEFT)
        ttk.Button(actions, text="Backup Now", command=self._backup_now).pack(side=tk.LEFT, padx=(8, 0))

    def refresh(self):
        saved = get_app_setting("backup_dir", "")
        self.backup_dir_var.set(saved or "")
        s = load_settings()
        self.size_decimals_var.set(str(s["size_decimals"]))
        self.ratio_decimals_var.set(str(s["ratio_decimals"]))
        self.gate_var.set(s["validation_gate"])
        self.case_count_var.set(str(s["case_count"]))
        self.sieve_sizes_var.set(", ".join(f"{v:g}" for v in s["sieve_sizes"]))

    def _save_settings(self):
        sizes_text = self.sieve_sizes_var.get().strip()
        try:
            sizes = [float(p) for p in sizes_text.split(",") if p.strip()]
            save_settings(
                {
                    "size_decimals": self.size_decimals_var.get(),
                    "ratio_decimals": self.ratio_decimals_var.get(),
                    "validation_gate": self.gate_var.get(),
                    "case_count": self.case_count_var.get(),
                    "sieve_sizes": json.dumps(sizes),
                }
            )
        except (KeyError, ValueError) as exc:
            messagebox.showerror("Invalid Settings", f"Could not save settings:\n{exc}")
            return
        if self.on_settings_changed:
            self.on_settings_changed()
        messagebox.showinfo("Saved", "Settings saved.")

    def _browse_backup_dir(self):
        initial = self.backup_dir_var.get().strip() or str(Path.home())
        chosen = filedialog.askdirectory(initialdir=initial)
        if chosen:
            self.backup_dir_var.set(chosen)

    def _save_backup_dir(self):
        folder = self.backup_dir_var.get().strip()
        if not folder:
            messagebox.showerror("Missing Folder", "Select a backup folder first.")
            return
        set_app_setting("backup_dir", folder)
        messagebox.showinfo("Saved", f"Backup folder saved:\n{folder}")

    def _backup_now(self):
        folder = self.backup_dir_var.get().strip() or get_app_setting("backup_dir", "")
        if not folder:
            messagebox.showerror("Missing Folder", "Select and save a backup folder first.")
            return
        try:
            out_path = backup_database(folder)
        except Exception as exc:
            messagebox.showerror("Backup Failed", f"Could not create backup:\n{exc}")
            return
        if self.backup_dir_var.get().strip() != folder:
            self.backup_dir_var.set(folder)
        set_app_setting("backup_dir", folder)
        messagebox.showinfo("Backup Complete", f"Database backup created:\n{out_path}")
