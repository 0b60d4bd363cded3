import tkinter as tk
from tkinter import ttk

from sievelab.config import load_settings
from sievelab.ui.analysis import AnalysisTab
from sievelab.ui.settings import SettingsTab


class SieveLabApp(tk.Tk):
    def __init__(self):
        super().__init__()
        self.title("SieveLab - Sieve Analysis")
        self.geometry("1280x820")
        self.minsize(1100, 700)

        self.settings = load_settings()

        self._build_ui()

    def _build_ui(self):
        style = ttk.Style(self)
        try:
            style.theme_use("clam")
        except tk.TclError:
            pass

        bg = "#ecf4fb"
        surface = "#f8fbff"
        surface_alt = "#e1eef9"
        text = "#15385b"
        muted = "#5a7b9a"
        accent = "#2f86de"
        border = "#bfd5ea"

        self.configure(bg=bg)

        style.configure(
            ".",
            background=bg,
            foreground=text,
            fieldbackground=surface,
            bordercolor=border,
            highlightcolor=border,
            insertcolor=text,
            selectbackground=accent,
            selectforeground="#0b1b14",
            font=("Segoe UI", 10),
        )
        style.configure("TFrame", background=bg)
        style.configure("TLabel", background=bg, foreground=text)
        style.configure("TLabelframe", background=bg, foreground=muted)
        style.configure("TLabelframe.Label", background=bg, foreground=muted, font=("Segoe UI Semibold", 10))
        style.configure("TButton", background=surface_alt, foreground=text, padding=(10, 6), borderwidth=1, relief="flat")
        style.map("TButton", background=[("active", "#d6e8f9")], foreground=[("disabled", muted)])
        style.configure("TEntry", fieldbackground=surface, background=surface, foreground=text, padding=4)
        style.configure("Error.TEntry", fieldbackground="#f8d7da")
        style.configure("Warning.TEntry", fieldbackground="#fff3cd")
        style.configure("Treeview", background=surface, fieldbackground=surface, foreground=text, bordercolor=border, rowheight=26)
        style.configure("Treeview.Heading", background=surface_alt, foreground=text, font=("Segoe UI Semibold", 10))
        style.map("Treeview", background=[("selected", accent)], foreground=[("selected", "#0b1b14")])

        header = ttk.Frame(self)
        header.pack(fill=tk.X, padx=10, pady=8)
        ttk.Label(header, text="Particle-Size Distribution", font=("Segoe UI Semibold", 11), foreground=accent).pack(
            anchor=tk.W
        )
        ttk.Label(header, text="Percent passing by sieve opening; D10 / D30 / D60, Cu and Cc per case.").pack(anchor=tk.W)

        self.notebook = ttk.Notebook(self)
        self.notebook.pack(fill=tk.BOTH, expand=True)

        self.analysis_tab = AnalysisTab(self.notebook, get_settings=self._get_settings)
        self.settings_tab = SettingsTab(self.notebook, on_settings_changed=self._on_settings_changed)

        self.notebook.add(self.analysis_tab, text="Analysis")
        self.notebook.add(self.settings_tab, text="Settings")

    def _get_settings(self):
        return self.settings

    def _on_settings_changed(self):
        self.settings = load_settings()
        self.analysis_tab.refresh()
