import logging
import math
import tkinter as tk
from tkinter import filedialog, messagebox, simpledialog, ttk

from sievelab.config import save_settings
from sievelab.db import delete_run, list_runs, load_run, load_run_results, save_run
from sievelab.services.gradation import GATE_BATCH, analyze, result_is_complete
from sievelab.services.results_export import (
    CHART_COLORS,
    TICK_SIZES,
    export_csv,
    export_results_pdf,
    export_results_xlsx,
    format_result_row,
    import_csv,
    result_fields,
)
from sievelab.services.snapshot import (
    chart_series,
    default_snapshot,
    plottable_cases,
    with_added_case,
    with_added_row,
    with_removed_case,
    with_removed_row,
    with_sieve_size,
    with_sieve_sizes,
    with_value,
)
from sievelab.services.validators import Severity, message_for_cell, validate_cases

logger = logging.getLogger(__name__)


class AnalysisTab(ttk.Frame):
    def __init__(self, parent, get_settings):
        super().__init__(parent)
        self.get_settings = get_settings
        s = self.get_settings()
        self.snapshot = default_snapshot(s["sieve_sizes"], s["case_count"])
        self.report = None
        self.messages = []
        self.visible_cases = {name: True for name in self.snapshot.cases}
        self.show_cc_var = tk.BooleanVar(value=bool(s["show_cc"]))
        self.marker_case_var = tk.StringVar(value="")
        self.status_var = tk.StringVar(value="Enter percent passing per sieve, then Calculate.")
        self.hover_var = tk.StringVar(value="")
        self._cell_entries = {}
        self._size_entries = []
        self._size_vars = []
        self._build_ui()
        self._rebuild_grid()

    def _build_ui(self):
        bar = ttk.Frame(self)
        bar.pack(fill=tk.X, padx=10, pady=(8, 4))
        for text, cmd in [
            ("Calculate", self._calculate),
            ("Add Case", self._add_case),
            ("Remove Case", self._remove_case),
            ("Add Row", self._add_row),
            ("Remove Row", self._remove_row),
        ]:
            ttk.Button(bar, text=text, command=cmd).pack(side=tk.LEFT, padx=(0, 6))
        ttk.Checkbutton(bar, text="Show Cc", variable=self.show_cc_var, command=self._on_show_cc_toggled).pack(
            side=tk.LEFT, padx=(8, 0)
        )
        for text, cmd in [
            ("Export PDF", self._export_pdf),
            ("Export XLSX", self._export_xlsx),
            ("Export CSV", self._export_csv),
            ("Import CSV", self._import_csv),
            ("Delete Run", self._delete_run),
            ("Load Run", self._load_run),
            ("Save Run", self._save_run),
        ]:
            ttk.Button(bar, text=text, command=cmd).pack(side=tk.RIGHT, padx=(6, 0))

        ttk.Label(self, textvariable=self.status_var).pack(anchor=tk.W, padx=10)

        body = ttk.Panedwindow(self, orient=tk.HORIZONTAL)
        body.pack(fill=tk.BOTH, expand=True, padx=10, pady=(4, 10))

        left = ttk.LabelFrame(body, text="Input (percent passing)")
        right = ttk.Frame(body)
        body.add(left, weight=1)
        body.add(right, weight=1)

        self.grid_canvas = tk.Canvas(left, highlightthickness=0, bg="#ecf4fb")
        xscroll = ttk.Scrollbar(left, orient=tk.HORIZONTAL, command=self.grid_canvas.xview)
        yscroll = ttk.Scrollbar(left, orient=tk.VERTICAL, command=self.grid_canvas.yview)
        self.grid_canvas.configure(xscrollcommand=xscroll.set, yscrollcommand=yscroll.set)
        xscroll.pack(side=tk.BOTTOM, fill=tk.X)
        yscroll.pack(side=tk.RIGHT, fill=tk.Y)
        self.grid_canvas.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        self.grid_body = ttk.Frame(self.grid_canvas)
        self.grid_canvas.create_window((0, 0), window=self.grid_body, anchor="nw")
        self.grid_body.bind(
            "<Configure>", lambda _e: self.grid_canvas.configure(scrollregion=self.grid_canvas.bbox("all"))
        )

        results_box = ttk.LabelFrame(right, text="Results")
        results_box.pack(fill=tk.X)
        self.results_tree = ttk.Treeview(results_box, show="headings", height=7)
        self.results_tree.pack(fill=tk.X, padx=6, pady=6)

        chart_box = ttk.LabelFrame(right, text="Grading Curve")
        chart_box.pack(fill=tk.BOTH, expand=True, pady=(8, 0))
        ctl = ttk.Frame(chart_box)
        ctl.pack(fill=tk.X, padx=6, pady=(4, 0))
        ttk.Label(ctl, text="D-value markers for").pack(side=tk.LEFT)
        self.marker_combo = ttk.Combobox(ctl, textvariable=self.marker_case_var, state="readonly", width=16)
        self.marker_combo.pack(side=tk.LEFT, padx=6)
        self.marker_combo.bind("<<ComboboxSelected>>", lambda _e: self._refresh_chart())
        ttk.Label(chart_box, textvariable=self.hover_var).pack(anchor=tk.W, padx=6)
        self.chart = tk.Canvas(chart_box, bg="#f7fbff", highlightthickness=0)
        self.chart.pack(fill=tk.BOTH, expand=True, padx=6, pady=6)
        self.chart.bind("<Configure>", lambda _e: self._refresh_chart())
        self.chart.bind("<Button-1>", self._on_chart_click)
        self.chart.bind("<Motion>", self._on_chart_hover)

    def refresh(self):
        s = self.get_settings()
        self.show_cc_var.set(bool(s["show_cc"]))
        self._refresh_results()
        self._refresh_chart()

    # Grid

    def _rebuild_grid(self):
        for child in self.grid_body.winfo_children():
            child.destroy()
        self._cell_entries = {}
        self._size_entries = []
        self._size_vars = []
        ttk.Label(self.grid_body, text="Sieve (mm)", font=("Segoe UI Semibold", 9)).grid(row=0, column=0, padx=2, pady=2)
        for col, case_name in enumerate(self.snapshot.cases, start=1):
            ttk.Label(self.grid_body, text=case_name, font=("Segoe UI Semibold", 9)).grid(row=0, column=col, padx=2, pady=2)

        for r, size in enumerate(self.snapshot.sieve_sizes):
            var = tk.StringVar(value=f"{size:g}")
            ent = ttk.Entry(self.grid_body, textvariable=var, width=9)
            ent.grid(row=r + 1, column=0, padx=2, pady=1)
            ent.bind("<FocusOut>", lambda _e, row=r, v=var: self._on_size_changed(row, v.get()))
            ent.bind("<Return>", lambda _e, row=r, v=var: self._on_size_changed(row, v.get()))
            self._size_entries.append(ent)
            self._size_vars.append(var)
            for col, case_name in enumerate(self.snapshot.cases, start=1):
                cvar = tk.StringVar(value=self.snapshot.values[r][col - 1])
                cell = ttk.Entry(self.grid_body, textvariable=cvar, width=8)
                cell.grid(row=r + 1, column=col, padx=2, pady=1)
                cvar.trace_add("write", lambda *_a, row=r, name=case_name, v=cvar: self._on_value_changed(row, name, v.get()))
                cell.bind("<FocusIn>", lambda _e, row=r, name=case_name: self._show_cell_message(row, name))
                self._cell_entries[(r, case_name)] = cell
        self._revalidate()

    def _on_value_changed(self, row, case_name, raw):
        self.snapshot = with_value(self.snapshot, row, case_name, raw)
        self._revalidate()

    def _on_size_changed(self, row, raw):
        if raw.strip() == f"{self.snapshot.sieve_sizes[row]:g}":
            return
        self.snapshot = with_sieve_size(self.snapshot, row, raw)
        self._rebuild_grid()
        self._refresh_chart()

    def _commit_pending_sizes(self):
        # A size typed without FocusOut/Return is still only in its entry.
        raws = []
        for size, var in zip(self.snapshot.sieve_sizes, self._size_vars):
            text = var.get().strip()
            raws.append(size if text == f"{size:g}" else text)
        snap = with_sieve_sizes(self.snapshot, raws)
        if snap is self.snapshot:
            return
        self.snapshot = snap
        self._rebuild_grid()

    def _revalidate(self):
        self.messages = validate_cases(self.snapshot)
        for (r, case_name), cell in self._cell_entries.items():
            msg = message_for_cell(self.messages, r, case_name)
            if msg is None:
                cell.configure(style="TEntry")
            elif msg.severity is Severity.ERROR:
                cell.configure(style="Error.TEntry")
            else:
                cell.configure(style="Warning.TEntry")
        errors = sum(1 for m in self.messages if m.severity is Severity.ERROR)
        warnings = len(self.messages) - errors
        if self.messages:
            self.status_var.set(f"Input check: {errors} error(s), {warnings} warning(s).")
        else:
            self.status_var.set("Input check: OK.")
        self._refresh_chart()

    def _show_cell_message(self, row, case_name):
        msg = message_for_cell(self.messages, row, case_name)
        if msg:
            self.status_var.set(f"{case_name} @ {msg.sieve_size:g} mm: {msg.reason}")

    def _add_case(self):
        self.snapshot = with_added_case(self.snapshot)
        self.visible_cases[self.snapshot.cases[-1]] = True
        self._rebuild_grid()

    def _remove_case(self):
        if len(self.snapshot.cases) <= 1:
            return
        removed = self.snapshot.cases[-1]
        self.snapshot = with_removed_case(self.snapshot)
        self.visible_cases.pop(removed, None)
        if self.marker_case_var.get() == removed:
            self.marker_case_var.set("")
        self._rebuild_grid()

    def _add_row(self):
        self.snapshot = with_added_row(self.snapshot)
        self._rebuild_grid()

    def _remove_row(self):
        focused = self.focus_get()
        row = len(self.snapshot.sieve_sizes) - 1
        if focused in self._size_entries:
            row = self._size_entries.index(focused)
        self.snapshot = with_removed_row(self.snapshot, row)
        self._rebuild_grid()

    # Calculation + results

    def _calculate(self):
        self._commit_pending_sizes()
        gate = self.get_settings().get("validation_gate", GATE_BATCH)
        report = analyze(self.snapshot, gate=gate)
        if not report.calculable and gate == GATE_BATCH:
            self.report = None
            self._refresh_results()
            messagebox.showerror("Input Errors", "Fix the highlighted input errors before calculating.")
            return
        self.report = report
        if not report.calculable:
            self.status_var.set("Cases with input errors were skipped.")
        if self.marker_case_var.get() not in plottable_cases(self.snapshot):
            self.marker_case_var.set("")
        self._refresh_results()
        self._refresh_chart()

    def _on_show_cc_toggled(self):
        show_cc = bool(self.show_cc_var.get())
        save_settings({"show_cc": show_cc})
        self.get_settings()["show_cc"] = show_cc
        self._refresh_results()

    def _results(self):
        return list(self.report.results) if self.report else []

    def _refresh_results(self):
        s = self.get_settings()
        show_cc = bool(self.show_cc_var.get())
        fields = result_fields(show_cc)
        self.results_tree.configure(columns=fields)
        for key in fields:
            self.results_tree.heading(key, text=f"{key} (mm)" if key.startswith("D") else key)
            self.results_tree.column(key, width=90, anchor=tk.CENTER)
        for iid in self.results_tree.get_children():
            self.results_tree.delete(iid)
        for r in self._results():
            self.results_tree.insert("", tk.END, values=format_result_row(r, s["size_decimals"], s["ratio_decimals"], show_cc))
        complete = [r.case_name for r in self._results() if result_is_complete(r)]
        self.marker_combo.configure(values=[""] + complete)
        if self.marker_case_var.get() not in complete:
            self.marker_case_var.set("")

    # Chart

    def _chart_meta(self):
        w = max(300, self.chart.winfo_width())
        h = max(220, self.chart.winfo_height())
        left, right, top, bottom = 54, 16, 34, 44
        return left, top, max(100, w - left - right), max(100, h - top - bottom)

    def _refresh_chart(self):
        c = self.chart
        if not c.winfo_exists():
            return
        c.delete("all")
        series = chart_series(self.snapshot)
        cases = plottable_cases(self.snapshot)
        if not series or not cases:
            c.create_text(20, 20, anchor=tk.NW, text="Enter at least two points for a case to plot it.", fill="#1b3d63")
            return
        gx, gy, gw, gh = self._chart_meta()
        minx = max(series[0]["sieve_size"], 0.001)
        maxx = max(series[-1]["sieve_size"], minx * 10.0)
        log_min = math.log10(minx)
        log_max = math.log10(maxx)

        def px(x_mm):
            return gx + ((math.log10(max(x_mm, minx)) - log_min) / (log_max - log_min)) * gw

        def py(y_pf):
            return gy + gh - (y_pf / 100.0) * gh

        c.create_rectangle(gx, gy, gx + gw, gy + gh, outline="#6b8aa8")
        for yp in range(0, 101, 10):
            c.create_line(gx, py(yp), gx + gw, py(yp), fill="#d4e1ee")
            c.create_text(gx - 8, py(yp), text=f"{yp}", anchor=tk.E, fill="#23496f", font=("Segoe UI", 8))
        for s in TICK_SIZES:
            if s < minx or s > maxx:
                continue
            c.create_line(px(s), gy, px(s), gy + gh, fill="#d4e1ee")
            c.create_text(px(s), gy + gh + 12, text=f"{s:g}", anchor=tk.N, fill="#23496f", font=("Segoe UI", 8))

        legend_x = gx
        for idx, case_name in enumerate(self.snapshot.cases):
            if case_name not in cases:
                continue
            color = CHART_COLORS[idx % len(CHART_COLORS)]
            visible = self.visible_cases.get(case_name, True)
            if visible:
                poly = []
                for row in series:
                    if row[case_name] is None:
                        continue
                    x, y = px(row["sieve_size"]), py(row[case_name])
                    poly.extend([x, y])
                    c.create_oval(x - 3, y - 3, x + 3, y + 3, fill=color, outline="")
                if len(poly) >= 4:
                    c.create_line(*poly, fill=color, width=2)
            tag = f"legend:{case_name}"
            c.create_rectangle(legend_x, 8, legend_x + 12, 20, fill=color if visible else "", outline=color, tags=tag)
            c.create_text(legend_x + 16, 14, text=case_name, anchor=tk.W, fill="#23496f" if visible else "#9fb3c7",
                          font=("Segoe UI", 8), tags=tag)
            legend_x += 70

        selected = self.report.result_for(self.marker_case_var.get()) if self.report else None
        if selected is not None and result_is_complete(selected):
            for key, size in (("D10", selected.d10), ("D30", selected.d30), ("D60", selected.d60)):
                if size < minx or size > maxx:
                    continue
                c.create_line(px(size), gy, px(size), gy + gh, fill="grey", dash=(3, 3))
                c.create_text(px(size) + 3, gy + 4, text=f"{key}={size:.3f}mm", anchor=tk.NW, fill="#444",
                              font=("Segoe UI", 8))

        c.create_text(gx + gw / 2, gy + gh + 30, text="Particle Size (mm, log scale)", fill="#8a1f1f",
                      font=("Segoe UI", 9, "bold"))
        c.create_text(16, gy + gh / 2, text="Percent Passing (%)", angle=90, fill="#8a1f1f", font=("Segoe UI", 9, "bold"))
        c._plot_meta = {"gx": gx, "gy": gy, "gw": gw, "gh": gh, "log_min": log_min, "log_max": log_max}

    def _on_chart_click(self, event):
        for item in self.chart.find_overlapping(event.x - 1, event.y - 1, event.x + 1, event.y + 1):
            for tag in self.chart.gettags(item):
                if tag.startswith("legend:"):
                    name = tag.split(":", 1)[1]
                    self.visible_cases[name] = not self.visible_cases.get(name, True)
                    self._refresh_chart()
                    return

    def _on_chart_hover(self, event):
        meta = getattr(self.chart, "_plot_meta", None)
        if not meta:
            return
        gx, gy, gw, gh = meta["gx"], meta["gy"], meta["gw"], meta["gh"]
        if event.x < gx or event.x > gx + gw or event.y < gy or event.y > gy + gh:
            self.hover_var.set("")
            return
        frac = (event.x - gx) / gw
        size = 10 ** (meta["log_min"] + frac * (meta["log_max"] - meta["log_min"]))
        pct = 100.0 * (gy + gh - event.y) / gh
        self.hover_var.set(f"Particle Size: {size:.3f} mm   |   Percent Passing: {pct:.2f}%")

    # Files and runs

    def _export_csv(self):
        path = filedialog.asksaveasfilename(
            defaultextension=".csv", initialfile="sieve_analysis_data.csv", filetypes=[("CSV", "*.csv")]
        )
        if not path:
            return
        self._commit_pending_sizes()
        try:
            export_csv(path, self.snapshot, self._results(), show_cc=bool(self.show_cc_var.get()))
        except Exception as exc:
            messagebox.showerror("Export Failed", str(exc))
            return
        messagebox.showinfo("Exported", f"Saved:\n{path}")

    def _export_xlsx(self):
        path = filedialog.asksaveasfilename(
            defaultextension=".xlsx", initialfile="sieve_analysis.xlsx", filetypes=[("Excel Workbook", "*.xlsx")]
        )
        if not path:
            return
        self._commit_pending_sizes()
        s = self.get_settings()
        try:
            export_results_xlsx(
                path, self.snapshot, self._results(), bool(self.show_cc_var.get()), s["size_decimals"], s["ratio_decimals"]
            )
        except Exception as exc:
            messagebox.showerror("Export Failed", str(exc))
            return
        messagebox.showinfo("Exported", f"Saved:\n{path}")

    def _export_pdf(self):
        path = filedialog.asksaveasfilename(
            defaultextension=".pdf", initialfile="sieve_analysis.pdf", filetypes=[("PDF", "*.pdf")]
        )
        if not path:
            return
        self._commit_pending_sizes()
        s = self.get_settings()
        try:
            export_results_pdf(
                path,
                self.snapshot,
                self._results(),
                show_cc=bool(self.show_cc_var.get()),
                size_decimals=s["size_decimals"],
                ratio_decimals=s["ratio_decimals"],
                marker_case=self.marker_case_var.get() or None,
                visible_cases={n for n, v in self.visible_cases.items() if v},
            )
        except Exception as exc:
            messagebox.showerror("Export Failed", str(exc))
            return
        messagebox.showinfo("Exported", f"Saved:\n{path}")

    def _import_csv(self):
        path = filedialog.askopenfilename(filetypes=[("CSV", "*.csv"), ("All files", "*.*")])
        if not path:
            return
        try:
            snap = import_csv(path)
        except Exception as exc:
            messagebox.showerror("Import Failed", f"Could not read CSV:\n{exc}")
            return
        self._replace_snapshot(snap)

    def _save_run(self):
        self._commit_pending_sizes()
        name = simpledialog.askstring("Save Run", "Run name:", parent=self)
        if not name:
            return
        try:
            save_run(name, self.snapshot, self.report)
        except Exception as exc:
            messagebox.showerror("Save Failed", str(exc))
            return
        messagebox.showinfo("Saved", f"Run saved: {name.strip()}")

    def _load_run(self):
        names = [r["name"] for r in list_runs()]
        if not names:
            messagebox.showinfo("No Runs", "No saved runs yet.")
            return
        name = simpledialog.askstring("Load Run", "Run name:\n" + "\n".join(names[:20]), parent=self)
        if not name:
            return
        snap = load_run(name.strip())
        if snap is None:
            messagebox.showerror("Not Found", f"No run named {name.strip()!r}.")
            return
        self._replace_snapshot(snap)
        stored = load_run_results(name.strip()) or {}
        if stored.get("results"):
            state = "calculable" if stored.get("calculable") else "had input errors"
            self.status_var.set(
                f"Loaded {name.strip()}: {len(stored['results'])} stored result(s), {state}. Calculate to refresh."
            )
        else:
            self.status_var.set(f"Loaded {name.strip()}: no stored results.")

    def _delete_run(self):
        names = [r["name"] for r in list_runs()]
        if not names:
            messagebox.showinfo("No Runs", "No saved runs yet.")
            return
        name = simpledialog.askstring("Delete Run", "Run name:\n" + "\n".join(names[:20]), parent=self)
        if not name:
            return
        if not messagebox.askyesno("Delete Run", f"Delete saved run {name.strip()!r}?"):
            return
        if delete_run(name.strip()):
            self.status_var.set(f"Deleted run {name.strip()}.")
        else:
            messagebox.showerror("Not Found", f"No run named {name.strip()!r}.")

    def _replace_snapshot(self, snap):
        self.snapshot = snap
        self.report = None
        self.visible_cases = {n: True for n in snap.cases}
        self.marker_case_var.set("")
        self._rebuild_grid()
        self._refresh_results()
        logger.info("Grid replaced: %d sieve(s), %d case(s)", len(snap.sieve_sizes), len(snap.cases))
