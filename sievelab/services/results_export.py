import csv
import logging
import math
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas as pdf_canvas
from reportlab.platypus import Table, TableStyle

from sievelab.services.gradation import Outcome, is_numeric
from sievelab.services.snapshot import GridSnapshot, chart_series
from sievelab.services.validators import is_valid_case_name, parse_sieve_size

logger = logging.getLogger(__name__)

HEADER_BLUE = "D8EAF9"
SUBHEADER_BLUE = "EDF5FD"
GRID_BLUE = "9EBBD8"

SIZE_HEADER = "Sieve Size (mm)"
RESULT_FIELDS = ["Case", "D10", "D30", "D60", "Cu", "Cc"]
SIZE_FIELDS = ("D10", "D30", "D60")

CHART_COLORS = [
    "#e6194B", "#3cb44b", "#ffe119", "#4363d8", "#f58231", "#911eb4",
    "#46f0f0", "#f032e6", "#bcf60c", "#fabebe", "#008080", "#e6beff",
    "#9A6324", "#fffac8", "#800000", "#aaffc3", "#808080", "#ffd8b1",
    "#000075", "#a9a9a9",
]
TICK_SIZES = [100, 50, 25, 10, 4.75, 2.0, 0.85, 0.425, 0.25, 0.15, 0.075, 0.02, 0.005]


def result_fields(show_cc=True):
    return RESULT_FIELDS if show_cc else RESULT_FIELDS[:-1]


def raw_cell(value):
    """Verbatim export value: numbers unchanged, sentinels as their tag."""
    if isinstance(value, Outcome):
        return value.tag
    return value


def format_value(value, decimals=3):
    if value is None:
        return ""
    if isinstance(value, Outcome):
        return value.tag
    if is_numeric(value):
        return f"{float(value):.{decimals}f}"
    return str(value)


def format_result_row(result, size_decimals=3, ratio_decimals=2, show_cc=True):
    row = result.as_row()
    out = []
    for key in result_fields(show_cc):
        if key == "Case":
            out.append(row[key])
        elif key in SIZE_FIELDS:
            out.append(format_value(row[key], size_decimals))
        else:
            out.append(format_value(row[key], ratio_decimals))
    return out


def _fmt_size(size):
    # Full precision so an exported grid reads back identically.
    if float(size).is_integer():
        return str(int(size))
    return repr(float(size))


def export_csv(path: str, snapshot: GridSnapshot, results, show_cc=True):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow([SIZE_HEADER] + list(snapshot.cases))
        for size, row in zip(snapshot.sieve_sizes, snapshot.values):
            writer.writerow([_fmt_size(size)] + list(row))
        writer.writerow([])
        fields = result_fields(show_cc)
        writer.writerow(fields)
        for r in results:
            row = r.as_row()
            writer.writerow([raw_cell(row[k]) for k in fields])
    logger.info("CSV written to %s", path)


def import_csv(path: str) -> GridSnapshot:
    with open(path, newline="", encoding="utf-8-sig") as fh:
        rows = list(csv.reader(fh))
    if not rows:
        raise ValueError("CSV file is empty.")
    header = [c.strip() for c in rows[0]]
    if not header or header[0] != SIZE_HEADER:
        raise ValueError(f"First column must be '{SIZE_HEADER}'.")
    cases = tuple(header[1:])
    if not cases or not all(is_valid_case_name(c) for c in cases):
        raise ValueError("CSV needs at least one named case column.")
    if len(set(cases)) != len(cases):
        raise ValueError("Case column names must be unique.")

    sizes = []
    values = []
    for line_no, row in enumerate(rows[1:], start=2):
        if not any(c.strip() for c in row):
            break
        if len(row) > len(header):
            raise ValueError(f"Line {line_no}: too many columns.")
        padded = list(row) + [""] * (len(header) - len(row))
        sizes.append(parse_sieve_size(padded[0]))
        values.append(tuple(c.strip() for c in padded[1:]))
    logger.info("Imported %d sieve row(s) and %d case(s) from %s", len(sizes), len(cases), path)
    return GridSnapshot(tuple(sizes), cases, tuple(values), 0)


def _style_header(cell, fill=HEADER_BLUE):
    cell.font = Font(size=9, bold=True)
    cell.fill = PatternFill("solid", fgColor=fill)
    cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _col_letter(idx):
    out = ""
    while idx > 0:
        idx, rem = divmod(idx - 1, 26)
        out = chr(65 + rem) + out
    return out


def export_results_xlsx(path: str, snapshot: GridSnapshot, results, show_cc=True, size_decimals=3, ratio_decimals=2):
    wb = Workbook()
    ws = wb.active
    ws.title = "Input"

    ws.cell(row=1, column=1, value=SIZE_HEADER)
    _style_header(ws.cell(row=1, column=1))
    ws.column_dimensions["A"].width = 16
    for col, case_name in enumerate(snapshot.cases, start=2):
        ws.cell(row=1, column=col, value=case_name)
        _style_header(ws.cell(row=1, column=col), SUBHEADER_BLUE)
        ws.column_dimensions[_col_letter(col)].width = 12
    for r, (size, row) in enumerate(zip(snapshot.sieve_sizes, snapshot.values), start=2):
        ws.cell(row=r, column=1, value=size)
        for col, raw in enumerate(row, start=2):
            text = (raw or "").strip()
            try:
                cell_value = float(text) if text else None
            except ValueError:
                cell_value = text
            ws.cell(row=r, column=col, value=cell_value)
            ws.cell(row=r, column=col).alignment = Alignment(horizontal="center")
    ws.freeze_panes = "B2"

    rs = wb.create_sheet("Results")
    fields = result_fields(show_cc)
    units = {"D10": "mm", "D30": "mm", "D60": "mm"}
    for col, key in enumerate(fields, start=1):
        label = f"{key} ({units[key]})" if key in units else key
        rs.cell(row=1, column=col, value=label)
        _style_header(rs.cell(row=1, column=col))
        rs.column_dimensions[_col_letter(col)].width = 14
    for r, result in enumerate(results, start=2):
        row = result.as_row()
        for col, key in enumerate(fields, start=1):
            value = row[key]
            cell = rs.cell(row=r, column=col, value=raw_cell(value))
            if is_numeric(value):
                decimals = size_decimals if key in SIZE_FIELDS else ratio_decimals
                cell.number_format = "0." + "0" * decimals if decimals > 0 else "0"
            cell.alignment = Alignment(horizontal="center")
    rs.freeze_panes = "B2"

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    logger.info("XLSX written to %s", path)


def export_results_pdf(
    path: str,
    snapshot: GridSnapshot,
    results,
    show_cc=True,
    size_decimals=3,
    ratio_decimals=2,
    marker_case=None,
    visible_cases=None,
    title="Sieve Analysis",
):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    c = pdf_canvas.Canvas(path, pagesize=letter)
    w, h = letter
    margin = 34

    y = h - 34
    c.setFont("Helvetica-Bold", 13)
    c.drawString(margin, y, title)
    y -= 20

    data = [[f"{k} (mm)" if k in SIZE_FIELDS else k for k in result_fields(show_cc)]]
    for r in results:
        data.append(format_result_row(r, size_decimals, ratio_decimals, show_cc))
    if len(data) > 1:
        table = Table(data, colWidths=[(w - 2 * margin) / len(data[0])] * len(data[0]))
        table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 8.5),
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 8),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#" + HEADER_BLUE)),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#" + GRID_BLUE)),
                    ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ]
            )
        )
        _tw, th = table.wrapOn(c, w - 2 * margin, y)
        table.drawOn(c, margin, y - th)
        y -= th + 24
    else:
        c.setFont("Helvetica", 9)
        c.drawString(margin, y, "No results calculated.")
        y -= 24

    series = chart_series(snapshot)
    shown = [n for n in snapshot.cases if visible_cases is None or n in visible_cases]
    markers = {}
    if marker_case:
        for r in results:
            if r.case_name == marker_case:
                markers = {k: getattr(r, k.lower()) for k in SIZE_FIELDS}
                markers = {k: v for k, v in markers.items() if is_numeric(v) and v > 0}
    chart_h = min(320, max(160, y - 80))
    _draw_grain_chart(c, margin + 20, y - chart_h, w - 2 * margin - 20, chart_h, series, snapshot.cases, shown, markers)

    c.showPage()
    c.save()
    logger.info("PDF written to %s", path)


def _draw_grain_chart(c, left, bottom, width, height, series, all_cases, shown, markers):
    c.setStrokeColorRGB(0.2, 0.2, 0.2)
    c.rect(left, bottom, width, height)
    if not series:
        return
    minx = max(series[0]["sieve_size"], 0.001)
    maxx = max(series[-1]["sieve_size"], minx * 10)
    log_min = math.log10(minx)
    log_max = math.log10(maxx)
    if abs(log_max - log_min) < 1e-9:
        return

    def pxy(x, y):
        # Small sizes on the left, like the on-screen chart.
        px = left + ((math.log10(x) - log_min) / (log_max - log_min)) * width
        py = bottom + (y / 100.0) * height
        return px, py

    c.setFont("Helvetica", 7)
    c.setStrokeColorRGB(0.85, 0.88, 0.92)
    c.setFillColorRGB(0.2, 0.2, 0.2)
    for yp in range(0, 101, 10):
        _x, py = pxy(minx, yp)
        c.line(left, py, left + width, py)
        c.drawString(left - 18, py - 2, f"{yp}")
    for s in TICK_SIZES:
        if s < minx or s > maxx:
            continue
        px, _y = pxy(s, 0)
        c.line(px, bottom, px, bottom + height)
        c.drawCentredString(px, bottom - 9, f"{s:g}")

    legend_x = left
    for idx, case_name in enumerate(all_cases):
        if case_name not in shown:
            continue
        pts = [(r["sieve_size"], r[case_name]) for r in series if r[case_name] is not None]
        if len(pts) < 2:
            continue
        color = colors.HexColor(CHART_COLORS[idx % len(CHART_COLORS)])
        c.setStrokeColor(color)
        c.setFillColor(color)
        last = None
        for x, yv in pts:
            px, py = pxy(max(x, minx), yv)
            c.circle(px, py, 1.7, stroke=1, fill=1)
            if last:
                c.line(last[0], last[1], px, py)
            last = (px, py)
        c.line(legend_x, bottom + height + 10, legend_x + 14, bottom + height + 10)
        c.setFillColorRGB(0.2, 0.2, 0.2)
        c.drawString(legend_x + 17, bottom + height + 7, case_name)
        legend_x += 60

    c.setDash(3, 3)
    c.setStrokeColorRGB(0.5, 0.5, 0.5)
    c.setFillColorRGB(0.3, 0.3, 0.3)
    for key, size in markers.items():
        if size < minx or size > maxx:
            continue
        px, _y = pxy(size, 0)
        c.line(px, bottom, px, bottom + height)
        c.drawString(px + 2, bottom + height - 10, f"{key}={size:.3f}mm")
    c.setDash()

    c.setFillColorRGB(0.7, 0.1, 0.1)
    c.setFont("Helvetica-Bold", 8)
    c.drawCentredString(left + width / 2, bottom - 21, "Particle Size (mm, log scale)")
    c.saveState()
    c.translate(left - 26, bottom + height / 2)
    c.rotate(90)
    c.drawCentredString(0, 0, "Percent Passing (%)")
    c.restoreState()
