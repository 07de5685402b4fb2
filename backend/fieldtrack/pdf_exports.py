from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Flowable, LongTable, Paragraph, SimpleDocTemplate, Spacer, TableStyle

PAGE_SIZE = landscape(A4)
PAGE_WIDTH, PAGE_HEIGHT = PAGE_SIZE
MARGIN_X = 12 * mm
BOTTOM_MARGIN = 16 * mm
CONTENT_WIDTH = PAGE_WIDTH - (MARGIN_X * 2)

HEADER_TOP = 14 * mm
HEADER_HEIGHT = 22 * mm
HEADER_GAP = 6 * mm

KPI_HEIGHT = 48.0
KPI_GAP = 8.0
KPI_RADIUS = 6.0

FOOTER_TEXT = "Field check-in report"

PALETTE = {
    "ink": colors.HexColor("#1F2937"),
    "muted": colors.HexColor("#6B7280"),
    "accent": colors.HexColor("#0F766E"),
    "rule": colors.HexColor("#CBD5E1"),
    "card": colors.HexColor("#F0FDFA"),
    "card_edge": colors.HexColor("#99F6E4"),
    "row_a": colors.white,
    "row_b": colors.HexColor("#F3F4F6"),
    "grid": colors.HexColor("#E5E7EB"),
    "flag": colors.HexColor("#FEF3C7"),
    "totals": colors.HexColor("#CCFBF1"),
}

_STYLES = getSampleStyleSheet()
HEADING_STYLE = ParagraphStyle(
    "fieldtrack-heading",
    parent=_STYLES["Heading5"],
    fontName="Helvetica-Bold",
    fontSize=10.5,
    leading=13,
    textColor=PALETTE["accent"],
    spaceAfter=3,
)
HEAD_CELL_STYLE = ParagraphStyle(
    "fieldtrack-head-cell",
    parent=_STYLES["BodyText"],
    fontName="Helvetica-Bold",
    fontSize=8,
    leading=10,
    textColor=colors.white,
    wordWrap="CJK",
)
BODY_CELL_STYLE = ParagraphStyle(
    "fieldtrack-body-cell",
    parent=_STYLES["BodyText"],
    fontName="Helvetica",
    fontSize=7.6,
    leading=9.2,
    textColor=PALETTE["ink"],
    wordWrap="CJK",
)
TOTAL_CELL_STYLE = ParagraphStyle(
    "fieldtrack-total-cell",
    parent=BODY_CELL_STYLE,
    fontName="Helvetica-Bold",
)


def _text(value: Any, *, fallback: str = "-") -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _clip(canv: canvas.Canvas, text: str, *, font: str, size: float, width: float) -> str:
    if canv.stringWidth(text, font, size) <= width:
        return text
    clipped = text
    while clipped and canv.stringWidth(clipped + "...", font, size) > width:
        clipped = clipped[:-1]
    return clipped + "..." if clipped else ""


def _period_label(report: dict[str, Any]) -> str:
    start = _text(report.get("from"), fallback="")
    end = _text(report.get("to"), fallback="")
    if start and end:
        return f"{start} to {end}"
    if start:
        return f"From {start}"
    if end:
        return f"Until {end}"
    return "All dates"


def _filter_label(report: dict[str, Any]) -> str:
    parts = []
    for key, label in (("name", "Name"), ("email", "Email"), ("district", "District"), ("group", "Group")):
        value = _text(report.get(key), fallback="")
        if value:
            parts.append(f"{label}: {value}")
    return " | ".join(parts) or "No filters"


def draw_header(canv: canvas.Canvas, *, title: str, subtitle_lines: Sequence[str]) -> None:
    top = PAGE_HEIGHT - HEADER_TOP
    bottom = top - HEADER_HEIGHT

    canv.saveState()
    canv.setFillColor(PALETTE["accent"])
    canv.rect(MARGIN_X, bottom, 3, HEADER_HEIGHT, stroke=0, fill=1)

    text_x = MARGIN_X + 10
    text_width = CONTENT_WIDTH - 10
    canv.setFillColor(PALETTE["ink"])
    canv.setFont("Helvetica-Bold", 16)
    canv.drawString(text_x, top - 18, _clip(canv, title, font="Helvetica-Bold", size=16, width=text_width))

    canv.setFillColor(PALETTE["muted"])
    canv.setFont("Helvetica", 9)
    line_y = top - 32
    for line in list(subtitle_lines)[:2]:
        canv.drawString(text_x, line_y, _clip(canv, line, font="Helvetica", size=9, width=text_width))
        line_y -= 11

    canv.setStrokeColor(PALETTE["rule"])
    canv.setLineWidth(0.6)
    canv.line(MARGIN_X, bottom - 2, PAGE_WIDTH - MARGIN_X, bottom - 2)
    canv.restoreState()


class NumberedCanvas(canvas.Canvas):
    """Defers page output so the footer can show the final page count."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._pages: list[dict[str, Any]] = []

    def showPage(self) -> None:
        self._pages.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        page_count = len(self._pages)
        for state in self._pages:
            self.__dict__.update(state)
            self._draw_footer(page_count)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def _draw_footer(self, page_count: int) -> None:
        self.saveState()
        self.setStrokeColor(PALETTE["rule"])
        self.setLineWidth(0.5)
        self.line(MARGIN_X, 11 * mm, PAGE_WIDTH - MARGIN_X, 11 * mm)
        self.setFillColor(PALETTE["muted"])
        self.setFont("Helvetica", 7.5)
        self.drawString(MARGIN_X, 7 * mm, FOOTER_TEXT)
        self.drawRightString(PAGE_WIDTH - MARGIN_X, 7 * mm, f"Page {self._pageNumber} / {page_count}")
        self.restoreState()


class KpiRow(Flowable):
    def __init__(self, cards: Sequence[tuple[str, str]]) -> None:
        super().__init__()
        self.cards = list(cards)
        self.width = CONTENT_WIDTH
        self.height = KPI_HEIGHT

    def wrap(self, avail_width: float, avail_height: float) -> tuple[float, float]:
        return self.width, self.height

    def draw(self) -> None:
        if not self.cards:
            return
        count = len(self.cards)
        card_width = (self.width - KPI_GAP * (count - 1)) / count
        canv = self.canv
        canv.saveState()
        for index, (label, value) in enumerate(self.cards):
            x = index * (card_width + KPI_GAP)
            inner = card_width - 16
            canv.setFillColor(PALETTE["card"])
            canv.setStrokeColor(PALETTE["card_edge"])
            canv.setLineWidth(0.8)
            canv.roundRect(x, 0, card_width, self.height, KPI_RADIUS, stroke=1, fill=1)

            canv.setFillColor(PALETTE["ink"])
            canv.setFont("Helvetica-Bold", 14)
            canv.drawString(x + 8, self.height - 22, _clip(canv, value, font="Helvetica-Bold", size=14, width=inner))
            canv.setFillColor(PALETTE["muted"])
            canv.setFont("Helvetica", 7.5)
            canv.drawString(x + 8, 9, _clip(canv, label, font="Helvetica", size=7.5, width=inner))
        canv.restoreState()


def _cell(value: Any, style: ParagraphStyle, *, fallback: str = "-") -> Paragraph:
    return Paragraph(escape(_text(value, fallback=fallback)), style)


def _build_table(
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
    widths: Sequence[float],
    flagged: Sequence[int] = (),
    totals: Sequence[Any] | None = None,
) -> LongTable:
    data: list[list[Any]] = [[Paragraph(escape(header), HEAD_CELL_STYLE) for header in headers]]
    for row in rows:
        data.append([_cell(value, BODY_CELL_STYLE) for value in row])
    if not rows:
        data.append([_cell("No records", BODY_CELL_STYLE)] + [_cell("", BODY_CELL_STYLE, fallback="") for _ in headers[1:]])
    if totals is not None:
        data.append([_cell(value, TOTAL_CELL_STYLE, fallback="") for value in totals])

    commands: list[tuple[Any, ...]] = [
        ("BACKGROUND", (0, 0), (-1, 0), PALETTE["accent"]),
        ("GRID", (0, 0), (-1, -1), 0.4, PALETTE["grid"]),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    body_rows = max(1, len(rows))
    for offset in range(body_rows):
        row_index = offset + 1
        commands.append(
            ("BACKGROUND", (0, row_index), (-1, row_index), PALETTE["row_b"] if offset % 2 else PALETTE["row_a"])
        )
    for offset in flagged:
        commands.append(("BACKGROUND", (0, offset + 1), (-1, offset + 1), PALETTE["flag"]))
    if totals is not None:
        commands.append(("BACKGROUND", (0, -1), (-1, -1), PALETTE["totals"]))

    table = LongTable(data, colWidths=list(widths), repeatRows=1, hAlign="LEFT")
    table.setStyle(TableStyle(commands))
    return table


def _build_document(*, title: str, subtitle_lines: Sequence[str], story: Sequence[Any]) -> bytes:
    buffer = BytesIO()

    def _on_page(canv: canvas.Canvas, doc: SimpleDocTemplate) -> None:
        draw_header(canv, title=title, subtitle_lines=subtitle_lines)

    doc = SimpleDocTemplate(
        buffer,
        pagesize=PAGE_SIZE,
        leftMargin=MARGIN_X,
        rightMargin=MARGIN_X,
        topMargin=HEADER_TOP + HEADER_HEIGHT + HEADER_GAP,
        bottomMargin=BOTTOM_MARGIN,
        title=title,
    )
    doc.build(list(story), onFirstPage=_on_page, onLaterPages=_on_page, canvasmaker=NumberedCanvas)
    return buffer.getvalue()


def _generated_line(report: dict[str, Any]) -> str:
    generated_at = datetime.now().strftime("%Y-%m-%d %H:%M")
    return f"Period: {_period_label(report)} | Generated: {generated_at}"


def generate_time_attendance_pdf(report: dict[str, Any]) -> bytes:
    rows = report.get("rows", []) or []

    people = {(_text(row.get("email"), fallback="") or _text(row.get("name"), fallback="")).lower() for row in rows}
    leave_days = sum(1 for row in rows if _text(row.get("leave"), fallback=""))
    flagged = [index for index, row in enumerate(rows) if _text(row.get("remark"), fallback="")]
    visits = sum(_count(row.get("visitCount")) for row in rows)

    cards = [
        ("Attendance days", str(len(rows))),
        ("People", str(len(people - {""}))),
        ("Visits", str(visits)),
        ("Leave days", str(leave_days)),
        ("Missing punches", str(len(flagged))),
    ]

    body = [
        [
            row.get("date"),
            row.get("name"),
            row.get("employeeNo"),
            row.get("district"),
            row.get("firstCheckin"),
            row.get("firstLocation"),
            row.get("lastCheckout"),
            row.get("lastLocation"),
            row.get("locationCount"),
            row.get("leave"),
            row.get("remark"),
        ]
        for row in rows
    ]
    ratios = (0.08, 0.14, 0.07, 0.09, 0.06, 0.14, 0.06, 0.14, 0.05, 0.08, 0.09)

    story: list[Any] = [
        KpiRow(cards),
        Spacer(1, 12),
        Paragraph("Daily attendance", HEADING_STYLE),
        _build_table(
            headers=[
                "Date",
                "Name",
                "Emp. No",
                "District",
                "First in",
                "First location",
                "Last out",
                "Last location",
                "Places",
                "Leave",
                "Remark",
            ],
            rows=body,
            widths=[CONTENT_WIDTH * ratio for ratio in ratios],
            flagged=flagged,
        ),
    ]
    return _build_document(
        title="Time Attendance Report",
        subtitle_lines=[_generated_line(report), _filter_label(report)],
        story=story,
    )


def generate_summary_pdf(report: dict[str, Any]) -> bytes:
    summary = report.get("summary", []) or []

    totals = {"total": 0, "completed": 0, "incomplete": 0, "ongoing": 0}
    for item in summary:
        for key in totals:
            totals[key] += _count(item.get(key))
    completion = f"{(totals['completed'] * 100.0 / totals['total']):.1f}%" if totals["total"] else "N/A"

    cards = [
        ("People", str(len(summary))),
        ("Visits", str(totals["total"])),
        ("Completed", str(totals["completed"])),
        ("Incomplete", str(totals["incomplete"])),
        ("Ongoing", str(totals["ongoing"])),
        ("Completion rate", completion),
    ]

    body = [
        [
            item.get("name"),
            item.get("employeeNo"),
            item.get("district"),
            item.get("group"),
            _count(item.get("total")),
            _count(item.get("completed")),
            _count(item.get("incomplete")),
            _count(item.get("ongoing")),
        ]
        for item in summary
    ]
    flagged = [index for index, item in enumerate(summary) if _count(item.get("incomplete"))]
    ratios = (0.24, 0.10, 0.16, 0.14, 0.09, 0.09, 0.09, 0.09)

    story: list[Any] = [
        KpiRow(cards),
        Spacer(1, 12),
        Paragraph("Visits per person", HEADING_STYLE),
        _build_table(
            headers=["Name", "Emp. No", "District", "Group", "Total", "Completed", "Incomplete", "Ongoing"],
            rows=body,
            widths=[CONTENT_WIDTH * ratio for ratio in ratios],
            flagged=flagged,
            totals=["Total", "", "", "", totals["total"], totals["completed"], totals["incomplete"], totals["ongoing"]],
        ),
    ]
    return _build_document(
        title="Visit Summary Report",
        subtitle_lines=[_generated_line(report), _filter_label(report)],
        story=story,
    )
