"""Paginated PDF rendering of a data export (reportlab platypus).

Layout: title block, then one table per domain. Multi-row domains are
clipped to ``preview_rows`` so the document stays a reasonable length;
the structured export is the complete copy. Every page carries a
"Page i of n" footer.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen.canvas import Canvas
from reportlab.platypus import Flowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

if TYPE_CHECKING:
    from caretrack.compliance.export import DomainExport, ExportResult

logger = logging.getLogger(__name__)

TITLE = "Complete Health Records"
FOOTER_NOTICE = "GDPR Compliant Health Records Export"
EMPTY_DOMAIN = "N/A"
HEADER_COLOR = colors.Color(59 / 255, 130 / 255, 246 / 255)


class FooterCanvas(Canvas):
    """Canvas that defers page output until the page count is known."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._page_states: list[dict[str, Any]] = []

    def showPage(self) -> None:  # noqa: N802 (reportlab API)
        self._page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        total = len(self._page_states)
        for state in self._page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        width, _ = self._pagesize
        self.setFont("Helvetica", 8)
        self.drawCentredString(width / 2, 10 * mm, f"Page {self._pageNumber} of {total} - {FOOTER_NOTICE}")


def table_rows(domain: DomainExport, preview_rows: int) -> list[list[str]]:
    """Header plus body rows for one domain, as plain strings.

    Single-row domains (profile, medical details) become a Field/Value
    table. Empty domains yield no rows.
    """
    adapter = domain.adapter
    if not domain.rows:
        return []
    if adapter.single:
        row = domain.rows[0]
        return [["Field", "Value"]] + [[col.header, col.render(row)] for col in adapter.columns]
    header = [col.header for col in adapter.columns]
    body = [[col.render(row) for col in adapter.columns] for row in domain.rows[:preview_rows]]
    return [header, *body]


def _section_title(domain: DomainExport) -> str:
    if domain.adapter.single or not domain.rows:
        return domain.adapter.title
    return f"{domain.adapter.title} ({len(domain.rows)} records)"


def _table(rows: list[list[str]], cell_style: ParagraphStyle, striped: bool) -> Table:
    data = [[Paragraph(escape(str(cell)), cell_style) for cell in row] for row in rows]
    table = Table(data, repeatRows=1, hAlign="LEFT")
    commands: list[tuple[Any, ...]] = [
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOX", (0, 0), (-1, -1), 0.25, colors.grey),
    ]
    if striped:
        commands.append(("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]))
    else:
        commands.append(("INNERGRID", (0, 0), (-1, -1), 0.25, colors.grey))
    table.setStyle(TableStyle(commands))
    return table


def build_story(result: ExportResult, preview_rows: int) -> list[Flowable]:
    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle("cell", parent=styles["BodyText"], fontSize=8, leading=10)
    story: list[Flowable] = [
        Paragraph(TITLE, styles["Title"]),
        Paragraph(f"Export Date: {result.export_date:%Y-%m-%d %H:%M} UTC", styles["Normal"]),
        Spacer(1, 12),
    ]
    if not result.complete:
        story.append(Paragraph(
            "This export is incomplete. Missing sections: " + escape(", ".join(result.failed_domains)),
            styles["Normal"],
        ))
        story.append(Spacer(1, 8))

    for domain in result.domains:
        story.append(Paragraph(escape(_section_title(domain)), styles["Heading2"]))
        if not domain.ok:
            story.append(Paragraph("Could not be retrieved.", styles["Normal"]))
        elif not domain.rows:
            story.append(Paragraph(EMPTY_DOMAIN, styles["Normal"]))
        else:
            story.append(_table(table_rows(domain, preview_rows), cell_style, striped=not domain.adapter.single))
            if not domain.adapter.single and len(domain.rows) > preview_rows:
                story.append(Paragraph(
                    f"Showing the first {preview_rows} of {len(domain.rows)} records. "
                    "The structured export contains every record.",
                    styles["Italic"],
                ))
        story.append(Spacer(1, 10))
    return story


def render_document(result: ExportResult, preview_rows: int = 50) -> bytes:
    """Render ``result`` to PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=TITLE,
        leftMargin=14 * mm,
        rightMargin=14 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
    )
    doc.build(build_story(result, preview_rows), canvasmaker=FooterCanvas)
    logger.debug("Rendered export PDF for user=%s (%d bytes)", result.user_id, buffer.tell())
    return buffer.getvalue()
