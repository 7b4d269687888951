"""Weekly report PDF renderer.

Uses reportlab platypus for the fixed-layout document. Content is assembled
first as an ordered list of ReportBlocks (header, date range, greeting,
overview, biases or encouragement, footer) so the document contract can be
checked without parsing PDF bytes.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.services.reports.exceptions import RenderError
from app.services.reports.types import BiasAggregate, UserProfile

REPORT_TITLE = "MindLedger Weekly Report"
GENERIC_GREETING_NAME = "there"
INTRO_LINE = "Here's your psychological insights summary for the past week."
OVERVIEW_TITLE = "Weekly Overview"
BIASES_TITLE = "Top Cognitive Patterns Detected"
ENCOURAGEMENT_MESSAGE = (
    "No cognitive patterns detected this week. Keep chatting to build your profile!"
)
FOOTER_TEXT = "Generated by MindLedger - Your AI Psychological Companion"

BRAND_GREEN = colors.HexColor("#4A7C59")

BLOCK_ORDER = ("header", "date_range", "greeting", "overview", "biases", "footer")


@dataclass(frozen=True)
class ReportBlock:
    """One content block. ``kind`` is ``encouragement`` in place of ``biases`` when empty."""

    kind: str
    title: str | None
    lines: tuple[str, ...]


def format_date_range(window_start: datetime, window_end: datetime) -> str:
    start = f"{window_start:%b} {window_start.day}, {window_start.year}"
    end = f"{window_end:%b} {window_end.day}, {window_end.year}"
    return f"{start} - {end}"


def format_bias_line(rank: int, bias: BiasAggregate) -> str:
    return f"{rank}. {bias.name} - {bias.count}x (avg intensity: {bias.avg_intensity}%)"


def _coerce_biases(top_biases: Any) -> list[BiasAggregate]:
    if top_biases is None:
        return []
    if not isinstance(top_biases, (list, tuple)):
        raise RenderError(f"top_biases must be a sequence, got {type(top_biases).__name__}")
    biases: list[BiasAggregate] = []
    for entry in top_biases:
        try:
            bias = entry if isinstance(entry, BiasAggregate) else BiasAggregate.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            raise RenderError(f"malformed bias aggregate {entry!r}") from exc
        if not bias.name or bias.count < 1 or not 0 <= bias.avg_intensity <= 100:
            raise RenderError(f"bias aggregate out of range: {bias!r}")
        biases.append(bias)
    return biases


def _validate(
    window_start: datetime,
    window_end: datetime,
    session_count: int,
    current_streak: int,
) -> None:
    if not isinstance(window_start, datetime) or not isinstance(window_end, datetime):
        raise RenderError("window bounds must be datetimes")
    if window_start >= window_end:
        raise RenderError(f"window start {window_start} is not before end {window_end}")
    for label, value in (("session_count", session_count), ("current_streak", current_streak)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise RenderError(f"{label} must be a non-negative int, got {value!r}")


def build_blocks(
    profile: UserProfile | None,
    window_start: datetime,
    window_end: datetime,
    session_count: int,
    current_streak: int,
    top_biases: list[BiasAggregate],
) -> list[ReportBlock]:
    """Return the report's content blocks in document order.

    Raises RenderError on malformed input.
    """
    _validate(window_start, window_end, session_count, current_streak)
    biases = _coerce_biases(top_biases)

    first_name = (profile.first_name or "").strip() if profile is not None else ""
    greeting_name = first_name or GENERIC_GREETING_NAME

    if biases:
        bias_block = ReportBlock(
            kind="biases",
            title=BIASES_TITLE,
            lines=tuple(format_bias_line(i, b) for i, b in enumerate(biases, start=1)),
        )
    else:
        bias_block = ReportBlock(kind="encouragement", title=None, lines=(ENCOURAGEMENT_MESSAGE,))

    return [
        ReportBlock(kind="header", title=REPORT_TITLE, lines=()),
        ReportBlock(
            kind="date_range", title=None, lines=(format_date_range(window_start, window_end),)
        ),
        ReportBlock(kind="greeting", title=None, lines=(f"Hello {greeting_name},", INTRO_LINE)),
        ReportBlock(
            kind="overview",
            title=OVERVIEW_TITLE,
            lines=(f"Sessions: {session_count}", f"Current Streak: {current_streak} days"),
        ),
        bias_block,
        ReportBlock(kind="footer", title=None, lines=(FOOTER_TEXT,)),
    ]


def _create_styles():
    """Create PDF paragraph styles."""
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="ReportTitle",
        parent=styles["Heading1"],
        fontSize=24,
        leading=28,
        textColor=BRAND_GREEN,
        alignment=TA_CENTER,
        spaceAfter=12,
    ))
    styles.add(ParagraphStyle(
        name="DateRange",
        parent=styles["Normal"],
        fontSize=12,
        textColor=colors.HexColor("#666666"),
        alignment=TA_CENTER,
    ))
    styles.add(ParagraphStyle(
        name="Greeting",
        parent=styles["Normal"],
        fontSize=16,
        leading=20,
        textColor=colors.HexColor("#333333"),
        spaceAfter=8,
    ))
    styles.add(ParagraphStyle(
        name="SectionHeader",
        parent=styles["Heading2"],
        fontSize=14,
        textColor=BRAND_GREEN,
        spaceAfter=6,
    ))
    styles.add(ParagraphStyle(
        name="ReportBody",
        parent=styles["Normal"],
        fontSize=11,
        leading=15,
        textColor=colors.HexColor("#333333"),
    ))
    styles.add(ParagraphStyle(
        name="Muted",
        parent=styles["Normal"],
        fontSize=11,
        leading=15,
        textColor=colors.HexColor("#666666"),
    ))
    styles.add(ParagraphStyle(
        name="Footer",
        parent=styles["Normal"],
        fontSize=10,
        textColor=colors.HexColor("#999999"),
        alignment=TA_CENTER,
    ))
    return styles


def _bias_table(biases: list[BiasAggregate]) -> Table:
    rows = [["#", "Pattern", "Count", "Avg intensity"]]
    for rank, bias in enumerate(biases, start=1):
        rows.append([str(rank), bias.name, f"{bias.count}x", f"{bias.avg_intensity}%"])
    table = Table(rows, colWidths=[0.4 * inch, 3.6 * inch, 0.9 * inch, 1.3 * inch])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_GREEN),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("ALIGN", (2, 0), (-1, -1), "CENTER"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#DDDDDD")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F4F8F5")]),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]))
    return table


def render(
    profile: UserProfile | None,
    window_start: datetime,
    window_end: datetime,
    session_count: int,
    current_streak: int,
    top_biases: list[BiasAggregate],
) -> bytes:
    """Render the weekly report as PDF bytes.

    Deterministic for identical input (reportlab invariant mode). Raises
    RenderError for malformed input; never for an empty bias list.
    """
    blocks = build_blocks(
        profile, window_start, window_end, session_count, current_streak, top_biases
    )
    biases = _coerce_biases(top_biases)
    styles = _create_styles()

    def esc(text: str) -> str:
        return html.escape(text, quote=False)

    story: list = []
    for block in blocks:
        if block.kind == "header":
            story.append(Paragraph(esc(block.title or ""), styles["ReportTitle"]))
        elif block.kind == "date_range":
            story.append(Paragraph(esc(block.lines[0]), styles["DateRange"]))
            story.append(Spacer(1, 0.4 * inch))
        elif block.kind == "greeting":
            story.append(Paragraph(esc(block.lines[0]), styles["Greeting"]))
            story.append(Paragraph(esc(block.lines[1]), styles["Muted"]))
            story.append(Spacer(1, 0.35 * inch))
        elif block.kind == "overview":
            story.append(Paragraph(esc(block.title or ""), styles["SectionHeader"]))
            for line in block.lines:
                story.append(Paragraph(esc(line), styles["ReportBody"]))
            story.append(Spacer(1, 0.35 * inch))
        elif block.kind == "biases":
            story.append(Paragraph(esc(block.title or ""), styles["SectionHeader"]))
            story.append(_bias_table(biases))
            story.append(Spacer(1, 0.35 * inch))
        elif block.kind == "encouragement":
            story.append(Paragraph(esc(block.lines[0]), styles["Muted"]))
            story.append(Spacer(1, 0.35 * inch))
        elif block.kind == "footer":
            story.append(Paragraph(esc(block.lines[0]), styles["Footer"]))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=REPORT_TITLE,
        author="MindLedger",
        invariant=1,
    )
    try:
        doc.build(story)
    except Exception as exc:
        raise RenderError(f"PDF build failed: {exc}") from exc
    return buffer.getvalue()
