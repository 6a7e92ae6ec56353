"""
Booking form PDF renderer.

Contract:
    ``render_booking_form(record, options)`` is a pure function of its
    inputs: the canvas is created with ``invariant=1`` so reportlab omits
    the creation timestamp and random document id, and identical inputs give
    identical bytes.  The only disk access is reading the optional logo.

Layout (A4 portrait, millimetres from the top edge):
    logo, title, label/value grid, acknowledgement, internal-use band and
    fields, billing address block, notice box.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO
from pathlib import Path

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from booking_config.schema import DocumentSettings
from booking_kernel.logging_config import get_logger
from booking_workflow.domain.types import PLACEHOLDER, WorkflowRecord

logger = get_logger("workflow.renderer")

PAGE_W, PAGE_H = A4
MARGIN = 20 * mm
CONTENT_W = PAGE_W - 2 * MARGIN

LABEL_W = 58 * mm
ROW_H = 9 * mm
LOGO_W = 100 * mm
LOGO_H = 20 * mm

FILENAME_MAX_LEN = 80
FILENAME_FALLBACK = "Unknown"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_UNDERSCORE_RUNS = re.compile(r"_+")


# =============================================================================
# Formatting helpers
# =============================================================================


def format_currency(value: Decimal, symbol: str = "£") -> str:
    """Grouped amount with up to two fraction digits: ``£1,250``, ``£12.5``."""
    quantized = Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{quantized:,.2f}".rstrip("0").rstrip(".")
    return f"{symbol}{text}"


def sanitize_filename_part(value: str) -> str:
    """Restrict to ``[A-Za-z0-9_-]``, collapse underscores, cap the length."""
    cleaned = _UNDERSCORE_RUNS.sub("_", _UNSAFE_CHARS.sub("_", value or ""))
    cleaned = cleaned[:FILENAME_MAX_LEN]
    if not cleaned.strip("_"):
        return FILENAME_FALLBACK
    return cleaned


def booking_form_filename(record: WorkflowRecord) -> str:
    return (
        f"BookingForm_{sanitize_filename_part(record.name)}"
        f"_{sanitize_filename_part(record.month)}.pdf"
    )


def artifact_path(namespace: str, subject_id: str, record: WorkflowRecord) -> str:
    """Deterministic storage path ``{namespace}/{subject_id}/{filename}``."""
    return f"{namespace}/{subject_id}/{booking_form_filename(record)}"


def grid_fields(record: WorkflowRecord, currency_symbol: str = "£") -> list[tuple[str, str]]:
    """Public-facing label/value rows, in print order."""
    return [
        ("Name", record.name),
        ("Service Description", record.service_description),
        ("Amount", format_currency(record.amount, currency_symbol)),
        ("Department", record.department),
        ("Department 2", record.department_2),
        ("Number of days", str(record.number_of_days)),
        ("Month", record.month),
        ("Days", record.days),
        ("Service rate (per day)", format_currency(record.service_rate_per_day, currency_symbol)),
        (
            "Additional Cost",
            format_currency(record.additional_cost, currency_symbol)
            if record.additional_cost > 0 else "",
        ),
        ("Additional Cost Reason", record.additional_cost_reason),
    ]


def internal_fields(record: WorkflowRecord) -> list[tuple[str, str]]:
    return [
        ("Booked by", record.booked_by if record.booked_by != PLACEHOLDER else ""),
        ("Approved by", record.approver_name),
        ("Date and time of approval", record.approval_date),
    ]


# =============================================================================
# Rendering
# =============================================================================


def _y(top_mm: float) -> float:
    """Convert a distance from the top edge (mm) to reportlab's bottom-up points."""
    return PAGE_H - top_mm * mm


def _rgb(c: canvas.Canvas, r: int, g: int, b: int, stroke: bool = False) -> None:
    if stroke:
        c.setStrokeColorRGB(r / 255, g / 255, b / 255)
    else:
        c.setFillColorRGB(r / 255, g / 255, b / 255)


def _fit(text: str, font: str, size: float, width: float) -> str:
    """Truncate ``text`` with an ellipsis so it fits in ``width`` points."""
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "…", font, size) > width:
        text = text[:-1]
    return text + "…"


def _draw_logo(c: canvas.Canvas, logo_path: str | None, top: float) -> float:
    if not logo_path or not Path(logo_path).is_file():
        return top
    try:
        image = ImageReader(logo_path)
    except OSError:
        logger.warning("booking_form_logo_unreadable", extra={"logo_path": logo_path})
        return top
    x = (PAGE_W - LOGO_W) / 2
    c.drawImage(image, x, _y(top) - LOGO_H, LOGO_W, LOGO_H, mask="auto")
    return top + 20 + 12


def render_booking_form(
    record: WorkflowRecord,
    options: DocumentSettings | None = None,
) -> bytes:
    """Render the single-page booking form and return the PDF bytes."""
    opts = options or DocumentSettings()
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
    c.setTitle(f"Booking Form - {record.name}")

    top = _draw_logo(c, opts.logo_path, 15)

    c.setFont("Helvetica-Bold", 13)
    _rgb(c, 30, 30, 30)
    c.drawCentredString(PAGE_W / 2, _y(top), opts.title)
    top += 12

    # Label/value grid
    c.setLineWidth(0.3 * mm)
    _rgb(c, 180, 180, 180, stroke=True)
    value_x = MARGIN + LABEL_W
    value_w = CONTENT_W - LABEL_W
    for label, value in grid_fields(record, opts.currency_symbol):
        row_bottom = _y(top) - ROW_H
        _rgb(c, 245, 247, 250)
        c.rect(MARGIN, row_bottom, LABEL_W, ROW_H, stroke=1, fill=1)
        _rgb(c, 255, 255, 255)
        c.rect(value_x, row_bottom, value_w, ROW_H, stroke=1, fill=1)

        c.setFont("Helvetica-Bold", 9)
        _rgb(c, 50, 50, 50)
        c.drawString(MARGIN + 3 * mm, _y(top + 6), label)

        c.setFont("Helvetica", 9)
        _rgb(c, 30, 30, 30)
        c.drawString(
            value_x + 3 * mm,
            _y(top + 6),
            _fit(value or "", "Helvetica", 9, value_w - 6 * mm),
        )
        top += 9

    top += 10
    c.setFont("Helvetica-Oblique", 8.5)
    _rgb(c, 80, 80, 80)
    c.drawCentredString(PAGE_W / 2, _y(top), opts.acknowledgement)
    top += 14

    # Internal-use band
    _rgb(c, 55, 65, 81)
    c.rect(MARGIN, _y(top) - 8 * mm, CONTENT_W, 8 * mm, stroke=0, fill=1)
    c.setFont("Helvetica-Bold", 9)
    _rgb(c, 255, 255, 255)
    c.drawCentredString(PAGE_W / 2, _y(top + 5.5), "FOR INTERNAL USE ONLY")
    top += 14

    _rgb(c, 50, 50, 50)
    for label, value in internal_fields(record):
        c.setFont("Helvetica-Bold", 9)
        c.drawString(MARGIN, _y(top), f"{label} :")
        c.setFont("Helvetica", 9)
        c.drawString(MARGIN + 45 * mm, _y(top), value)
        top += 7

    top += 8
    c.setFont("Helvetica-Bold", 9)
    c.drawString(MARGIN, _y(top), opts.billing_heading)
    top += 7
    c.setFont("Helvetica", 9)
    for line in opts.billing_address:
        c.drawString(MARGIN, _y(top), line)
        top += 5.5

    if opts.notice_text:
        top += 8
        _rgb(c, 254, 243, 199)
        c.roundRect(MARGIN, _y(top) - 28 * mm, CONTENT_W, 28 * mm, 2 * mm, stroke=0, fill=1)
        c.setFont("Helvetica-Bold", 9)
        _rgb(c, 180, 83, 9)
        c.drawString(MARGIN + 3 * mm, _y(top + 6), opts.notice_heading)
        c.setFont("Helvetica", 7.5)
        _rgb(c, 120, 53, 15)
        line_top = top + 12
        for line in simpleSplit(opts.notice_text, "Helvetica", 7.5, CONTENT_W - 6 * mm):
            c.drawString(MARGIN + 3 * mm, _y(line_top), line)
            line_top += 3.5

    c.showPage()
    c.save()
    return buffer.getvalue()
