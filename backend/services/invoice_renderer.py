"""
Invoice Renderer — fixed-layout A4 PDFs with reportlab.

Pure transform: Order (or CreditNote) → PDF bytes. Nothing is read from the
store and nothing is rounded here; amounts arrive pre-rounded and are only
formatted as €0.00.

Layout (points, origin bottom-left, cursor `y` walks downwards):

    ph-60    FACTUUR (centered, 16pt)
    ph-110   Factuurnummer / Factuurdatum / Ordernr. / Besteldatum (12pt steps)
    ph-220   Verkocht aan: (left)          Verzenden naar: (pw/2+20)
             Betaalmethode                 Bezorgmethode
             Product ............ prijs ........ Aantal
             ─────────────────────────────────────────
             rows
             ─────────────────────────────────────────
                                 Subtotaal:   €0.00
                                       BTW:   €0.00
                                Eindtotaal:   €0.00
             (due-date note for unpaid on-account orders)
"""
import io
import logging
import os
from datetime import datetime
from typing import Iterable, Optional

from reportlab.pdfgen import canvas as pdf_canvas

from domain.constants import PAYMENT_METHOD_LABELS
from domain.enums import PaymentStatus
from domain.errors import RenderError
from models import CreditNote, CustomerSnapshot, Order, utc_now

logger = logging.getLogger(__name__)

PAGE_WIDTH = 595.28
PAGE_HEIGHT = 841.89
MARGIN = 40
FONT = "Helvetica"
BODY_SIZE = 10
LINE = 12
ROW = 14
RULE_WIDTH = 0.5

BACKGROUND_NAMES = ("invoice.png", "invoice.jpg", "invoice.jpeg")


# ── Formatting ──────────────────────────────────────────────────────

def format_amount(value: Optional[float]) -> str:
    return f"€{float(value or 0):.2f}"


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d-%m-%Y") if value else ""


def payment_method_label(method: str) -> str:
    raw = (method or "").strip().lower()
    return PAYMENT_METHOD_LABELS.get(raw, method or "—")


def due_date_note(order: Order) -> Optional[str]:
    """Note printed under the totals of an unpaid on-account invoice."""
    if not order.is_on_account or order.payment_status == PaymentStatus.PAID:
        return None
    return f"Betaling nog niet voldaan. Graag betalen voor {format_date(order.due_date())}."


def find_background(dirs: Iterable[str]) -> Optional[str]:
    for name in BACKGROUND_NAMES:
        for d in dirs:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def billing_lines(c: CustomerSnapshot) -> list[str]:
    lines = []
    if c.company:
        lines.append(c.company)
    lines.append(c.full_name)
    lines.append(c.address or "")
    lines.append(f"{c.postal_code or ''} {c.city or ''}".strip())
    lines.append(c.country or "")
    if c.vat_number:
        lines.append(f"BTW: {c.vat_number}")
    return lines


def shipping_lines(c: CustomerSnapshot) -> list[str]:
    """Explicit shipping address when present, otherwise the billing address."""
    explicit = any([c.shipping_address, c.shipping_postal_code, c.shipping_city])
    name = f"{c.shipping_first_name or ''} {c.shipping_last_name or ''}".strip() or c.full_name
    lines = [name]
    if explicit:
        if c.shipping_company:
            lines.append(c.shipping_company)
        lines.append(c.shipping_address or "")
        lines.append(f"{c.shipping_postal_code or ''} {c.shipping_city or ''}".strip())
        lines.append(c.shipping_country or c.country or "")
    else:
        if c.company:
            lines.append(c.company)
        lines.append(c.address or "")
        lines.append(f"{c.postal_code or ''} {c.city or ''}".strip())
        lines.append(c.country or "")
    return lines


# ── Drawing ─────────────────────────────────────────────────────────

class _Page:
    """Thin wrapper over a reportlab canvas with the helpers the layout needs."""

    def __init__(self, background_dirs: Iterable[str], compress: bool, title: str):
        self.buf = io.BytesIO()
        self.c = pdf_canvas.Canvas(
            self.buf,
            pagesize=(PAGE_WIDTH, PAGE_HEIGHT),
            pageCompression=1 if compress else 0,
            invariant=1,
        )
        self.c.setTitle(title)
        self.background = find_background(background_dirs)
        self.draw_background()

    def draw_background(self) -> None:
        if not self.background:
            return
        try:
            self.c.drawImage(self.background, 0, 0, width=PAGE_WIDTH, height=PAGE_HEIGHT)
        except Exception as e:
            logger.warning(f"Invoice background skipped ({self.background}): {e}")
            self.background = None

    def new_page(self) -> float:
        self.c.showPage()
        self.draw_background()
        return PAGE_HEIGHT - 60

    def text(self, value: str, x: float, y: float, size: float = BODY_SIZE) -> None:
        self.c.setFont(FONT, size)
        self.c.drawString(x, y, value or "")

    def right(self, value: str, right_x: float, y: float, size: float = BODY_SIZE) -> None:
        self.c.setFont(FONT, size)
        self.c.drawRightString(right_x, y, value or "")

    def centered(self, value: str, y: float, size: float = BODY_SIZE) -> None:
        self.c.setFont(FONT, size)
        self.c.drawCentredString(PAGE_WIDTH / 2, y, value or "")

    def rule(self, x1: float, x2: float, y: float) -> None:
        self.c.setLineWidth(RULE_WIDTH)
        self.c.line(x1, y, x2, y)

    def finish(self) -> bytes:
        self.c.showPage()
        self.c.save()
        return self.buf.getvalue()


def _address_block(page: _Page, heading: str, lines: list[str], x: float, y: float) -> float:
    page.text(heading, x, y)
    y -= ROW
    for line in lines:
        page.text(line, x, y)
        y -= LINE
    return y


def render_invoice(
    order: Order,
    *,
    issued_at: Optional[datetime] = None,
    background_dirs: Iterable[str] = (),
    compress: bool = True,
) -> bytes:
    """
    Render the invoice PDF for `order`.

    Raises:
        RenderError: reportlab failed to produce the document
    """
    try:
        return _render_invoice(order, issued_at, list(background_dirs), compress)
    except RenderError:
        raise
    except Exception as e:
        logger.error(f"Invoice render failed for order {order.id}: {e}", exc_info=True)
        raise RenderError(f"Failed to render invoice for order {order.order_number or order.id}") from e


def _render_invoice(order: Order, issued_at: Optional[datetime], background_dirs: list[str], compress: bool) -> bytes:
    number = order.invoice_number or order.order_number or ""
    page = _Page(background_dirs, compress, title=f"Factuur {number}")
    pw, ph = PAGE_WIDTH, PAGE_HEIGHT

    page.centered("FACTUUR", ph - 60, size=16)

    meta_y = ph - 110
    page.text(f"Factuurnummer: {number}", MARGIN, meta_y)
    meta_y -= LINE
    page.text(f"Factuurdatum: {format_date(issued_at or order.created_at or utc_now())}", MARGIN, meta_y)
    meta_y -= LINE
    if order.order_number:
        page.text(f"Ordernr.: {order.order_number}", MARGIN, meta_y)
        meta_y -= LINE
    if order.created_at:
        page.text(f"Besteldatum: {format_date(order.created_at)}", MARGIN, meta_y)

    right_col = pw / 2 + 20
    addr_y = _address_block(page, "Verkocht aan:", billing_lines(order.customer), MARGIN, ph - 220)
    ship_y = _address_block(page, "Verzenden naar:", shipping_lines(order.customer), right_col, ph - 220)

    method_y = min(addr_y, ship_y) - 16
    page.text("Betaalmethode", MARGIN, method_y)
    page.text(payment_method_label(order.payment_method), MARGIN, method_y - LINE)
    page.text("Bezorgmethode", right_col, method_y)
    page.text(order.shipping_method or "—", right_col, method_y - LINE)

    # Line items
    price_right = pw - MARGIN - 150
    qty_right = pw - MARGIN
    y = method_y - 40
    page.text("Product", MARGIN, y)
    page.right("prijs", price_right, y)
    page.right("Aantal", qty_right, y)
    y -= 6
    page.rule(MARGIN, pw - MARGIN, y)
    y -= ROW

    for item in order.items:
        if y < MARGIN + 2 * ROW:
            y = page.new_page()
        page.text(item.name, MARGIN, y)
        page.right(format_amount(item.price), price_right, y)
        page.right(str(item.quantity), qty_right, y)
        y -= ROW

    y -= 6
    page.rule(MARGIN, pw - MARGIN, y)
    y -= 18

    # Totals, right aligned; reserve room for five rows and the note
    if y < MARGIN + 6 * ROW:
        y = page.new_page()
    label_right = pw - MARGIN - 120

    def total_row(label: str, amount: float) -> None:
        nonlocal y
        page.right(f"{label}:", label_right, y)
        page.right(format_amount(amount), qty_right, y)
        y -= ROW

    total_row("Subtotaal", order.subtotal)
    if order.shipping_cost:
        total_row("Verzending en verwerking", order.shipping_cost)
    total_row("BTW", order.vat_amount)
    y -= 2
    page.rule(label_right, qty_right, y)
    y -= ROW
    page.right("Eindtotaal:", label_right, y, size=12)
    page.right(format_amount(order.total), qty_right, y, size=12)

    note = due_date_note(order)
    if note:
        page.centered(note, max(y - 56, MARGIN))

    return page.finish()


def render_credit_note(
    note: CreditNote,
    *,
    background_dirs: Iterable[str] = (),
    compress: bool = True,
) -> bytes:
    """Render a credit note; same page frame as invoices, negative totals."""
    try:
        return _render_credit_note(note, list(background_dirs), compress)
    except Exception as e:
        logger.error(f"Credit note render failed for {note.credit_number}: {e}", exc_info=True)
        raise RenderError(f"Failed to render credit note {note.credit_number}") from e


def _render_credit_note(note: CreditNote, background_dirs: list[str], compress: bool) -> bytes:
    page = _Page(background_dirs, compress, title=f"Creditnota {note.credit_number}")
    pw, ph = PAGE_WIDTH, PAGE_HEIGHT

    page.centered("CREDITNOTA", ph - 60, size=16)

    meta_y = ph - 110
    page.text(f"Creditnr.: {note.credit_number}", MARGIN, meta_y)
    meta_y -= LINE
    page.text(f"Datum: {format_date(note.created_at)}", MARGIN, meta_y)
    meta_y -= LINE
    if note.order_number:
        page.text(f"Ordernr.: {note.order_number}", MARGIN, meta_y)

    c = note.customer
    customer_lines = [c.full_name, c.address or "", f"{c.postal_code or ''} {c.city or ''}".strip(), c.country or ""]
    y = _address_block(page, "Klant:", customer_lines, MARGIN, ph - 210) - 20

    label_right = pw - MARGIN - 120
    amount_right = pw - MARGIN
    page.text("Product", MARGIN, y)
    page.right("Netto", label_right, y)
    page.right("Aantal", amount_right, y)
    y -= ROW
    page.rule(MARGIN, pw - MARGIN, y)
    y -= ROW

    for item in note.items:
        if y < MARGIN + 2 * ROW:
            y = page.new_page()
        page.text(item.name, MARGIN, y)
        page.right(format_amount(item.unit_price), label_right, y)
        page.right(str(item.quantity), amount_right, y)
        y -= ROW

    y -= 6
    page.rule(MARGIN, pw - MARGIN, y)
    y -= 18
    if y < MARGIN + 4 * ROW:
        y = page.new_page()

    page.right("Netto te crediteren:", label_right, y)
    page.right(format_amount(note.net_total), amount_right, y)
    y -= ROW
    page.right("BTW:", label_right, y)
    page.right(format_amount(note.vat_total), amount_right, y)
    y -= ROW + 2
    page.rule(label_right, amount_right, y)
    y -= ROW
    page.right("Totaal credit:", label_right, y, size=12)
    page.right(format_amount(note.total), amount_right, y, size=12)

    return page.finish()
