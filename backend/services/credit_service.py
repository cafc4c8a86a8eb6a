"""
Credit notes against an order.

Credit numbers come from their own yearly sequence. Without explicit lines
the whole order is credited, shipping included. Amounts are stored negative.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from domain.constants import CREDIT_NOTES, CREDIT_SEQUENCE
from domain.errors import ValidationError
from models import CreditItem, CreditNote, Order
from services.async_executor import run_blocking
from services.document_store import DocumentStore
from services.invoice_renderer import render_credit_note
from services.invoice_service import load_order, remove_file, save_pdf
from services.pricing_service import VatRates, credit_totals
from services.sequence_service import SequenceGenerator

logger = logging.getLogger(__name__)


def full_credit_lines(order: Order, rates: VatRates) -> list[dict]:
    lines = [
        {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": item.price,
            "vat_rate": rates.rate_for(item.vat_category),
        }
        for item in order.items
    ]
    if order.shipping_cost:
        lines.append({
            "name": "Verzending en verwerking",
            "quantity": 1,
            "unit_price": order.shipping_cost,
            "vat_rate": rates.high,
        })
    return lines


class CreditNoteService:
    def __init__(
        self,
        store: DocumentStore,
        sequences: SequenceGenerator,
        *,
        invoice_dir: str,
        url_prefix: str = "/invoices",
        background_dirs: Iterable[str] = (),
        rates: VatRates = VatRates(),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.sequences = sequences
        self.invoice_dir = invoice_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.background_dirs = list(background_dirs)
        self.rates = rates
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings, store, sequences) -> "CreditNoteService":
        return cls(
            store,
            sequences,
            invoice_dir=settings.invoice_dir,
            url_prefix=settings.invoice_url_prefix,
            background_dirs=settings.background_dirs_list,
            rates=VatRates.from_settings(settings),
        )

    async def issue_credit_note(self, order_id: str, items: Optional[list[dict]] = None) -> CreditNote:
        """
        Raises:
            NotFoundError: order absent
            ValidationError: bad credit lines or credit larger than the order
            RenderError / PersistenceError: number released, nothing stored
        """
        order = await load_order(self.store, order_id)
        lines = items if items else full_credit_lines(order, self.rates)
        for line in lines:
            if int(line.get("quantity") or 0) < 1:
                raise ValidationError("Quantity must be at least 1", field="items")
            if float(line.get("unit_price") or 0) < 0:
                raise ValidationError("Credit amounts are given as positive prices", field="items")

        net, vat, total = credit_totals(lines)
        if -total > order.total + 0.01:
            raise ValidationError(
                "Credit exceeds the order total",
                details={"order_total": order.total, "credit_total": total},
            )

        now = self._clock()
        number = await self.sequences.next_credit_number(now.year)
        filename = f"credit-{number}.pdf"
        path = os.path.join(self.invoice_dir, filename)
        written = False
        try:
            note = CreditNote(
                credit_number=number,
                order_id=order.id,
                order_number=order.order_number,
                customer=order.customer,
                items=[CreditItem.model_validate(line) for line in lines],
                net_total=net,
                vat_total=vat,
                total=total,
                pdf_url=f"{self.url_prefix}/{filename}",
                created_at=now,
            )
            pdf = await run_blocking(render_credit_note, note, background_dirs=self.background_dirs)
            await run_blocking(save_pdf, path, pdf)
            written = True
            doc = await self.store.create(CREDIT_NOTES, note.to_document())
        except Exception:
            if written:
                await run_blocking(remove_file, path)
            try:
                await self.sequences.release_yearly(CREDIT_SEQUENCE, number)
            except Exception as e:
                logger.error(f"Could not release credit number {number}: {e}")
            raise

        note.id = doc.id
        logger.info(f"Credit note {number} issued for order {order.order_number or order.id} ({total:.2f})")
        return note
