"""
Invoice Orchestrator — ensure_invoice(order_id).

Idempotent: an order that already references an invoice number and URL is
returned as-is. Otherwise exactly one number is allocated, the PDF is
rendered and written, and the order is updated with a write conditional on
the version that was read. The number is handed back to the sequence when
anything fails before the order references it.

    load → (fast path) → allocate → render → write PDF → conditional merge → email
"""
import asyncio
import logging
import os
import tempfile
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from domain.constants import INVOICE_SEQUENCE, ORDERS
from domain.errors import ConflictError
from models import Order
from services.async_executor import run_blocking
from services.document_store import DocumentStore
from services.effects import EffectResult, run_peripheral
from services.invoice_renderer import render_invoice
from services.sequence_service import SequenceGenerator

logger = logging.getLogger(__name__)

MAX_MERGE_ATTEMPTS = 3


@dataclass
class InvoiceResult:
    invoice_number: str
    invoice_url: str
    created: bool
    effects: list[EffectResult] = field(default_factory=list)


def invoice_filename(number: str) -> str:
    return f"factuur-{number}.pdf"


def save_pdf(path: str, content: bytes) -> None:
    """Write via a temp file so readers never see a half-written PDF."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=directory, suffix=".tmp", delete=False) as fh:
        fh.write(content)
    try:
        os.replace(fh.name, path)
    except OSError:
        remove_file(fh.name)
        raise


def remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def load_order(store: DocumentStore, order_id: str) -> Order:
    doc = await store.get_required(ORDERS, order_id, "Order")
    return Order.from_document(doc.id, doc.data, doc.version)


class InvoiceOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        sequences: SequenceGenerator,
        notifier,
        *,
        invoice_dir: str,
        url_prefix: str = "/invoices",
        background_dirs: Iterable[str] = (),
        clock: Optional[Callable[[], datetime]] = None,
        renderer: Callable[..., bytes] = render_invoice,
    ):
        self.store = store
        self.sequences = sequences
        self.notifier = notifier
        self.invoice_dir = invoice_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.background_dirs = list(background_dirs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._render = renderer
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = defaultdict(int)

    @classmethod
    def from_settings(cls, settings, store, sequences, notifier) -> "InvoiceOrchestrator":
        return cls(
            store,
            sequences,
            notifier,
            invoice_dir=settings.invoice_dir,
            url_prefix=settings.invoice_url_prefix,
            background_dirs=settings.background_dirs_list,
        )

    def invoice_path(self, number: str) -> str:
        return os.path.join(self.invoice_dir, invoice_filename(number))

    def invoice_url(self, number: str) -> str:
        return f"{self.url_prefix}/{invoice_filename(number)}"

    async def ensure_invoice(self, order_id: str) -> InvoiceResult:
        """
        Raises:
            NotFoundError: order absent
            RenderError: PDF could not be produced (number released)
            PersistenceError: store failure (number released)
            ConflictError: order kept changing underneath us
        """
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._holders[order_id] += 1
        try:
            async with lock:
                return await self._ensure(order_id)
        finally:
            self._holders[order_id] -= 1
            if not self._holders[order_id]:
                del self._holders[order_id]
                self._locks.pop(order_id, None)

    async def _ensure(self, order_id: str) -> InvoiceResult:
        # Calls for the same order are serialized in-process; the version check covers other processes
        for attempt in range(1, MAX_MERGE_ATTEMPTS + 1):
            order = await load_order(self.store, order_id)
            if order.has_invoice:
                logger.info(f"Order {order_id} already has invoice {order.invoice_number}")
                return InvoiceResult(order.invoice_number, order.invoice_url, created=False)

            try:
                if order.invoice_number:
                    return await self._issue(order, existing=order.invoice_number)
                return await self._issue(order)
            except ConflictError:
                winner = await load_order(self.store, order_id)
                if winner.has_invoice:
                    logger.info(f"Concurrent call issued invoice {winner.invoice_number} for order {order_id}")
                    return InvoiceResult(winner.invoice_number, winner.invoice_url, created=False)
                if attempt == MAX_MERGE_ATTEMPTS:
                    raise
                logger.warning(f"Order {order_id} changed during invoicing, retrying ({attempt})")

        raise ConflictError(f"Could not invoice order {order_id}")  # pragma: no cover

    async def _issue(self, order: Order, existing: Optional[str] = None) -> InvoiceResult:
        """Allocate, render, write, merge. With `existing` the stored number is kept and never released."""
        now = self._clock()
        number = existing or await self.sequences.next_invoice_number(now.year)
        path = self.invoice_path(number)
        url = self.invoice_url(number)
        written = False

        try:
            issued = order.model_copy(update={"invoice_number": number})
            pdf = await run_blocking(
                self._render, issued, issued_at=now, background_dirs=self.background_dirs
            )
            await run_blocking(save_pdf, path, pdf)
            written = True
            stored = await self.store.update(
                ORDERS,
                order.id,
                {
                    "invoice_number": number,
                    "invoice_url": url,
                    "invoice_sent_date": now.isoformat(),
                    "updated_at": now.isoformat(),
                },
                expected_version=order.version,
            )
        except Exception:
            # Remove the file while the number is still ours; a released number can be reissued at once
            if written and not existing:
                await run_blocking(remove_file, path)
            if not existing:
                await self._release(number)
            raise

        logger.info(f"Invoice {number} issued for order {order.order_number or order.id}")
        invoiced = Order.from_document(order.id, stored.data, stored.version)
        effects = [await run_peripheral("invoice_email", self.notifier.invoice_delivery(invoiced, pdf))]
        return InvoiceResult(number, url, created=not existing, effects=effects)

    async def _release(self, number: str) -> None:
        try:
            await self.sequences.release_yearly(INVOICE_SEQUENCE, number)
        except Exception as e:
            logger.error(f"Could not release invoice number {number}: {e}")
