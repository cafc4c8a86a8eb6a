"""
Order State Machine.

Owns every workflow mutation of an order:

    new ──▶ processing ──▶ shipped ──▶ completed
     │          │             │
     └──────────┴─────────────┴──▶ cancelled

Each mutation is applied optimistically to the in-memory view (`orders`),
persisted with a write conditional on the version that was read, and
reverted to the exact prior snapshot when the write fails, unless a
concurrent mutation has replaced it in the view by then. What follows a
committed mutation (invoice generation, emails) is peripheral: it is run,
logged and reported on the result, but it never undoes the transition.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from domain.constants import ALLOWED_TRANSITIONS, ORDER_SEQUENCE, ORDER_SEQUENCE_SCOPE, ORDERS, TERMINAL_STATUSES
from domain.enums import OrderStatus, PaymentStatus, parse_requested_status
from domain.errors import InvalidTransitionError, PersistenceError, ValidationError
from models import CustomerSnapshot, Order
from services.document_store import DocumentStore
from services.effects import EffectResult, run_peripheral
from services.invoice_service import InvoiceOrchestrator, InvoiceResult
from services.pricing_service import VatRates, compute_totals
from services.sequence_service import SequenceGenerator

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    order: Order
    effects: list[EffectResult] = field(default_factory=list)
    invoice: Optional[InvoiceResult] = None

    @property
    def warnings(self) -> list[str]:
        return [f"{e.name}: {e.error}" for e in self.effects if not e.ok]


class OrderView(OrderedDict):
    """
    Per-process admin view of recently touched orders.

    Least recently written entries are dropped past `max_size`; the store
    stays the source of truth and an evicted order is simply reloaded.
    """

    def __init__(self, max_size: int = 500):
        super().__init__()
        self.max_size = max(1, max_size)

    def __setitem__(self, order_id: str, order: Order) -> None:
        super().__setitem__(order_id, order)
        self.move_to_end(order_id)
        while len(self) > self.max_size:
            self.popitem(last=False)


class OrderCommand:
    """A single in-memory mutation that can be confirmed or undone."""

    def __init__(self, orders: dict[str, Order], order: Order, changes: dict[str, Any]):
        self._orders = orders
        self.order_id = order.id
        self.snapshot = order
        self.changes = changes
        self.applied: Optional[Order] = None

    def apply(self) -> Order:
        self.applied = self.snapshot.model_copy(update=self.changes)
        self._orders[self.order_id] = self.applied
        return self.applied

    def confirm(self, stored: Order) -> Order:
        self._orders[self.order_id] = stored
        return stored

    def revert(self) -> None:
        """Undo only while the view still holds our own mutation; a newer one is left alone."""
        if self._orders.get(self.order_id) is not self.applied:
            logger.warning(f"Order {self.order_id}: not reverting {sorted(self.changes)}, view has moved on")
            return
        self._orders[self.order_id] = self.snapshot
        logger.warning(f"Order {self.order_id}: reverted {sorted(self.changes)}")


def _doc_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return getattr(value, "value", value)


class OrderStateMachine:
    def __init__(
        self,
        store: DocumentStore,
        sequences: SequenceGenerator,
        invoices: InvoiceOrchestrator,
        notifier,
        *,
        rates: VatRates = VatRates(),
        order_prefix: str = "AGO",
        payment_terms_days: int = 14,
        view_size: int = 500,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.sequences = sequences
        self.invoices = invoices
        self.notifier = notifier
        self.rates = rates
        self.order_prefix = order_prefix
        self.payment_terms_days = payment_terms_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.orders: OrderView = OrderView(view_size)

    @classmethod
    def from_settings(cls, settings, store, sequences, invoices, notifier) -> "OrderStateMachine":
        return cls(
            store,
            sequences,
            invoices,
            notifier,
            rates=VatRates.from_settings(settings),
            order_prefix=settings.order_number_prefix,
            payment_terms_days=settings.default_payment_terms_days,
            view_size=settings.order_view_size,
        )

    # ── Reads ───────────────────────────────────────────────────────

    async def load(self, order_id: str) -> Order:
        doc = await self.store.get_required(ORDERS, order_id, "Order")
        order = Order.from_document(doc.id, doc.data, doc.version)
        self.orders[order.id] = order
        return order

    async def list_orders(
        self,
        *,
        status: Optional[OrderStatus] = None,
        overdue: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """Newest first. Returns (page, total matching)."""
        now = self._clock()
        docs = await self.store.list(ORDERS)
        orders = [Order.from_document(d.id, d.data, d.version) for d in docs]
        for order in orders:
            self.orders[order.id] = order

        if status is not None:
            orders = [o for o in orders if o.status == status]
        if overdue is not None:
            orders = [o for o in orders if o.is_overdue(now) == overdue]
        return orders[offset:offset + limit], len(orders)

    # ── Transitions ─────────────────────────────────────────────────

    async def update_status(self, order_id: str, new_status: str | OrderStatus) -> TransitionResult:
        """
        Move an order to `new_status`.

        Raises:
            ValidationError: unknown status value
            NotFoundError: order absent
            InvalidTransitionError: no-op or not allowed from the current status
            ConflictError / PersistenceError: write failed, in-memory state reverted
        """
        target = parse_requested_status(new_status)
        if target is None:
            raise ValidationError(f"Unknown status '{new_status}'", field="status")

        order = await self.load(order_id)
        previous = order.status
        if target == previous:
            raise InvalidTransitionError(
                f"Order {order.order_number or order_id} is already {previous.value}",
                details={"status": previous.value},
            )
        if previous in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Order {order.order_number or order_id} is {previous.value} and can no longer change",
                details={"from": previous.value, "to": target.value, "terminal": True},
            )
        if target not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Cannot move order from {previous.value} to {target.value}",
                details={"from": previous.value, "to": target.value},
            )

        order = await self._commit(order, {"status": target})
        logger.info(f"Order {order.order_number or order_id}: {previous.value} -> {target.value}")

        result = TransitionResult(order)
        if previous == OrderStatus.NEW and target == OrderStatus.PROCESSING:
            await self._invoice(result)
        result.effects.append(
            await run_peripheral("status_email", self.notifier.status_update(result.order, previous))
        )
        return result

    async def mark_as_paid(self, order_id: str) -> TransitionResult:
        """
        Record a counter payment (cash or pin) for a local-pickup order.

        Raises:
            NotFoundError: order absent
            InvalidTransitionError: not a counter payment at local pickup, or already paid
            ConflictError / PersistenceError: write failed, in-memory state reverted
        """
        order = await self.load(order_id)
        if not order.is_counter_payment:
            raise InvalidTransitionError(
                "Only cash or pin payments can be marked as paid",
                details={"payment_method": order.payment_method},
            )
        if not order.is_local_pickup:
            raise InvalidTransitionError(
                "Only local pickup orders can be marked as paid at the counter",
                details={
                    "shipping_delivery_type": order.shipping_delivery_type,
                    "shipping_carrier": order.shipping_carrier,
                },
            )
        return await self._record_payment(order, source="counter")

    async def register_payment(self, order_id: str) -> TransitionResult:
        """Payment confirmed by accounting; any payment method."""
        order = await self.load(order_id)
        return await self._record_payment(order, source="accounting")

    async def _record_payment(self, order: Order, source: str) -> TransitionResult:
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidTransitionError(
                f"Order {order.order_number or order.id} is already paid",
                details={"paid_at": _doc_value(order.paid_at)},
            )
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(f"Order {order.order_number or order.id} is cancelled")

        # A paid order is never new; later statuses stay where they are
        status = OrderStatus.PROCESSING if order.status == OrderStatus.NEW else order.status
        order = await self._commit(order, {
            "payment_status": PaymentStatus.PAID,
            "status": status,
            "paid_at": self._clock(),
        })
        logger.info(f"Order {order.order_number or order.id} paid ({source})")

        result = TransitionResult(order)
        await self._invoice(result)
        result.effects.append(
            await run_peripheral("payment_email", self.notifier.payment_confirmation(result.order))
        )
        return result

    # ── Intake ──────────────────────────────────────────────────────

    async def create_order(
        self,
        *,
        customer: dict,
        items: list[dict],
        payment_method: str,
        shipping_method: str = "",
        shipping_carrier: str = "",
        shipping_delivery_type: str = "",
        shipping_cost: float = 0.0,
        dealer_group: Optional[str] = None,
        dealer_discount_percent: float = 0.0,
        payment_terms_days: Optional[int] = None,
    ) -> TransitionResult:
        """
        Price and store a new order, then send the confirmation emails.

        Raises:
            ValidationError: no items, negative price or non-positive quantity
            PersistenceError: store failure (order number released)
        """
        if not items:
            raise ValidationError("An order needs at least one item", field="items")
        for it in items:
            if float(it.get("price") or 0) < 0:
                raise ValidationError("Price cannot be negative", field="items")
            if int(it.get("quantity") or 0) < 1:
                raise ValidationError("Quantity must be at least 1", field="items")
        if float(shipping_cost or 0) < 0:
            raise ValidationError("Shipping cost cannot be negative", field="shipping_cost")

        totals = compute_totals(
            items,
            shipping_cost=shipping_cost,
            discount_percent=dealer_discount_percent,
            rates=self.rates,
        )
        now = self._clock()
        terms = payment_terms_days or self.payment_terms_days
        order = Order(
            status=OrderStatus.NEW,
            payment_status=PaymentStatus.OPEN,
            payment_method=payment_method,
            payment_terms_days=terms,
            items=totals.items,
            subtotal=totals.subtotal,
            vat_amount=totals.vat_amount,
            shipping_cost=totals.shipping_cost,
            total=totals.total,
            shipping_method=shipping_method,
            shipping_carrier=shipping_carrier,
            shipping_delivery_type=shipping_delivery_type,
            customer=CustomerSnapshot.model_validate(customer or {}),
            dealer_group=dealer_group,
            dealer_discount_percent=totals.discount_percent,
            dealer_discount_amount=totals.discount_amount,
            created_at=now,
            updated_at=now,
        )
        if order.is_on_account:
            order.due_at = now + timedelta(days=terms)

        number = await self.sequences.next_order_number(self.order_prefix)
        order.order_number = number
        try:
            doc = await self.store.create(ORDERS, order.to_document())
        except PersistenceError:
            await self._release_order_number(number)
            raise

        order = Order.from_document(doc.id, doc.data, doc.version)
        self.orders[order.id] = order
        logger.info(f"Order {number} created ({len(order.items)} items, total {order.total:.2f})")

        result = TransitionResult(order)
        result.effects.append(
            await run_peripheral("confirmation_email", self.notifier.order_confirmation(order))
        )
        result.effects.append(
            await run_peripheral("admin_order_email", self.notifier.admin_order_notification(order))
        )
        return result

    # ── Internals ───────────────────────────────────────────────────

    async def _commit(self, order: Order, changes: dict[str, Any]) -> Order:
        changes = {**changes, "updated_at": self._clock()}
        command = OrderCommand(self.orders, order, changes)
        command.apply()
        try:
            stored = await self.store.update(
                ORDERS,
                order.id,
                {k: _doc_value(v) for k, v in changes.items()},
                expected_version=order.version,
            )
        except Exception:
            command.revert()
            raise
        return command.confirm(Order.from_document(stored.id, stored.data, stored.version))

    async def _invoice(self, result: TransitionResult) -> None:
        effect = await run_peripheral("ensure_invoice", self.invoices.ensure_invoice(result.order.id))
        result.effects.append(effect)
        if not effect.ok:
            return
        result.invoice = effect.value
        result.effects.extend(effect.value.effects)
        result.order = self.orders[result.order.id] = result.order.model_copy(update={
            "invoice_number": effect.value.invoice_number,
            "invoice_url": effect.value.invoice_url,
        })
        try:
            result.order = await self.load(result.order.id)
        except PersistenceError as e:
            logger.warning(f"Order {result.order.id}: could not refresh after invoicing: {e}")

    async def _release_order_number(self, number: str) -> None:
        try:
            value = int(number.rsplit("-", 1)[-1])
            await self.sequences.release(ORDER_SEQUENCE, ORDER_SEQUENCE_SCOPE, value)
        except Exception as e:
            logger.error(f"Could not release order number {number}: {e}")
