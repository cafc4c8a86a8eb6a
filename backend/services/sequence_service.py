"""
Sequence Generator — strictly increasing document numbers.

Each sequence is one counter document in the `counters` collection holding
the last issued value per scope (the calendar year for invoices and credit
notes):

    counters/invoice = {"2024": 311, "2025": 42}

Numbers are formatted as YYYY-NNNNN. The increment goes through the store's
compare-and-swap, so concurrent callers can never observe the same value.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from domain.constants import (
    COUNTERS,
    CREDIT_SEQUENCE,
    INVOICE_SEQUENCE,
    ORDER_SEQUENCE,
    ORDER_SEQUENCE_SCOPE,
    SEQUENCE_PAD,
)
from services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def format_yearly_number(year: int, value: int) -> str:
    """2025, 42 -> '2025-00042'."""
    return f"{year}-{str(value).zfill(SEQUENCE_PAD)}"


def parse_yearly_number(number: str) -> tuple[int, int]:
    """'2025-00042' -> (2025, 42). Raises ValueError on anything else."""
    year, _, seq = (number or "").partition("-")
    if not (year.isdigit() and seq.isdigit()):
        raise ValueError(f"Not a yearly sequence number: {number!r}")
    return int(year), int(seq)


class SequenceGenerator:
    """Allocates numbers from named counters in the document store."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] | None = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def next_value(self, name: str, scope: str) -> int:
        value = await self.store.increment_counter(COUNTERS, name, scope)
        logger.info(f"Sequence {name}[{scope}] issued {value}")
        return value

    async def release(self, name: str, scope: str, value: int) -> bool:
        """
        Give back `value` if it is still the most recently issued one.

        Returns False when a later number was already issued; the gap then
        stays and is logged.
        """
        released = await self.store.compare_and_set_counter(COUNTERS, name, scope, value, value - 1)
        if released:
            logger.info(f"Sequence {name}[{scope}] released {value}")
        else:
            logger.warning(f"Sequence {name}[{scope}] could not release {value}; gap remains")
        return released

    def current_year(self) -> int:
        return self._clock().year

    async def next_yearly(self, name: str, year: Optional[int] = None) -> str:
        year = year or self.current_year()
        value = await self.next_value(name, str(year))
        return format_yearly_number(year, value)

    async def release_yearly(self, name: str, number: str) -> bool:
        year, value = parse_yearly_number(number)
        return await self.release(name, str(year), value)

    async def next_invoice_number(self, year: Optional[int] = None) -> str:
        return await self.next_yearly(INVOICE_SEQUENCE, year)

    async def next_credit_number(self, year: Optional[int] = None) -> str:
        return await self.next_yearly(CREDIT_SEQUENCE, year)

    async def next_order_number(self, prefix: str) -> str:
        """Order numbers run on across years: AGO-05006."""
        value = await self.next_value(ORDER_SEQUENCE, ORDER_SEQUENCE_SCOPE)
        return f"{prefix}-{str(value).zfill(SEQUENCE_PAD)}"
