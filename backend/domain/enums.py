"""
Domain enums and legacy value normalization.
"""

from enum import Enum


class OrderStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    OPEN = "open"
    PAID = "paid"
    FAILED = "failed"


class VatCategory(str, Enum):
    STANDARD = "standard"
    REDUCED = "reduced"
    ZERO = "zero"


# Legacy English values and the Dutch admin values both map onto the canonical set
_STATUS_ALIASES = {
    "new": OrderStatus.NEW,
    "pending": OrderStatus.NEW,
    "nieuw": OrderStatus.NEW,
    "processing": OrderStatus.PROCESSING,
    "verwerken": OrderStatus.PROCESSING,
    "shipped": OrderStatus.SHIPPED,
    "verzonden": OrderStatus.SHIPPED,
    "completed": OrderStatus.COMPLETED,
    "delivered": OrderStatus.COMPLETED,
    "afgerond": OrderStatus.COMPLETED,
    "cancelled": OrderStatus.CANCELLED,
    "annuleren": OrderStatus.CANCELLED,
}

_PAYMENT_STATUS_ALIASES = {
    "open": PaymentStatus.OPEN,
    "pending": PaymentStatus.OPEN,
    "paid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
}


def normalize_status(value: str | None) -> OrderStatus:
    """Map any stored status string to its canonical value; unknown → new."""
    if isinstance(value, OrderStatus):
        return value
    return _STATUS_ALIASES.get((value or "").strip().lower(), OrderStatus.NEW)


def normalize_payment_status(value: str | None) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    return _PAYMENT_STATUS_ALIASES.get((value or "").strip().lower(), PaymentStatus.OPEN)


def normalize_vat_category(value: str | None) -> VatCategory:
    try:
        return VatCategory((value or "standard").strip().lower())
    except ValueError:
        return VatCategory.STANDARD


def parse_requested_status(value: str | OrderStatus) -> OrderStatus | None:
    """Strict variant for caller input: aliases are accepted, unknown values are not."""
    if isinstance(value, OrderStatus):
        return value
    return _STATUS_ALIASES.get((value or "").strip().lower())
