"""
Domain constants used across services/routers.
"""

from domain.enums import OrderStatus

# Document store collections
ORDERS = "orders"
COUNTERS = "counters"
CREDIT_NOTES = "credit_notes"

# Sequence names (one counter document each)
INVOICE_SEQUENCE = "invoice"
CREDIT_SEQUENCE = "credit"
ORDER_SEQUENCE = "order"

# Order numbers are not scoped per year; they share one bucket
ORDER_SEQUENCE_SCOPE = "all"

SEQUENCE_PAD = 5

# Forward transitions; cancellation is added for every non-terminal state
ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.NEW: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {OrderStatus.COMPLETED, OrderStatus.CANCELLED}

# mark-as-paid is limited to counter payments at local pickup
COUNTER_PAYMENT_METHODS = {"cash", "pin"}
LOCAL_PICKUP_DELIVERY_TYPE = "pickup_local"
LOCAL_PICKUP_CARRIER = "local"

PAYMENT_METHOD_ON_ACCOUNT = "invoice"

PAYMENT_METHOD_LABELS = {
    "invoice": "Op rekening",
    "ideal": "iDEAL",
    "cash": "Contant",
    "pin": "Pin",
}

# Dutch labels used in customer-facing emails
STATUS_LABELS_NL = {
    "open": "Open",
    "paid": "Betaald",
    "failed": "Mislukt",
    "new": "Nieuw",
    "processing": "Wordt verwerkt",
    "shipped": "Verzonden",
    "completed": "Afgerond",
    "cancelled": "Geannuleerd",
}
