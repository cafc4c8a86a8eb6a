"""
Pydantic models for the canonical order schema.

Stored documents carry legacy field names (camelCase, Dutch customer fields,
old English/Dutch status values). They are normalized exactly once, in
Order.from_document(); everything downstream reads canonical attributes only.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from domain.constants import (
    COUNTER_PAYMENT_METHODS,
    LOCAL_PICKUP_CARRIER,
    LOCAL_PICKUP_DELIVERY_TYPE,
    PAYMENT_METHOD_ON_ACCOUNT,
)
from domain.enums import (
    OrderStatus,
    PaymentStatus,
    VatCategory,
    normalize_payment_status,
    normalize_status,
    normalize_vat_category,
)

DEFAULT_PAYMENT_TERMS_DAYS = 14


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class DocumentModel(BaseModel):
    """Shared base — accepts Python names or legacy aliases, ignores unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", use_enum_values=False)


# ── Customer ────────────────────────────────────────────────────────

class CustomerSnapshot(DocumentModel):
    """Customer data copied onto the order at checkout."""
    id: Optional[str] = None
    first_name: Optional[str] = Field(None, validation_alias=_alias("first_name", "voornaam", "contact_first_name"))
    last_name: Optional[str] = Field(None, validation_alias=_alias("last_name", "achternaam", "contact_last_name"))
    name: Optional[str] = None
    company: Optional[str] = Field(None, validation_alias=_alias("company", "bedrijfsnaam", "company_name"))
    email: Optional[str] = None
    invoice_email: Optional[str] = None
    phone: Optional[str] = Field(None, validation_alias=_alias("phone", "telefoon"))
    address: Optional[str] = Field(None, validation_alias=_alias("address", "adres"))
    postal_code: Optional[str] = Field(None, validation_alias=_alias("postal_code", "postcode"))
    city: Optional[str] = Field(None, validation_alias=_alias("city", "plaats"))
    country: Optional[str] = Field(None, validation_alias=_alias("country", "land"))
    vat_number: Optional[str] = Field(None, validation_alias=_alias("vat_number", "btwNummer", "btw"))

    shipping_first_name: Optional[str] = Field(
        None, validation_alias=_alias("shipping_first_name", "shippingVoornaam"))
    shipping_last_name: Optional[str] = Field(
        None, validation_alias=_alias("shipping_last_name", "shippingAchternaam"))
    shipping_company: Optional[str] = Field(
        None, validation_alias=_alias("shipping_company", "shippingBedrijfsnaam"))
    shipping_address: Optional[str] = Field(
        None, validation_alias=_alias("shipping_address", "shippingAdres"))
    shipping_postal_code: Optional[str] = Field(
        None, validation_alias=_alias("shipping_postal_code", "shippingPostcode"))
    shipping_city: Optional[str] = Field(
        None, validation_alias=_alias("shipping_city", "shippingPlaats"))
    shipping_country: Optional[str] = Field(
        None, validation_alias=_alias("shipping_country", "shippingLand"))

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def full_name(self) -> str:
        joined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return joined or (self.name or "")

    @property
    def display_name(self) -> str:
        return self.full_name or "Klant"

    @property
    def billing_email(self) -> str:
        return self.invoice_email or self.email or ""


# ── Order ───────────────────────────────────────────────────────────

class OrderItem(DocumentModel):
    product_id: Optional[str] = Field(None, validation_alias=_alias("product_id", "productId", "id"))
    name: str = "Item"
    price: float = 0.0  # net unit price, discount already applied
    quantity: int = 1
    vat_category: VatCategory = VatCategory.STANDARD

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id(cls, value: Any) -> Any:
        return None if value in (None, "") else str(value)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> Any:
        return str(value) if value not in (None, "") else "Item"

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> Any:
        return 0.0 if value in (None, "") else value

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, value: Any) -> Any:
        return 1 if value in (None, "", 0) else value

    @field_validator("vat_category", mode="before")
    @classmethod
    def _vat_category(cls, value: Any) -> VatCategory:
        return normalize_vat_category(value)


class Order(DocumentModel):
    """Canonical order record."""
    id: str = ""
    version: int = 0

    order_number: str = Field("", validation_alias=_alias("order_number", "orderNumber"))
    status: OrderStatus = OrderStatus.NEW
    payment_status: PaymentStatus = PaymentStatus.OPEN
    payment_method: str = ""
    payment_terms_days: Optional[int] = None
    due_at: Optional[datetime] = None

    items: List[OrderItem] = Field(default_factory=list)
    subtotal: float = 0.0
    vat_amount: float = 0.0
    shipping_cost: float = 0.0
    total: float = Field(0.0, validation_alias=_alias("total", "total_amount", "amount"))

    shipping_method: str = ""
    shipping_carrier: str = ""
    shipping_delivery_type: str = ""

    customer: CustomerSnapshot = Field(default_factory=CustomerSnapshot)
    dealer_group: Optional[str] = None
    dealer_discount_percent: float = 0.0
    dealer_discount_amount: float = 0.0

    invoice_number: Optional[str] = Field(None, validation_alias=_alias("invoice_number", "invoiceNumber"))
    invoice_url: Optional[str] = Field(None, validation_alias=_alias("invoice_url", "invoiceUrl"))
    invoice_sent_date: Optional[datetime] = None

    paid_at: Optional[datetime] = Field(None, validation_alias=_alias("paid_at", "paidAt"))
    created_at: Optional[datetime] = Field(None, validation_alias=_alias("created_at", "createdAt"))
    updated_at: Optional[datetime] = Field(None, validation_alias=_alias("updated_at", "updatedAt"))

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> OrderStatus:
        return normalize_status(value)

    @field_validator("payment_status", mode="before")
    @classmethod
    def _payment_status(cls, value: Any) -> PaymentStatus:
        return normalize_payment_status(value)

    @field_validator("payment_method", "shipping_method", "shipping_carrier", "shipping_delivery_type",
                     "order_number", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("subtotal", "vat_amount", "shipping_cost", "total",
                     "dealer_discount_percent", "dealer_discount_amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        return 0.0 if value in (None, "") else value

    @field_validator("customer", mode="before")
    @classmethod
    def _customer(cls, value: Any) -> Any:
        return value or {}

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator("due_at", "invoice_sent_date", "paid_at", "created_at", "updated_at", mode="before")
    @classmethod
    def _empty_date(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("due_at", "invoice_sent_date", "paid_at", "created_at", "updated_at", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    # ── Document mapping ────────────────────────────────────────────

    @classmethod
    def from_document(cls, doc_id: str, data: dict, version: int = 0) -> "Order":
        """Single ingestion point for stored order documents."""
        return cls.model_validate({**data, "id": doc_id, "version": version})

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id", "version"})

    # ── Derived values ──────────────────────────────────────────────

    @property
    def has_invoice(self) -> bool:
        return bool(self.invoice_number and self.invoice_url)

    @property
    def is_local_pickup(self) -> bool:
        return (
            self.shipping_delivery_type == LOCAL_PICKUP_DELIVERY_TYPE
            or self.shipping_carrier == LOCAL_PICKUP_CARRIER
        )

    @property
    def is_counter_payment(self) -> bool:
        return self.payment_method.strip().lower() in COUNTER_PAYMENT_METHODS

    @property
    def is_on_account(self) -> bool:
        return self.payment_method.strip().lower() == PAYMENT_METHOD_ON_ACCOUNT

    def due_date(self) -> datetime:
        """Explicit due date, else order date plus payment terms."""
        if self.due_at:
            return self.due_at
        base = self.created_at or utc_now()
        return base + timedelta(days=self.payment_terms_days or DEFAULT_PAYMENT_TERMS_DAYS)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.payment_status == PaymentStatus.PAID or not self.is_on_account:
            return False
        return self.due_date() < (now or utc_now())


# ── Credit notes ────────────────────────────────────────────────────

class CreditItem(DocumentModel):
    name: str = "Item"
    quantity: int = 1
    unit_price: float = 0.0
    vat_rate: float = 0.0


class CreditNote(DocumentModel):
    id: str = ""
    credit_number: str
    order_id: str
    order_number: str = ""
    customer: CustomerSnapshot = Field(default_factory=CustomerSnapshot)
    items: List[CreditItem] = Field(default_factory=list)
    net_total: float = 0.0
    vat_total: float = 0.0
    total: float = 0.0
    pdf_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})
