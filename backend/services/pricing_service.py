"""
Pricing — order totals arithmetic.

Dealer-group discount is applied to unit prices first; VAT is charged per
item on the discounted net price at its category rate, and on shipping at
the standard rate. Every stored amount is rounded to cents here, so the
renderer only formats and never re-rounds.

    total == subtotal + shipping_cost + vat_amount   (within 0.01)
"""
from dataclasses import dataclass, field
from typing import Iterable

from domain.enums import VatCategory, normalize_vat_category

TOTALS_TOLERANCE = 0.01


@dataclass(frozen=True)
class VatRates:
    high: float = 21.0
    low: float = 9.0
    zero: float = 0.0

    def rate_for(self, category: VatCategory | str | None) -> float:
        category = normalize_vat_category(category)
        if category == VatCategory.REDUCED:
            return self.low
        if category == VatCategory.ZERO:
            return self.zero
        return self.high

    @classmethod
    def from_settings(cls, settings) -> "VatRates":
        return cls(high=settings.vat_high_rate, low=settings.vat_low_rate, zero=settings.vat_zero_rate)


@dataclass
class Totals:
    items: list[dict] = field(default_factory=list)
    gross_subtotal: float = 0.0
    discount_percent: float = 0.0
    discount_amount: float = 0.0
    subtotal: float = 0.0
    shipping_cost: float = 0.0
    vat_amount: float = 0.0
    total: float = 0.0


def _cents(value: float) -> float:
    return round(float(value), 2)


def compute_totals(
    items: Iterable[dict],
    *,
    shipping_cost: float = 0.0,
    discount_percent: float = 0.0,
    rates: VatRates = VatRates(),
) -> Totals:
    """
    items: [{name, price (list price), quantity, vat_category, product_id?}]

    Returned items carry the discounted net unit price, ready to store.
    """
    pct = max(0.0, min(100.0, float(discount_percent or 0)))
    factor = 1 - pct / 100

    gross = 0.0
    items_vat = 0.0
    priced: list[dict] = []
    for it in items:
        qty = int(it.get("quantity") or 1)
        price = float(it.get("price") or 0)
        gross += price * qty
        net_unit = price * factor
        rate = rates.rate_for(it.get("vat_category"))
        items_vat += net_unit * qty * (rate / 100)
        priced.append({
            "product_id": it.get("product_id"),
            "name": it.get("name") or "Item",
            "price": _cents(net_unit),
            "quantity": qty,
            "vat_category": normalize_vat_category(it.get("vat_category")).value,
        })

    discount = gross * pct / 100
    subtotal = _cents(max(0.0, gross - discount))
    shipping = _cents(shipping_cost or 0)
    vat = _cents(items_vat + shipping * (rates.high / 100))

    return Totals(
        items=priced,
        gross_subtotal=_cents(gross),
        discount_percent=pct,
        discount_amount=_cents(discount),
        subtotal=subtotal,
        shipping_cost=shipping,
        vat_amount=vat,
        total=_cents(subtotal + shipping + vat),
    )


def totals_consistent(subtotal: float, shipping_cost: float, vat_amount: float, total: float) -> bool:
    return abs((subtotal + shipping_cost + vat_amount) - total) <= TOTALS_TOLERANCE + 1e-9


def credit_totals(items: Iterable[dict]) -> tuple[float, float, float]:
    """Credit lines → (net, vat, total), all as negative amounts."""
    net = 0.0
    vat = 0.0
    for it in items:
        line = float(it.get("unit_price") or 0) * int(it.get("quantity") or 0)
        net += line
        vat += line * float(it.get("vat_rate") or 0) / 100
    net_r = _cents(net)
    vat_r = _cents(vat)
    return 0.0 - net_r, 0.0 - vat_r, 0.0 - _cents(net_r + vat_r)
