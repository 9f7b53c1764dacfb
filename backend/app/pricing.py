from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional

from .money import (
    ZERO,
    capped_discount,
    clamp_non_negative,
    clamp_percent,
    percent_of,
    q_money,
    q_qty,
    to_decimal,
)


MEASURED_UNITS = frozenset({"KG", "LT", "MT"})


def norm_unit(v: Optional[str]) -> str:
    return (v or "").strip().upper() or "UN"


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str = ""
    unit_of_measure: str = "UN"
    tracks_stock_units: bool = False
    units_per_box: Optional[Decimal] = None
    boxes_per_pallet: Optional[Decimal] = None
    average_quantity_per_unit: Optional[Decimal] = None

    @property
    def is_measured(self) -> bool:
        return norm_unit(self.unit_of_measure) in MEASURED_UNITS


def convert_to_base_units(quantity, input_unit: Optional[str], product: Optional[CatalogProduct]) -> Decimal:
    """
    Convert an entered purchase quantity to stocked units.
    Missing or non-positive box/pallet factors fall back to the raw quantity.
    """
    qty = to_decimal(quantity)
    unit = (input_unit or "UNITS").strip().upper()
    if product is None or unit == "UNITS":
        return qty
    per_box = to_decimal(product.units_per_box)
    if unit == "BOXES":
        return qty * per_box if per_box > 0 else qty
    if unit == "PALLETS":
        per_pallet = to_decimal(product.boxes_per_pallet)
        if per_pallet > 0 and per_box > 0:
            return qty * per_pallet * per_box
        if per_pallet > 0:
            return qty * per_pallet
        return qty
    return qty


def available_input_units(product: Optional[CatalogProduct]) -> list[str]:
    units = ["UNITS"]
    if product is None:
        return units
    if to_decimal(product.units_per_box) > 0:
        units.append("BOXES")
        if to_decimal(product.boxes_per_pallet) > 0:
            units.append("PALLETS")
    return units


@dataclass(frozen=True)
class LineInput:
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    measured_quantity: Optional[Decimal] = None
    base_price: Optional[Decimal] = None
    discount_percent: Decimal = ZERO


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    quantity: Decimal
    measured_quantity: Optional[Decimal]
    measure_estimated: bool
    unit_price: Decimal
    applied_unit_price: Decimal
    base_price: Decimal
    discount_percent: Decimal
    gross_amount: Decimal
    discount_amount: Decimal
    subtotal: Decimal

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "measured_quantity": self.measured_quantity,
            "measure_estimated": self.measure_estimated,
            "unit_price": self.unit_price,
            "applied_unit_price": self.applied_unit_price,
            "base_price": self.base_price,
            "discount_percent": self.discount_percent,
            "gross_amount": self.gross_amount,
            "discount_amount": self.discount_amount,
            "subtotal": self.subtotal,
        }


def price_line(line: LineInput, product: Optional[CatalogProduct] = None) -> PricedLine:
    qty = clamp_non_negative(line.quantity)
    price = clamp_non_negative(line.unit_price)
    measured = clamp_non_negative(line.measured_quantity) if line.measured_quantity is not None else ZERO
    pct = clamp_percent(line.discount_percent)
    base_price = clamp_non_negative(line.base_price) if line.base_price is not None else price

    applied_price = price
    measured_out: Optional[Decimal] = q_qty(measured) if measured > 0 else None
    estimated = False

    if product is not None and product.is_measured and measured > 0:
        gross = measured * price
    elif product is not None and product.is_measured and to_decimal(product.average_quantity_per_unit) > 0:
        # No weighed quantity yet: price per stocked unit from the average lot measure.
        avg = to_decimal(product.average_quantity_per_unit)
        applied_price = price * avg
        measured_out = q_qty(qty * avg)
        estimated = True
        gross = qty * applied_price
    else:
        gross = qty * price

    gross = q_money(gross)
    discount = q_money(capped_discount(gross, pct))
    subtotal = clamp_non_negative(gross - discount)

    return PricedLine(
        product_id=line.product_id,
        quantity=qty,
        measured_quantity=measured_out,
        measure_estimated=estimated,
        unit_price=price,
        applied_unit_price=q_money(applied_price),
        base_price=base_price,
        discount_percent=pct,
        gross_amount=gross,
        discount_amount=discount,
        subtotal=subtotal,
    )


@dataclass(frozen=True)
class TaxRate:
    tax_id: Optional[str]
    name: str
    rate: Decimal


@dataclass(frozen=True)
class TaxAmount:
    tax_id: Optional[str]
    name: str
    rate: Decimal
    base: Decimal
    amount: Decimal

    def as_dict(self) -> dict:
        return {
            "tax_id": self.tax_id,
            "name": self.name,
            "rate": self.rate,
            "base": self.base,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class OrderTotals:
    policy: str
    subtotal: Decimal
    line_discount: Decimal
    taxes: list[TaxAmount] = field(default_factory=list)
    total_tax: Decimal = ZERO
    global_discount_percent: Decimal = ZERO
    global_discount: Decimal = ZERO
    pre_discount_total: Decimal = ZERO
    total: Decimal = ZERO

    @property
    def total_discount(self) -> Decimal:
        return self.line_discount + self.global_discount

    def as_dict(self) -> dict:
        return {
            "policy": self.policy,
            "subtotal": self.subtotal,
            "line_discount": self.line_discount,
            "taxes": [t.as_dict() for t in self.taxes],
            "total_tax": self.total_tax,
            "global_discount_percent": self.global_discount_percent,
            "global_discount": self.global_discount,
            "total_discount": self.total_discount,
            "pre_discount_total": self.pre_discount_total,
            "total": self.total,
        }


def _tax_amounts(base: Decimal, taxes: Iterable[TaxRate]) -> list[TaxAmount]:
    out: list[TaxAmount] = []
    for t in taxes or []:
        rate = clamp_non_negative(t.rate)
        out.append(
            TaxAmount(
                tax_id=t.tax_id,
                name=t.name,
                rate=rate,
                base=base,
                amount=q_money(percent_of(base, rate)),
            )
        )
    return out


def _line_sums(lines: Iterable[PricedLine]) -> tuple[Decimal, Decimal]:
    subtotal = ZERO
    line_discount = ZERO
    for ln in lines or []:
        subtotal += clamp_non_negative(ln.subtotal)
        line_discount += clamp_non_negative(ln.discount_amount)
    return q_money(subtotal), q_money(line_discount)


def purchase_totals(lines: Iterable[PricedLine], taxes: Iterable[TaxRate], global_discount_percent) -> OrderTotals:
    """
    Purchase policy: taxes apply to the undiscounted subtotal and the order
    discount is taken from the subtotal only.
    """
    subtotal, line_discount = _line_sums(lines)
    pct = clamp_percent(global_discount_percent)
    discount = q_money(capped_discount(subtotal, pct))
    tax_rows = _tax_amounts(subtotal, taxes)
    total_tax = q_money(sum((t.amount for t in tax_rows), ZERO))
    pre = subtotal + total_tax
    return OrderTotals(
        policy="purchase",
        subtotal=subtotal,
        line_discount=line_discount,
        taxes=tax_rows,
        total_tax=total_tax,
        global_discount_percent=pct,
        global_discount=discount,
        pre_discount_total=pre,
        total=clamp_non_negative(subtotal - discount + total_tax),
    )


def sales_totals(lines: Iterable[PricedLine], taxes: Iterable[TaxRate], global_discount_percent) -> OrderTotals:
    """
    Sales policy: taxes apply to the subtotal, then the order discount is
    taken from the tax-inclusive amount.
    """
    subtotal, line_discount = _line_sums(lines)
    pct = clamp_percent(global_discount_percent)
    tax_rows = _tax_amounts(subtotal, taxes)
    total_tax = q_money(sum((t.amount for t in tax_rows), ZERO))
    pre = subtotal + total_tax
    discount = q_money(capped_discount(pre, pct))
    return OrderTotals(
        policy="sales",
        subtotal=subtotal,
        line_discount=line_discount,
        taxes=tax_rows,
        total_tax=total_tax,
        global_discount_percent=pct,
        global_discount=discount,
        pre_discount_total=pre,
        total=clamp_non_negative(pre - discount),
    )


PRICING_POLICIES: dict[str, Callable[..., OrderTotals]] = {
    "purchase": purchase_totals,
    "sales": sales_totals,
}


def compute_order_totals(kind: str, lines: Iterable[PricedLine], taxes: Iterable[TaxRate], global_discount_percent) -> OrderTotals:
    policy = PRICING_POLICIES.get((kind or "").strip().lower())
    if policy is None:
        raise ValueError(f"unknown pricing policy: {kind}")
    return policy(list(lines or []), list(taxes or []), global_discount_percent)
