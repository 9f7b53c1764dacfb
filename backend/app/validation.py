from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Labels used by older clients (and the Spanish UI) for the same methods.
_PAYMENT_METHOD_ALIASES = {
    "efectivo": "cash",
    "transferencia": "transfer",
    "transferencia bancaria": "transfer",
    "bank_transfer": "transfer",
    "cheque": "check",
    "tarjeta de credito": "credit_card",
    "tarjeta de crédito": "credit_card",
    "tarjeta de debito": "debit_card",
    "tarjeta de débito": "debit_card",
    "credit card": "credit_card",
    "debit card": "debit_card",
    "otro": "other",
}


def _to_payment_method(v):
    if v is None:
        return v
    s = str(v).strip().lower()
    s = _PAYMENT_METHOD_ALIASES.get(s, s)
    return s.replace(" ", "_").replace("-", "_")


def _to_status(v):
    if v is None:
        return v
    return str(v).strip().upper().replace(" ", "_").replace("-", "_")


# Canonical codes mirror the Postgres enums of the orders/collections schema.
PaymentMethod = Annotated[
    Literal["cash", "transfer", "check", "credit_card", "debit_card", "other"],
    BeforeValidator(_to_payment_method),
]
AccountKind = Annotated[Literal["receivables", "payables"], BeforeValidator(_to_lower_str)]
SalesStatus = Annotated[
    Literal["DRAFT", "CONFIRMED", "DISPATCH", "DELIVERED", "CANCELLED"],
    BeforeValidator(_to_status),
]
PurchaseStatus = Annotated[
    Literal["ORDERED", "IN_TRANSIT", "RECEIVED", "CANCELLED"],
    BeforeValidator(_to_status),
]
AccountStatus = Annotated[Literal["PENDING", "PARTIAL", "PAID", "OVERDUE"], BeforeValidator(_to_status)]
InputUnit = Annotated[Literal["UNITS", "BOXES", "PALLETS"], BeforeValidator(_to_upper_str)]