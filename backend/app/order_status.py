from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from .errors import bad_request, conflict
from .money import to_decimal


SALES_STATUSES = ("DRAFT", "CONFIRMED", "DISPATCH", "DELIVERED", "CANCELLED")
PURCHASE_STATUSES = ("ORDERED", "IN_TRANSIT", "RECEIVED", "CANCELLED")

SALES_TRANSITIONS: dict[str, frozenset[str]] = {
    "DRAFT": frozenset({"CONFIRMED", "CANCELLED"}),
    "CONFIRMED": frozenset({"DISPATCH", "CANCELLED"}),
    "DISPATCH": frozenset({"DELIVERED"}),
    "DELIVERED": frozenset(),
    "CANCELLED": frozenset(),
}

PURCHASE_TRANSITIONS: dict[str, frozenset[str]] = {
    "ORDERED": frozenset({"IN_TRANSIT", "RECEIVED", "CANCELLED"}),
    "IN_TRANSIT": frozenset({"RECEIVED", "CANCELLED"}),
    "RECEIVED": frozenset(),
    "CANCELLED": frozenset(),
}

TRANSITIONS = {
    "sales": SALES_TRANSITIONS,
    "purchase": PURCHASE_TRANSITIONS,
}

INITIAL_STATUS = {
    "sales": "DRAFT",
    "purchase": "ORDERED",
}

# Repeating these is accepted and reported as "nothing changed".
NOOP_REPEATS = {
    "sales": frozenset({"DELIVERED", "CANCELLED"}),
    "purchase": frozenset({"CANCELLED"}),
}

# Repeating these is accepted and rewrites the status metadata.
REFRESH_REPEATS = {
    "sales": frozenset({"DISPATCH"}),
    "purchase": frozenset(),
}


@dataclass(frozen=True)
class Transition:
    kind: str
    from_status: str
    to_status: str
    was_updated: bool


def _table(kind: str) -> dict[str, frozenset[str]]:
    table = TRANSITIONS.get(kind)
    if table is None:
        raise ValueError(f"unknown order kind: {kind}")
    return table


def is_editable(kind: str, status: str) -> bool:
    return status == INITIAL_STATUS[kind]


def check_transition(kind: str, current: str, target: str) -> Transition:
    table = _table(kind)
    cur = (current or "").strip().upper()
    tgt = (target or "").strip().upper()
    if tgt not in table:
        raise bad_request(f"unknown status: {target}", "invalid_status")
    if cur not in table:
        raise conflict(f"order has unknown status: {current}", "invalid_transition")
    if cur == tgt:
        if tgt in NOOP_REPEATS[kind]:
            return Transition(kind, cur, tgt, was_updated=False)
        if tgt in REFRESH_REPEATS[kind]:
            return Transition(kind, cur, tgt, was_updated=True)
    if tgt not in table[cur]:
        raise conflict(f"cannot change order status from {cur} to {tgt}", "invalid_transition")
    return Transition(kind, cur, tgt, was_updated=True)


def assert_can_confirm(customer_id: Optional[str], seller_id: Optional[str], line_count: int) -> None:
    if not (customer_id or "").strip():
        raise bad_request("customer is required to confirm the order", "missing_customer")
    if not (seller_id or "").strip():
        raise bad_request("seller is required to confirm the order", "missing_seller")
    if int(line_count or 0) < 1:
        raise bad_request("order has no lines", "empty_order")


def normalize_remittance(remittance_number: Optional[str]) -> str:
    r = (remittance_number or "").strip()
    if not r:
        raise bad_request("remittance number is required to dispatch", "missing_remittance_number")
    return r


def assert_can_ship(delivery_date: Optional[date], logistics_provider: Optional[str]) -> str:
    if not delivery_date:
        raise bad_request("delivery date is required", "missing_delivery_date")
    provider = (logistics_provider or "").strip()
    if not provider:
        raise bad_request("logistics provider is required", "missing_logistics_provider")
    return provider


def received_lines(lines: Iterable[dict]) -> list[dict]:
    """
    Validate a receipt and return only the lines marked as received.
    Each order line is received at most once, with a lot number, an
    expiration date and a positive measured quantity. Nothing is returned
    unless every received line qualifies.
    """
    received = [ln for ln in (lines or []) if ln.get("received")]
    if not received:
        raise bad_request("at least one product must be marked received", "nothing_received")
    seen: set[str] = set()
    for ln in received:
        item_id = str(ln.get("item_id") or "")
        if item_id in seen:
            raise bad_request(f"line {item_id} is received more than once", "duplicate_receipt_line")
        seen.add(item_id)
    for idx, ln in enumerate(received, start=1):
        label = ln.get("item_id") or idx
        if not (ln.get("lot_number") or "").strip():
            raise bad_request(f"lot number is required for received line {label}", "missing_lot_number")
        if not ln.get("expiration_date"):
            raise bad_request(f"expiration date is required for received line {label}", "missing_expiration_date")
        if to_decimal(ln.get("measured_quantity")) <= 0:
            raise bad_request(f"received quantity must be greater than zero for line {label}", "invalid_received_quantity")
    return received
