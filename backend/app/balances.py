from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from .errors import bad_request, conflict
from .money import clamp_non_negative, q_money, to_decimal


def is_past_due(due_date: Optional[date], today: Optional[date] = None) -> bool:
    return due_date is not None and due_date < (today or date.today())


def derive_account_status(total, pending, due_date: Optional[date] = None, today: Optional[date] = None) -> str:
    """
    Status is a pure function of the stored amounts. OVERDUE is a read-time
    view over PENDING and is never persisted.
    """
    t = to_decimal(total)
    p = to_decimal(pending)
    if p <= 0:
        return "PAID"
    if p < t:
        return "PARTIAL"
    if is_past_due(due_date, today):
        return "OVERDUE"
    return "PENDING"


def stored_status(total, pending) -> str:
    return derive_account_status(total, pending)


@dataclass(frozen=True)
class BalanceChange:
    pending_balance: Decimal
    status: str


def assert_positive_amount(amount) -> Decimal:
    a = to_decimal(amount)
    if a <= 0:
        raise bad_request("amount must be greater than zero", "invalid_amount")
    return q_money(a)


def _check_bounds(total: Decimal, pending: Decimal) -> None:
    if pending < 0 or pending > total:
        raise conflict("account balance is inconsistent", "balance_inconsistent")


def apply_payment(total, pending, amount) -> BalanceChange:
    t = q_money(total)
    p = q_money(pending)
    a = assert_positive_amount(amount)
    if a > p:
        raise bad_request("amount exceeds pending balance", "amount_exceeds_pending")
    new_pending = p - a
    _check_bounds(t, new_pending)
    return BalanceChange(new_pending, stored_status(t, new_pending))


def apply_payment_edit(total, pending, old_amount, new_amount) -> BalanceChange:
    """
    Re-validate an edited payment as if the old amount had been reverted first.
    """
    t = q_money(total)
    effective = q_money(pending) + q_money(old_amount)
    a = assert_positive_amount(new_amount)
    if a > effective:
        raise bad_request("amount exceeds pending balance", "amount_exceeds_pending")
    new_pending = effective - a
    _check_bounds(t, new_pending)
    return BalanceChange(new_pending, stored_status(t, new_pending))


def revert_payment(total, pending, amount) -> BalanceChange:
    t = q_money(total)
    new_pending = q_money(pending) + q_money(amount)
    _check_bounds(t, new_pending)
    return BalanceChange(new_pending, stored_status(t, new_pending))


def rebase_account_total(new_total, paid) -> BalanceChange:
    """
    Used when a received purchase is adjusted: the account keeps its payments
    and the pending balance follows the new total.
    """
    t = q_money(clamp_non_negative(new_total))
    paid_amt = q_money(paid)
    if t < paid_amt:
        raise bad_request("new total is lower than the amount already paid", "total_below_paid")
    new_pending = t - paid_amt
    return BalanceChange(new_pending, stored_status(t, new_pending))


def read_pending(pending) -> Decimal:
    # Display never shows a negative pending balance.
    return q_money(clamp_non_negative(pending))
