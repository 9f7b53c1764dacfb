from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional

from .balances import is_past_due
from .money import ZERO, q_money, to_decimal


PROJECTION_WINDOWS = (7, 15, 30)

# Purchase orders not yet received; their payable does not exist yet.
PROJECTED_PURCHASE_STATUSES = ("ORDERED", "IN_TRANSIT")


def receivable_metrics(rows: Iterable[dict], today: Optional[date] = None) -> dict:
    """
    Open receivable money split by due date. A partially paid receivable past
    its due date counts as overdue for its remaining balance.
    """
    total = overdue = upcoming = ZERO
    for r in rows or []:
        pending = to_decimal(r.get("pending_balance"))
        if pending <= 0:
            continue
        total += pending
        if is_past_due(r.get("due_date"), today):
            overdue += pending
        else:
            upcoming += pending
    return {"total": q_money(total), "overdue": q_money(overdue), "upcoming": q_money(upcoming)}


def top_debtors(rows: Iterable[dict], today: Optional[date] = None, limit: int = 10) -> list[dict]:
    by_party: dict[str, dict] = {}
    for r in rows or []:
        pending = to_decimal(r.get("pending_balance"))
        party_id = r.get("party_id")
        if pending <= 0 or not party_id:
            continue
        due = r.get("due_date")
        d = by_party.setdefault(
            str(party_id),
            {
                "party_id": str(party_id),
                "party_name": r.get("party_name") or "",
                "total_debt": ZERO,
                "overdue_amount": ZERO,
                "oldest_due_date": None,
            },
        )
        d["total_debt"] += pending
        if is_past_due(due, today):
            d["overdue_amount"] += pending
        if due is not None and (d["oldest_due_date"] is None or due < d["oldest_due_date"]):
            d["oldest_due_date"] = due
    out = sorted(by_party.values(), key=lambda d: (-d["total_debt"], d["party_name"], d["party_id"]))
    for d in out:
        d["total_debt"] = q_money(d["total_debt"])
        d["overdue_amount"] = q_money(d["overdue_amount"])
    return out[: max(0, int(limit))]


def payable_projection(rows: Iterable[dict], today: Optional[date] = None) -> dict:
    """
    Money owed on open purchase orders falling due within 7/15/30 days.
    Windows are cumulative and include orders already past due.
    """
    base = today or date.today()
    sums = {days: ZERO for days in PROJECTION_WINDOWS}
    for r in rows or []:
        due = r.get("payment_due_date")
        if due is None:
            continue
        amount = to_decimal(r.get("total_amount"))
        for days in PROJECTION_WINDOWS:
            if due <= base + timedelta(days=days):
                sums[days] += amount
    return {f"next_{days}_days": q_money(sums[days]) for days in PROJECTION_WINDOWS}
