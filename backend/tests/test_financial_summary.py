from datetime import date
from decimal import Decimal

from backend.app.financial_summary import payable_projection, receivable_metrics, top_debtors


TODAY = date(2026, 3, 10)


def _ar(party, pending, due, name=None):
    return {"party_id": party, "party_name": name or party.upper(), "pending_balance": Decimal(pending), "due_date": due}


def test_receivable_metrics_split_overdue_and_upcoming():
    rows = [
        _ar("c1", "100", date(2026, 3, 9)),
        _ar("c1", "40.50", TODAY),
        _ar("c2", "10", None),
        _ar("c3", "0", date(2026, 1, 1)),
        _ar("c3", "-5", date(2026, 1, 1)),
    ]
    assert receivable_metrics(rows, TODAY) == {
        "total": Decimal("150.50"),
        "overdue": Decimal("100.00"),
        "upcoming": Decimal("50.50"),
    }


def test_receivable_metrics_on_no_rows_are_zero():
    assert receivable_metrics([], TODAY) == {"total": Decimal("0.00"), "overdue": Decimal("0.00"), "upcoming": Decimal("0.00")}


def test_top_debtors_group_by_party_and_rank_by_debt():
    rows = [
        _ar("c1", "100", date(2026, 3, 20), name="Acme"),
        _ar("c2", "80", date(2026, 2, 1), name="Bolt"),
        _ar("c2", "70", date(2026, 3, 1), name="Bolt"),
        _ar("c3", "100", None, name="Able"),
        _ar("c4", "0", date(2026, 1, 1)),
        {"party_id": None, "party_name": "", "pending_balance": Decimal("999"), "due_date": None},
    ]
    out = top_debtors(rows, TODAY, limit=3)

    assert [d["party_id"] for d in out] == ["c2", "c3", "c1"]
    assert out[0] == {
        "party_id": "c2",
        "party_name": "Bolt",
        "total_debt": Decimal("150.00"),
        "overdue_amount": Decimal("150.00"),
        "oldest_due_date": date(2026, 2, 1),
    }
    # Equal debt falls back to name order.
    assert out[1]["oldest_due_date"] is None
    assert out[2]["overdue_amount"] == Decimal("0.00")
    assert top_debtors(rows, TODAY, limit=1)[0]["party_id"] == "c2"


def test_payable_projection_windows_are_cumulative():
    rows = [
        {"total_amount": Decimal("10"), "payment_due_date": date(2026, 3, 1)},
        {"total_amount": Decimal("20"), "payment_due_date": date(2026, 3, 17)},
        {"total_amount": Decimal("40"), "payment_due_date": date(2026, 3, 25)},
        {"total_amount": Decimal("80"), "payment_due_date": date(2026, 4, 9)},
        {"total_amount": Decimal("160"), "payment_due_date": date(2026, 4, 10)},
        {"total_amount": Decimal("320"), "payment_due_date": None},
    ]
    assert payable_projection(rows, TODAY) == {
        "next_7_days": Decimal("30.00"),
        "next_15_days": Decimal("70.00"),
        "next_30_days": Decimal("150.00"),
    }
