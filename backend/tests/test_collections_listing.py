from datetime import date
from decimal import Decimal

from backend.app.routers import collections as collections_router


_PAST = date(2020, 1, 1)
_FUTURE = date(2999, 1, 1)


class _QueryCursor:
    """Answers each SELECT with the canned rows registered for its table."""

    def __init__(self, rows_by_table):
        self.rows_by_table = rows_by_table
        self.executed: list[tuple[str, list]] = []
        self._all = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.executed.append((text, list(params or ())))
        self._all = []
        for table, rows in self.rows_by_table.items():
            if f"from {table}" in text:
                self._all = rows
                break

    def fetchall(self):
        return self._all


class _FakeConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur


def _patch_db(monkeypatch, cur):
    monkeypatch.setattr(collections_router, "get_conn", lambda: _FakeConn(cur))
    monkeypatch.setattr(collections_router, "set_org_context", lambda *_args, **_kwargs: None)
    return cur


def _account(account_id, total, pending, due=None):
    return {
        "id": account_id,
        "order_id": f"so-{account_id}",
        "party_id": "cust-1",
        "party_name": "Acme",
        "total_amount": Decimal(total),
        "pending_balance": Decimal(pending),
        "status": "PENDING",
        "due_date": due,
        "created_at": None,
    }


def test_status_filter_runs_in_sql_before_the_limit(monkeypatch):
    cur = _patch_db(monkeypatch, _QueryCursor({"accounts_receivable": [_account("a1", "100", "0")]}))

    res = collections_router.list_receivables(status="PAID", limit=3, organization_id="org-1")

    sql, params = cur.executed[0]
    assert "a.pending_balance <= 0" in sql
    assert sql.index("a.pending_balance <= 0") < sql.index("limit %s")
    assert params == ["org-1", 3]
    assert [a["status"] for a in res["accounts"]] == ["PAID"]


def test_due_date_filters_compare_against_today(monkeypatch):
    for status in ("OVERDUE", "PENDING"):
        cur = _patch_db(monkeypatch, _QueryCursor({"accounts_payable": []}))
        collections_router.list_payables(status=status, limit=50, organization_id="org-1")
        sql, params = cur.executed[0]
        assert "a.due_date" in sql
        assert params[0] == "org-1"
        assert isinstance(params[1], date)
        assert params[-1] == 50


def test_unfiltered_list_derives_overdue_at_read_time(monkeypatch):
    rows = [
        _account("a1", "100", "100", due=_PAST),
        _account("a2", "100", "40", due=_PAST),
        _account("a3", "100", "100", due=_FUTURE),
        _account("a4", "100", "-5"),
    ]
    cur = _patch_db(monkeypatch, _QueryCursor({"accounts_receivable": rows}))

    res = collections_router.list_receivables(status=None, limit=100, organization_id="org-1")

    assert [a["status"] for a in res["accounts"]] == ["OVERDUE", "PARTIAL", "PENDING", "PAID"]
    assert res["accounts"][3]["pending_balance"] == Decimal("0.00")
    assert cur.executed[0][1] == ["org-1", 100]


def test_summary_combines_receivables_and_open_purchases(monkeypatch):
    receivables = [
        {"party_id": "c1", "party_name": "Acme", "pending_balance": Decimal("300"), "due_date": _PAST},
        {"party_id": "c1", "party_name": "Acme", "pending_balance": Decimal("200"), "due_date": _FUTURE},
        {"party_id": "c2", "party_name": "Bolt", "pending_balance": Decimal("50"), "due_date": None},
    ]
    purchases = [
        {"total_amount": Decimal("1000"), "payment_due_date": _PAST},
        {"total_amount": Decimal("70"), "payment_due_date": _FUTURE},
    ]
    cur = _patch_db(
        monkeypatch, _QueryCursor({"accounts_receivable": receivables, "purchase_orders": purchases})
    )

    res = collections_router.collections_summary(top=1, organization_id="org-1")

    assert res["receivables"] == {
        "total": Decimal("550.00"),
        "overdue": Decimal("300.00"),
        "upcoming": Decimal("250.00"),
    }
    assert [d["party_id"] for d in res["top_debtors"]] == ["c1"]
    assert res["top_debtors"][0]["total_debt"] == Decimal("500.00")
    assert res["payables_projection"] == {
        "next_7_days": Decimal("1000.00"),
        "next_15_days": Decimal("1000.00"),
        "next_30_days": Decimal("1000.00"),
    }
    purchase_sql, purchase_params = cur.executed[1]
    assert "status = any(%s)" in purchase_sql
    assert purchase_params == ["org-1", ["ORDERED", "IN_TRANSIT"]]
