import importlib.util
import os
import sys
from decimal import Decimal

import pytest


_SCRIPT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "scripts", "financial_integrity_check.py"))


@pytest.fixture(scope="module")
def integrity():
    spec = importlib.util.spec_from_file_location("financial_integrity_check", _SCRIPT)
    mod = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = mod
    spec.loader.exec_module(mod)
    return mod


def _items():
    return [
        {"product_id": "p1", "quantity": Decimal("10"), "subtotal": Decimal("1000.00"), "discount_amount": Decimal("0"), "received": True},
        {"product_id": "p2", "quantity": Decimal("2"), "subtotal": Decimal("50.00"), "discount_amount": Decimal("0"), "received": False},
    ]


_VAT = [{"tax_id": "vat", "name": "VAT", "rate": Decimal("21")}]


def test_sales_order_total_uses_sales_policy(integrity):
    order = {"id": "so-1", "number": "SO-1", "status": "CONFIRMED", "total_amount": Decimal("1143.45"), "global_discount_percent": Decimal("10")}
    assert integrity.order_total_findings("sales", order, _items(), _VAT) == []

    # The purchase formula would give 1165.50 for the same lines.
    order["total_amount"] = Decimal("1165.50")
    findings = integrity.order_total_findings("sales", order, _items(), _VAT)
    assert [f.kind for f in findings] == ["sales_order_total_mismatch"]


def test_received_purchase_is_checked_on_received_lines_only(integrity):
    order = {"id": "po-1", "number": "PO-1", "status": "RECEIVED", "total_amount": Decimal("1210.00"), "global_discount_percent": Decimal("0")}
    assert integrity.order_total_findings("purchase", order, _items(), _VAT) == []
    order["status"] = "ORDERED"
    assert len(integrity.order_total_findings("purchase", order, _items(), _VAT)) == 1


def test_consistent_account_has_no_findings(integrity):
    acct = {"id": "ar-1", "order_id": "so-1", "total_amount": Decimal("500"), "pending_balance": Decimal("200"), "status": "PARTIAL"}
    assert integrity.account_findings("receivables", acct, Decimal("300")) == []


def test_account_drift_is_reported(integrity):
    acct = {"id": "ap-1", "order_id": "po-1", "total_amount": Decimal("500"), "pending_balance": Decimal("-10"), "status": "PARTIAL"}
    kinds = {f.kind for f in integrity.account_findings("payables", acct, Decimal("300"))}
    assert kinds == {"payables_balance_out_of_range", "payables_balance_mismatch", "payables_status_mismatch"}
