import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import AccountKind, InputUnit, PaymentMethod, PurchaseStatus, SalesStatus


class _M(BaseModel):
    method: PaymentMethod
    kind: AccountKind
    sales_status: SalesStatus
    purchase_status: PurchaseStatus
    unit: InputUnit


def test_validation_types_normalize_case():
    m = _M(method=" Cash ", kind="Receivables", sales_status="confirmed", purchase_status="in transit", unit="boxes")
    assert m.method == "cash"
    assert m.kind == "receivables"
    assert m.sales_status == "CONFIRMED"
    assert m.purchase_status == "IN_TRANSIT"
    assert m.unit == "BOXES"


@pytest.mark.parametrize(
    "label,expected",
    [
        ("efectivo", "cash"),
        ("Transferencia", "transfer"),
        ("bank_transfer", "transfer"),
        ("cheque", "check"),
        ("Tarjeta de Crédito", "credit_card"),
        ("debit-card", "debit_card"),
        ("otro", "other"),
    ],
)
def test_payment_method_aliases(label, expected):
    m = _M(method=label, kind="payables", sales_status="DRAFT", purchase_status="ORDERED", unit="UNITS")
    assert m.method == expected


def test_unknown_payment_method_is_rejected():
    with pytest.raises(ValidationError):
        _M(method="cash money", kind="payables", sales_status="DRAFT", purchase_status="ORDERED", unit="UNITS")


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationError):
        _M(method="cash", kind="payables", sales_status="SHIPPED", purchase_status="ORDERED", unit="UNITS")
