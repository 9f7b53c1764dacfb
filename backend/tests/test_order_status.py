from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.order_status import (
    PURCHASE_STATUSES,
    PURCHASE_TRANSITIONS,
    SALES_STATUSES,
    SALES_TRANSITIONS,
    assert_can_confirm,
    assert_can_ship,
    check_transition,
    is_editable,
    normalize_remittance,
    received_lines,
)


def test_sales_happy_path():
    assert check_transition("sales", "DRAFT", "CONFIRMED").was_updated
    assert check_transition("sales", "CONFIRMED", "DISPATCH").was_updated
    assert check_transition("sales", "DISPATCH", "DELIVERED").was_updated


def test_purchase_happy_paths():
    assert check_transition("purchase", "ORDERED", "IN_TRANSIT").was_updated
    assert check_transition("purchase", "IN_TRANSIT", "RECEIVED").was_updated
    assert check_transition("purchase", "ORDERED", "RECEIVED").was_updated


def test_delivered_order_cannot_be_cancelled():
    with pytest.raises(HTTPException) as exc_info:
        check_transition("sales", "DELIVERED", "CANCELLED")
    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "invalid_transition"


def test_dispatched_order_cannot_be_cancelled():
    with pytest.raises(HTTPException) as exc_info:
        check_transition("sales", "DISPATCH", "CANCELLED")
    assert exc_info.value.status_code == 409


@pytest.mark.parametrize(
    "kind,statuses,table",
    [("sales", SALES_STATUSES, SALES_TRANSITIONS), ("purchase", PURCHASE_STATUSES, PURCHASE_TRANSITIONS)],
)
def test_terminal_states_have_no_exit(kind, statuses, table):
    terminal = [s for s in statuses if not table[s]]
    assert terminal
    for src in terminal:
        for dst in statuses:
            if dst == src:
                continue
            with pytest.raises(HTTPException):
                check_transition(kind, src, dst)


def test_repeats_are_noops_or_refresh():
    assert check_transition("sales", "CANCELLED", "CANCELLED").was_updated is False
    assert check_transition("sales", "DELIVERED", "DELIVERED").was_updated is False
    assert check_transition("purchase", "CANCELLED", "CANCELLED").was_updated is False
    assert check_transition("sales", "DISPATCH", "DISPATCH").was_updated is True


def test_second_receipt_is_a_conflict():
    with pytest.raises(HTTPException) as exc_info:
        check_transition("purchase", "RECEIVED", "RECEIVED")
    assert exc_info.value.status_code == 409


def test_unknown_target_status_is_bad_request():
    with pytest.raises(HTTPException) as exc_info:
        check_transition("sales", "DRAFT", "SHIPPED")
    assert exc_info.value.status_code == 400


def test_only_initial_status_is_editable():
    assert is_editable("sales", "DRAFT")
    assert not is_editable("sales", "CONFIRMED")
    assert is_editable("purchase", "ORDERED")
    assert not is_editable("purchase", "IN_TRANSIT")


def test_confirm_guard_requires_customer_seller_and_lines():
    with pytest.raises(HTTPException) as exc_info:
        assert_can_confirm(None, "s1", 1)
    assert exc_info.value.code == "missing_customer"
    with pytest.raises(HTTPException) as exc_info:
        assert_can_confirm("c1", " ", 1)
    assert exc_info.value.code == "missing_seller"
    with pytest.raises(HTTPException) as exc_info:
        assert_can_confirm("c1", "s1", 0)
    assert exc_info.value.code == "empty_order"
    assert_can_confirm("c1", "s1", 2)


def test_remittance_is_trimmed_and_required():
    assert normalize_remittance("  R-0001 ") == "R-0001"
    with pytest.raises(HTTPException) as exc_info:
        normalize_remittance("   ")
    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "missing_remittance_number"


def test_ship_guard_requires_date_and_provider():
    assert assert_can_ship(date(2026, 1, 5), " Andreani ") == "Andreani"
    with pytest.raises(HTTPException):
        assert_can_ship(None, "Andreani")
    with pytest.raises(HTTPException):
        assert_can_ship(date(2026, 1, 5), "")


def test_receipt_guard_requires_a_received_line():
    with pytest.raises(HTTPException) as exc_info:
        received_lines([{"item_id": "i1", "received": False}])
    assert exc_info.value.detail == "at least one product must be marked received"


def test_receipt_guard_checks_every_received_line():
    good = {"item_id": "i1", "received": True, "lot_number": "L1", "expiration_date": date(2027, 1, 1), "measured_quantity": Decimal("5")}
    skipped = {"item_id": "i2", "received": False}
    assert received_lines([good, skipped]) == [good]

    for patch, code in (
        ({"lot_number": " "}, "missing_lot_number"),
        ({"expiration_date": None}, "missing_expiration_date"),
        ({"measured_quantity": Decimal("0")}, "invalid_received_quantity"),
    ):
        with pytest.raises(HTTPException) as exc_info:
            received_lines([good, {**good, "item_id": "i3", **patch}])
        assert exc_info.value.code == code


def test_receipt_guard_rejects_the_same_line_twice():
    first = {"item_id": "i1", "received": True, "lot_number": "L1", "expiration_date": date(2027, 1, 1), "measured_quantity": Decimal("5")}
    other = {**first, "item_id": "i2"}
    # Different order lines may share a lot number.
    assert received_lines([first, other]) == [first, other]
    with pytest.raises(HTTPException) as exc_info:
        received_lines([first, {**first, "lot_number": "L2"}])
    assert exc_info.value.code == "duplicate_receipt_line"
