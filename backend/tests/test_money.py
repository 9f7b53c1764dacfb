from decimal import Decimal

from backend.app.money import (
    capped_discount,
    clamp_non_negative,
    clamp_percent,
    percent_of,
    q_money,
    to_decimal,
)


def test_to_decimal_treats_garbage_as_zero():
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("") == Decimal("0")
    assert to_decimal("  ") == Decimal("0")
    assert to_decimal("abc") == Decimal("0")
    assert to_decimal("NaN") == Decimal("0")
    assert to_decimal(float("nan")) == Decimal("0")
    assert to_decimal(float("inf")) == Decimal("0")
    assert to_decimal(Decimal("-Infinity")) == Decimal("0")


def test_to_decimal_keeps_numbers():
    assert to_decimal("12.50") == Decimal("12.50")
    assert to_decimal(3) == Decimal("3")
    assert to_decimal(Decimal("-4.2")) == Decimal("-4.2")


def test_clamps():
    assert clamp_non_negative(Decimal("-1")) == Decimal("0")
    assert clamp_non_negative(Decimal("2")) == Decimal("2")
    assert clamp_percent(Decimal("150")) == Decimal("100")
    assert clamp_percent(Decimal("-5")) == Decimal("0")
    assert clamp_percent("NaN") == Decimal("0")


def test_percent_of_and_capped_discount():
    assert percent_of(Decimal("1500"), Decimal("21")) == Decimal("315")
    assert capped_discount(Decimal("1000"), Decimal("150")) == Decimal("1000")
    assert capped_discount(Decimal("1000"), Decimal("-10")) == Decimal("0")
    assert capped_discount(Decimal("-50"), Decimal("10")) == Decimal("0")
    assert capped_discount(Decimal("200"), Decimal("10")) == Decimal("20")


def test_q_money_rounds_half_up():
    assert q_money(Decimal("0.005")) == Decimal("0.01")
    assert q_money(Decimal("2.344")) == Decimal("2.34")
    assert q_money(Decimal("2.345")) == Decimal("2.35")
