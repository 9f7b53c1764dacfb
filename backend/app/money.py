from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")

MONEY_Q = Decimal("0.01")
QTY_Q = Decimal("0.000001")


def to_decimal(value) -> Decimal:
    """
    Lenient numeric coercion for amounts coming from in-progress edits.
    Missing, blank, non-numeric and non-finite values all read as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        d = value
    else:
        raw = str(value).strip()
        if not raw:
            return ZERO
        try:
            d = Decimal(raw)
        except (InvalidOperation, ValueError):
            return ZERO
    if not d.is_finite():
        return ZERO
    return d


def q_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def q_qty(value) -> Decimal:
    return to_decimal(value).quantize(QTY_Q, rounding=ROUND_HALF_UP)


def clamp_non_negative(value) -> Decimal:
    d = to_decimal(value)
    return d if d > 0 else ZERO


def clamp_percent(value) -> Decimal:
    d = to_decimal(value)
    if d < 0:
        return ZERO
    if d > HUNDRED:
        return HUNDRED
    return d


def percent_of(base, percent) -> Decimal:
    return to_decimal(base) * to_decimal(percent) / HUNDRED


def capped_discount(base, percent) -> Decimal:
    # Discount never goes negative and never exceeds the (non-negative) base.
    b = clamp_non_negative(base)
    amount = clamp_non_negative(percent_of(base, percent))
    return min(amount, b)
