from datetime import date, timedelta
from typing import Optional


def compute_due_date(base_date: date, expiration_date: Optional[date] = None, credit_days: Optional[int] = None) -> date:
    # An explicit expiration wins over the credit term.
    if expiration_date:
        return expiration_date
    days = int(credit_days or 0)
    if days > 0:
        return base_date + timedelta(days=days)
    return base_date
