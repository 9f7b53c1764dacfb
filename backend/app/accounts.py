from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from .balances import BalanceChange, stored_status
from .errors import conflict, not_found
from .money import ZERO, q_money, to_decimal


# Receivables hang off sales orders, payables off purchase orders.
ACCOUNT_KINDS = {
    "receivables": {
        "table": "accounts_receivable",
        "payments": "receivable_payments",
        "fk": "account_receivable_id",
        "order_fk": "sales_order_id",
        "party_fk": "customer_id",
        "entity": "account_receivable",
    },
    "payables": {
        "table": "accounts_payable",
        "payments": "payable_payments",
        "fk": "account_payable_id",
        "order_fk": "purchase_order_id",
        "party_fk": "supplier_id",
        "entity": "account_payable",
    },
}


def account_meta(kind: str) -> dict:
    meta = ACCOUNT_KINDS.get((kind or "").strip().lower())
    if meta is None:
        raise not_found(f"unknown account kind: {kind}", "account_kind_not_found")
    return meta


def clean_text(v: Optional[str]) -> Optional[str]:
    s = (v or "").strip()
    return s or None


def create_account(cur, organization_id: str, kind: str, order_id: str, party_id: Optional[str], total, due_date: Optional[date]) -> str:
    """
    Open the receivable/payable for an order. An order gets exactly one account.
    """
    meta = account_meta(kind)
    cur.execute(
        f"""
        SELECT id
        FROM {meta['table']}
        WHERE organization_id = %s AND {meta['order_fk']} = %s
        """,
        (organization_id, order_id),
    )
    if cur.fetchone():
        raise conflict("an account already exists for this order", "account_exists")
    amount = q_money(total)
    cur.execute(
        f"""
        INSERT INTO {meta['table']}
          (id, organization_id, {meta['order_fk']}, {meta['party_fk']}, total_amount, pending_balance, status, due_date)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (organization_id, order_id, party_id, amount, amount, stored_status(amount, amount), due_date),
    )
    return str(cur.fetchone()["id"])


def lock_account(cur, organization_id: str, kind: str, account_id: str) -> dict:
    meta = account_meta(kind)
    cur.execute(
        f"""
        SELECT id, {meta['order_fk']} AS order_id, {meta['party_fk']} AS party_id,
               total_amount, pending_balance, status, due_date
        FROM {meta['table']}
        WHERE organization_id = %s AND id = %s
        FOR UPDATE
        """,
        (organization_id, account_id),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("account not found", "account_not_found")
    return row


def lock_account_for_order(cur, organization_id: str, kind: str, order_id: str) -> Optional[dict]:
    meta = account_meta(kind)
    cur.execute(
        f"""
        SELECT id, total_amount, pending_balance, status, due_date
        FROM {meta['table']}
        WHERE organization_id = %s AND {meta['order_fk']} = %s
        FOR UPDATE
        """,
        (organization_id, order_id),
    )
    return cur.fetchone()


def lock_payment(cur, organization_id: str, kind: str, payment_id: str) -> dict:
    meta = account_meta(kind)
    cur.execute(
        f"""
        SELECT id, {meta['fk']} AS account_id, amount, payment_method, payment_date,
               reference_number, notes
        FROM {meta['payments']}
        WHERE organization_id = %s AND id = %s
        FOR UPDATE
        """,
        (organization_id, payment_id),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("payment not found", "payment_not_found")
    return row


def paid_total(cur, organization_id: str, kind: str, account_id: str) -> Decimal:
    meta = account_meta(kind)
    cur.execute(
        f"""
        SELECT COALESCE(SUM(amount), 0) AS paid
        FROM {meta['payments']}
        WHERE organization_id = %s AND {meta['fk']} = %s
        """,
        (organization_id, account_id),
    )
    row = cur.fetchone()
    return q_money(row["paid"]) if row else q_money(ZERO)


def save_balance(cur, organization_id: str, kind: str, account_id: str, change: BalanceChange, total=None) -> None:
    meta = account_meta(kind)
    if total is None:
        cur.execute(
            f"""
            UPDATE {meta['table']}
            SET pending_balance = %s, status = %s, updated_at = now()
            WHERE organization_id = %s AND id = %s
            """,
            (change.pending_balance, change.status, organization_id, account_id),
        )
        return
    cur.execute(
        f"""
        UPDATE {meta['table']}
        SET total_amount = %s, pending_balance = %s, status = %s, updated_at = now()
        WHERE organization_id = %s AND id = %s
        """,
        (q_money(total), change.pending_balance, change.status, organization_id, account_id),
    )


def insert_payment(
    cur,
    organization_id: str,
    kind: str,
    account_id: str,
    amount,
    method: str,
    payment_date: date,
    reference_number: Optional[str],
    notes: Optional[str],
    actor_id: Optional[str],
) -> str:
    meta = account_meta(kind)
    cur.execute(
        f"""
        INSERT INTO {meta['payments']}
          (id, organization_id, {meta['fk']}, amount, payment_method, payment_date,
           reference_number, notes, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            organization_id,
            account_id,
            q_money(amount),
            method,
            payment_date,
            clean_text(reference_number),
            clean_text(notes),
            actor_id,
        ),
    )
    return str(cur.fetchone()["id"])


def account_has_payments(cur, organization_id: str, kind: str, account_id: str) -> bool:
    return to_decimal(paid_total(cur, organization_id, kind, account_id)) > 0


def delete_account_for_order(cur, organization_id: str, kind: str, order_id: str) -> Optional[str]:
    """
    Drop the account opened for an order that is being cancelled.
    Accounts that already carry payments are kept and the cancel is refused.
    """
    acct = lock_account_for_order(cur, organization_id, kind, order_id)
    if not acct:
        return None
    account_id = str(acct["id"])
    if account_has_payments(cur, organization_id, kind, account_id):
        raise conflict("order has registered payments; delete them before cancelling", "account_has_payments")
    meta = account_meta(kind)
    cur.execute(
        f"""
        DELETE FROM {meta['table']}
        WHERE organization_id = %s AND id = %s
        """,
        (organization_id, account_id),
    )
    return account_id
