from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from datetime import date
from ..db import get_conn, set_org_context
from ..deps import get_org_id, get_actor_id
from ..validation import AccountKind, AccountStatus, PaymentMethod
from ..accounts import (
    account_meta,
    clean_text,
    insert_payment,
    lock_account,
    lock_payment,
    save_balance,
)
from ..audit_log import record_audit
from ..balances import (
    apply_payment,
    apply_payment_edit,
    assert_positive_amount,
    derive_account_status,
    read_pending,
    revert_payment,
)
from ..config import settings
from ..errors import not_found
from ..financial_summary import PROJECTED_PURCHASE_STATUSES, payable_projection, receivable_metrics, top_debtors
from ..logs import _json_log
from ..money import q_money

router = APIRouter(prefix="/collections", tags=["collections"])

_PARTY_TABLES = {
    "receivables": "customers",
    "payables": "suppliers",
}


class PaymentIn(BaseModel):
    amount: Decimal
    method: PaymentMethod = "cash"
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    amount: Decimal
    method: Optional[PaymentMethod] = None
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


def _account_view(row: dict, today: Optional[date] = None) -> dict:
    total = q_money(row.get("total_amount"))
    return {
        "id": row["id"],
        "order_id": row.get("order_id"),
        "party_id": row.get("party_id"),
        "party_name": row.get("party_name"),
        "total_amount": total,
        "pending_balance": read_pending(row.get("pending_balance")),
        "paid_amount": q_money(total - read_pending(row.get("pending_balance"))),
        "status": derive_account_status(total, row.get("pending_balance"), row.get("due_date"), today),
        "due_date": row.get("due_date"),
        "created_at": row.get("created_at"),
    }


# Mirrors balances.derive_account_status so filtering happens before LIMIT.
_STATUS_FILTERS = {
    "PAID": ("a.pending_balance <= 0", 0),
    "PARTIAL": ("a.pending_balance > 0 AND a.pending_balance < a.total_amount", 0),
    "OVERDUE": (
        "a.pending_balance > 0 AND a.pending_balance >= a.total_amount AND a.due_date < %s",
        1,
    ),
    "PENDING": (
        "a.pending_balance > 0 AND a.pending_balance >= a.total_amount AND (a.due_date IS NULL OR a.due_date >= %s)",
        1,
    ),
}


def _list_accounts(kind: str, organization_id: str, status: Optional[str], limit: int):
    meta = account_meta(kind)
    limit = max(1, min(int(limit or 100), settings.max_page_size))
    today = date.today()
    where = "a.organization_id = %s"
    params: list = [organization_id]
    if status:
        clause, n_dates = _STATUS_FILTERS[status]
        where += f" AND {clause}"
        params.extend([today] * n_dates)
    params.append(limit)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT a.id, a.{meta['order_fk']} AS order_id, a.{meta['party_fk']} AS party_id,
                       p.name AS party_name, a.total_amount, a.pending_balance, a.status,
                       a.due_date, a.created_at
                FROM {meta['table']} a
                LEFT JOIN {_PARTY_TABLES[kind]} p ON p.id = a.{meta['party_fk']}
                WHERE {where}
                ORDER BY a.due_date NULLS LAST, a.created_at, a.id
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall() or []
    return {"accounts": [_account_view(r, today) for r in rows]}


@router.get("/receivables")
def list_receivables(
    status: Optional[AccountStatus] = None,
    limit: int = Query(100, ge=1),
    organization_id: str = Depends(get_org_id),
):
    return _list_accounts("receivables", organization_id, status, limit)


@router.get("/payables")
def list_payables(
    status: Optional[AccountStatus] = None,
    limit: int = Query(100, ge=1),
    organization_id: str = Depends(get_org_id),
):
    return _list_accounts("payables", organization_id, status, limit)


@router.get("/summary")
def collections_summary(
    top: int = Query(10, ge=1, le=100),
    organization_id: str = Depends(get_org_id),
):
    """
    Dashboard view of open money: receivables split into overdue/upcoming,
    the largest debtors, and what open purchase orders will owe in the next
    7/15/30 days.
    """
    today = date.today()
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT a.customer_id AS party_id, c.name AS party_name, a.pending_balance, a.due_date
                FROM accounts_receivable a
                LEFT JOIN customers c ON c.id = a.customer_id
                WHERE a.organization_id = %s AND a.pending_balance > 0
                """,
                (organization_id,),
            )
            receivables = cur.fetchall() or []
            cur.execute(
                """
                SELECT total_amount, payment_due_date
                FROM purchase_orders
                WHERE organization_id = %s
                  AND status = ANY(%s)
                  AND payment_due_date IS NOT NULL
                """,
                (organization_id, list(PROJECTED_PURCHASE_STATUSES)),
            )
            open_purchases = cur.fetchall() or []
    return {
        "as_of": today,
        "receivables": receivable_metrics(receivables, today),
        "top_debtors": top_debtors(receivables, today, top),
        "payables_projection": payable_projection(open_purchases, today),
    }


@router.get("/{kind}/{account_id}/payments")
def list_payments(kind: AccountKind, account_id: str, organization_id: str = Depends(get_org_id)):
    meta = account_meta(kind)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, total_amount, pending_balance, due_date
                FROM {meta['table']}
                WHERE organization_id = %s AND id = %s
                """,
                (organization_id, account_id),
            )
            acct = cur.fetchone()
            if not acct:
                raise not_found("account not found", "account_not_found")
            cur.execute(
                f"""
                SELECT id, amount, payment_method, payment_date, reference_number, notes, created_at
                FROM {meta['payments']}
                WHERE organization_id = %s AND {meta['fk']} = %s
                ORDER BY payment_date DESC, created_at DESC, id DESC
                """,
                (organization_id, account_id),
            )
            payments = cur.fetchall() or []
    return {
        "account_id": account_id,
        "pending_balance": read_pending(acct["pending_balance"]),
        "status": derive_account_status(acct["total_amount"], acct["pending_balance"], acct.get("due_date")),
        "payments": payments,
    }


@router.post("/{kind}/{account_id}/payments")
def register_payment(
    kind: AccountKind,
    account_id: str,
    data: PaymentIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    meta = account_meta(kind)
    amount = assert_positive_amount(data.amount)
    payment_date = data.payment_date or date.today()
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                acct = lock_account(cur, organization_id, kind, account_id)
                change = apply_payment(acct["total_amount"], acct["pending_balance"], amount)
                payment_id = insert_payment(
                    cur,
                    organization_id,
                    kind,
                    account_id,
                    amount,
                    data.method,
                    payment_date,
                    data.reference_number,
                    data.notes,
                    actor_id,
                )
                save_balance(cur, organization_id, kind, account_id, change)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "payment_registered",
                    meta["entity"],
                    account_id,
                    {"payment_id": payment_id, "amount": str(amount), "method": data.method},
                )
    _json_log(
        "info",
        "collections.payment.registered",
        organization_id=organization_id,
        kind=kind,
        account_id=account_id,
        payment_id=payment_id,
        amount=amount,
        status=change.status,
    )
    return {
        "success": True,
        "payment_id": payment_id,
        "account_id": account_id,
        "new_pending_balance": change.pending_balance,
        "new_status": change.status,
    }


@router.patch("/{kind}/payments/{payment_id}")
def update_payment(
    kind: AccountKind,
    payment_id: str,
    data: PaymentUpdate,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    meta = account_meta(kind)
    new_amount = assert_positive_amount(data.amount)
    sent = data.model_fields_set
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                pay = lock_payment(cur, organization_id, kind, payment_id)
                account_id = str(pay["account_id"])
                acct = lock_account(cur, organization_id, kind, account_id)
                change = apply_payment_edit(acct["total_amount"], acct["pending_balance"], pay["amount"], new_amount)
                cur.execute(
                    f"""
                    UPDATE {meta['payments']}
                    SET amount = %s,
                        payment_method = %s,
                        payment_date = %s,
                        reference_number = %s,
                        notes = %s,
                        updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (
                        new_amount,
                        data.method or pay["payment_method"],
                        data.payment_date or pay["payment_date"],
                        clean_text(data.reference_number) if "reference_number" in sent else pay.get("reference_number"),
                        clean_text(data.notes) if "notes" in sent else pay.get("notes"),
                        organization_id,
                        payment_id,
                    ),
                )
                save_balance(cur, organization_id, kind, account_id, change)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "payment_updated",
                    meta["entity"],
                    account_id,
                    {"payment_id": payment_id, "old_amount": str(pay["amount"]), "new_amount": str(new_amount)},
                )
    _json_log(
        "info",
        "collections.payment.updated",
        organization_id=organization_id,
        kind=kind,
        account_id=account_id,
        payment_id=payment_id,
        status=change.status,
    )
    return {
        "success": True,
        "payment_id": payment_id,
        "account_id": account_id,
        "new_pending_balance": change.pending_balance,
        "new_status": change.status,
    }


@router.delete("/{kind}/payments/{payment_id}")
def delete_payment(
    kind: AccountKind,
    payment_id: str,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    meta = account_meta(kind)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                pay = lock_payment(cur, organization_id, kind, payment_id)
                account_id = str(pay["account_id"])
                acct = lock_account(cur, organization_id, kind, account_id)
                change = revert_payment(acct["total_amount"], acct["pending_balance"], pay["amount"])
                cur.execute(
                    f"""
                    DELETE FROM {meta['payments']}
                    WHERE organization_id = %s AND id = %s
                    """,
                    (organization_id, payment_id),
                )
                save_balance(cur, organization_id, kind, account_id, change)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "payment_deleted",
                    meta["entity"],
                    account_id,
                    {"payment_id": payment_id, "amount": str(pay["amount"])},
                )
    _json_log(
        "info",
        "collections.payment.deleted",
        organization_id=organization_id,
        kind=kind,
        account_id=account_id,
        payment_id=payment_id,
        status=change.status,
    )
    return {
        "success": True,
        "payment_id": payment_id,
        "account_id": account_id,
        "new_pending_balance": change.pending_balance,
        "new_status": change.status,
    }
