#!/usr/bin/env python3
"""
Lightweight financial integrity checks.

Catches stored amounts that no longer add up:
- Sales/purchase order totals == policy(sum(line subtotals), tax snapshot, discount)
- Receivable/payable pending balance == total - sum(payments), within [0, total]
- Stored account status == status derived from the stored amounts

This is intentionally read-only and safe to run against production DBs.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from decimal import Decimal


# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.accounts import ACCOUNT_KINDS  # noqa: E402
from backend.app.balances import stored_status  # noqa: E402
from backend.app.db import get_conn, set_org_context  # noqa: E402
from backend.app.money import q_money, to_decimal  # noqa: E402
from backend.app.orders import ORDER_TABLES  # noqa: E402
from backend.app.pricing import PricedLine, TaxRate, compute_order_totals  # noqa: E402


EPS = Decimal("0.01")

# Orders whose totals are frozen (no longer recomputed on edit) still must add up.
_CHECKED_STATUSES = {
    "sales": ("DRAFT", "CONFIRMED", "DISPATCH", "DELIVERED"),
    "purchase": ("ORDERED", "IN_TRANSIT", "RECEIVED"),
}


@dataclass
class Finding:
    kind: str
    id: str
    ref: str
    message: str


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument(
        "--organization-id",
        default=os.environ.get("ORGANIZATION_ID") or "",
        help="Organization UUID (or env ORGANIZATION_ID)",
    )
    p.add_argument("--limit", type=int, default=200, help="Rows per check (default: 200)")
    return p.parse_args()


def _stored_line(r: dict) -> PricedLine:
    subtotal = to_decimal(r.get("subtotal"))
    discount = to_decimal(r.get("discount_amount"))
    return PricedLine(
        product_id=str(r.get("product_id") or ""),
        quantity=to_decimal(r.get("quantity")),
        measured_quantity=r.get("measured_quantity"),
        measure_estimated=bool(r.get("measure_estimated")),
        unit_price=Decimal("0"),
        applied_unit_price=Decimal("0"),
        base_price=Decimal("0"),
        discount_percent=Decimal("0"),
        gross_amount=subtotal + discount,
        discount_amount=discount,
        subtotal=subtotal,
    )


def order_total_findings(kind: str, order: dict, items: list[dict], taxes: list[dict]) -> list[Finding]:
    """
    Compare one stored order against its totals policy. Purchase orders that
    were received are priced from their received lines only.
    """
    if kind == "purchase" and order.get("status") == "RECEIVED":
        items = [it for it in items if it.get("received")]
    expected = compute_order_totals(
        kind,
        [_stored_line(it) for it in items],
        [TaxRate(tax_id=t.get("tax_id"), name=t.get("name") or "", rate=t.get("rate")) for t in taxes],
        order.get("global_discount_percent"),
    )
    got = q_money(order.get("total_amount"))
    delta = got - expected.total
    if abs(delta) > EPS:
        return [
            Finding(
                kind=f"{kind}_order_total_mismatch",
                id=str(order["id"]),
                ref=str(order.get("number") or order["id"]),
                message=f"total mismatch: got {got} expected {expected.total} delta {delta}",
            )
        ]
    return []


def account_findings(kind: str, account: dict, paid) -> list[Finding]:
    findings: list[Finding] = []
    total = q_money(account.get("total_amount"))
    pending = q_money(account.get("pending_balance"))
    paid_amt = q_money(paid)
    ref = str(account.get("order_id") or account["id"])
    if pending < 0 or pending > total:
        findings.append(
            Finding(
                kind=f"{kind}_balance_out_of_range",
                id=str(account["id"]),
                ref=ref,
                message=f"pending {pending} outside [0, {total}]",
            )
        )
    if abs(total - paid_amt - pending) > EPS:
        findings.append(
            Finding(
                kind=f"{kind}_balance_mismatch",
                id=str(account["id"]),
                ref=ref,
                message=f"pending {pending} != total {total} - paid {paid_amt}",
            )
        )
    expected_status = stored_status(total, pending)
    if (account.get("status") or "") != expected_status:
        findings.append(
            Finding(
                kind=f"{kind}_status_mismatch",
                id=str(account["id"]),
                ref=ref,
                message=f"status {account.get('status')} expected {expected_status}",
            )
        )
    return findings


def check_orders(kind: str, organization_id: str, limit: int) -> list[Finding]:
    meta = ORDER_TABLES[kind]
    number_col = "sale_number" if kind == "sales" else "order_number"
    findings: list[Finding] = []
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, {number_col} AS number, status, total_amount, global_discount_percent
                FROM {meta['table']}
                WHERE organization_id = %s AND status = ANY(%s)
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (organization_id, list(_CHECKED_STATUSES[kind]), limit),
            )
            for order in cur.fetchall():
                cur.execute(
                    f"""
                    SELECT product_id, quantity, measured_quantity, subtotal, discount_amount
                           {", received" if kind == "purchase" else ""}
                    FROM {meta['items']}
                    WHERE organization_id = %s AND {meta['fk']} = %s
                    """,
                    (organization_id, order["id"]),
                )
                items = cur.fetchall()
                cur.execute(
                    f"""
                    SELECT tax_id, name, rate
                    FROM {meta['taxes']}
                    WHERE organization_id = %s AND {meta['fk']} = %s
                    """,
                    (organization_id, order["id"]),
                )
                taxes = cur.fetchall()
                findings.extend(order_total_findings(kind, order, items, taxes))
    return findings


def check_accounts(kind: str, organization_id: str, limit: int) -> list[Finding]:
    meta = ACCOUNT_KINDS[kind]
    findings: list[Finding] = []
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT a.id, a.{meta['order_fk']} AS order_id, a.total_amount, a.pending_balance, a.status,
                       COALESCE(p.paid, 0) AS paid
                FROM {meta['table']} a
                LEFT JOIN (
                  SELECT {meta['fk']} AS account_id, SUM(amount) AS paid
                  FROM {meta['payments']}
                  WHERE organization_id = %s
                  GROUP BY {meta['fk']}
                ) p ON p.account_id = a.id
                WHERE a.organization_id = %s
                ORDER BY a.created_at DESC, a.id DESC
                LIMIT %s
                """,
                (organization_id, organization_id, limit),
            )
            for r in cur.fetchall():
                findings.extend(account_findings(kind, r, r["paid"]))
    return findings


def main() -> int:
    args = _parse_args()
    organization_id = (args.organization_id or "").strip()
    if not organization_id:
        print("Missing --organization-id (or env ORGANIZATION_ID).", file=sys.stderr)
        return 2
    limit = max(1, min(int(args.limit or 200), 5000))

    findings: list[Finding] = []
    findings.extend(check_orders("sales", organization_id, limit))
    findings.extend(check_orders("purchase", organization_id, limit))
    findings.extend(check_accounts("receivables", organization_id, limit))
    findings.extend(check_accounts("payables", organization_id, limit))

    if not findings:
        print("OK: no integrity issues found.")
        return 0

    print(f"Found {len(findings)} issue(s):")
    for f in findings[:200]:
        print(f"- {f.kind}: {f.ref} ({f.id}) -> {f.message}")
    if len(findings) > 200:
        print(f"... plus {len(findings) - 200} more")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
