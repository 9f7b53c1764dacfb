from __future__ import annotations

from typing import Iterable, Optional

from .catalog import load_catalog, load_tax_rates
from .errors import not_found
from .pricing import (
    CatalogProduct,
    LineInput,
    OrderTotals,
    PricedLine,
    TaxRate,
    compute_order_totals,
    price_line,
)


ORDER_TABLES = {
    "sales": {
        "table": "sales_orders",
        "items": "sales_order_items",
        "taxes": "sales_order_taxes",
        "fk": "sales_order_id",
        "entity": "sales_order",
    },
    "purchase": {
        "table": "purchase_orders",
        "items": "purchase_order_items",
        "taxes": "purchase_order_taxes",
        "fk": "purchase_order_id",
        "entity": "purchase_order",
    },
}


def price_order(
    cur,
    organization_id: str,
    kind: str,
    lines: list[LineInput],
    tax_ids: Iterable[str],
    global_discount_percent,
    tax_snapshot: Optional[list[TaxRate]] = None,
) -> tuple[list[PricedLine], list[TaxRate], OrderTotals, dict[str, CatalogProduct]]:
    """
    Server-side pricing of an order from its raw inputs. Totals sent by
    clients are never stored. An existing tax snapshot is reused as-is;
    otherwise tax ids are resolved against the current catalog.
    """
    catalog = load_catalog(cur, organization_id, [ln.product_id for ln in lines])
    taxes = tax_snapshot if tax_snapshot is not None else load_tax_rates(cur, organization_id, tax_ids)
    priced = [price_line(ln, catalog.get(str(ln.product_id))) for ln in lines]
    totals = compute_order_totals(kind, priced, taxes, global_discount_percent)
    return priced, taxes, totals, catalog


def lock_order(cur, organization_id: str, kind: str, order_id: str, columns: str) -> dict:
    meta = ORDER_TABLES[kind]
    cur.execute(
        f"""
        SELECT {columns}
        FROM {meta['table']}
        WHERE organization_id = %s AND id = %s
        FOR UPDATE
        """,
        (organization_id, order_id),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("order not found", "order_not_found")
    return row


def save_totals(cur, organization_id: str, kind: str, order_id: str, totals: OrderTotals) -> None:
    meta = ORDER_TABLES[kind]
    cur.execute(
        f"""
        UPDATE {meta['table']}
        SET subtotal_amount = %s,
            line_discount_amount = %s,
            total_tax_amount = %s,
            global_discount_percent = %s,
            global_discount_amount = %s,
            pre_discount_total = %s,
            total_amount = %s,
            updated_at = now()
        WHERE organization_id = %s AND id = %s
        """,
        (
            totals.subtotal,
            totals.line_discount,
            totals.total_tax,
            totals.global_discount_percent,
            totals.global_discount,
            totals.pre_discount_total,
            totals.total,
            organization_id,
            order_id,
        ),
    )


def replace_tax_snapshot(cur, organization_id: str, kind: str, order_id: str, totals: OrderTotals) -> None:
    meta = ORDER_TABLES[kind]
    cur.execute(
        f"""
        DELETE FROM {meta['taxes']}
        WHERE organization_id = %s AND {meta['fk']} = %s
        """,
        (organization_id, order_id),
    )
    for t in totals.taxes:
        cur.execute(
            f"""
            INSERT INTO {meta['taxes']}
              (id, organization_id, {meta['fk']}, tax_id, name, rate, base_amount, tax_amount)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
            """,
            (organization_id, order_id, t.tax_id, t.name, t.rate, t.base, t.amount),
        )


def load_tax_snapshot(cur, organization_id: str, kind: str, order_id: str) -> list[TaxRate]:
    meta = ORDER_TABLES[kind]
    cur.execute(
        f"""
        SELECT tax_id, name, rate
        FROM {meta['taxes']}
        WHERE organization_id = %s AND {meta['fk']} = %s
        ORDER BY name, id
        """,
        (organization_id, order_id),
    )
    return [
        TaxRate(tax_id=(str(r["tax_id"]) if r.get("tax_id") else None), name=r.get("name") or "", rate=r.get("rate"))
        for r in cur.fetchall() or []
    ]


def fetch_order(cur, organization_id: str, kind: str, order_id: str) -> dict:
    meta = ORDER_TABLES[kind]
    cur.execute(
        f"""
        SELECT *
        FROM {meta['table']}
        WHERE organization_id = %s AND id = %s
        """,
        (organization_id, order_id),
    )
    order = cur.fetchone()
    if not order:
        raise not_found("order not found", "order_not_found")
    cur.execute(
        f"""
        SELECT *
        FROM {meta['items']}
        WHERE organization_id = %s AND {meta['fk']} = %s
        ORDER BY line_no, id
        """,
        (organization_id, order_id),
    )
    lines = cur.fetchall() or []
    cur.execute(
        f"""
        SELECT tax_id, name, rate, base_amount, tax_amount
        FROM {meta['taxes']}
        WHERE organization_id = %s AND {meta['fk']} = %s
        ORDER BY name, id
        """,
        (organization_id, order_id),
    )
    taxes = cur.fetchall() or []
    return {"order": order, "lines": lines, "taxes": taxes}


def list_orders(cur, organization_id: str, kind: str, status: Optional[str], limit: int, offset: int) -> list[dict]:
    meta = ORDER_TABLES[kind]
    params: list = [organization_id]
    where = "organization_id = %s"
    if status:
        where += " AND status = %s"
        params.append(status)
    params.extend([limit, offset])
    cur.execute(
        f"""
        SELECT *
        FROM {meta['table']}
        WHERE {where}
        ORDER BY created_at DESC, id DESC
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return cur.fetchall() or []
