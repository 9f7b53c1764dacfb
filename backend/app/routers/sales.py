from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date
from ..db import get_conn, set_org_context
from ..deps import get_org_id, get_actor_id
from ..validation import SalesStatus
from ..accounts import create_account, delete_account_for_order
from ..audit_log import record_audit
from ..config import settings
from ..dates import compute_due_date
from ..errors import bad_request, conflict
from ..inventory import StockRequirement, consume_for_sales_order, restock_sales_order
from ..logs import _json_log
from ..money import to_decimal
from ..order_status import (
    assert_can_confirm,
    check_transition,
    is_editable,
    normalize_remittance,
)
from ..orders import (
    fetch_order,
    list_orders,
    load_tax_snapshot,
    lock_order,
    price_order,
    replace_tax_snapshot,
    save_totals,
)
from ..pricing import CatalogProduct, LineInput, PricedLine

router = APIRouter(prefix="/sales", tags=["sales"])

_ORDER_COLUMNS = (
    "id, status, sale_number, customer_id, seller_id, sale_date, expiration_date, "
    "credit_days, global_discount_percent, remittance_number"
)


class SalesLineIn(BaseModel):
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    measured_quantity: Optional[Decimal] = None
    base_price: Optional[Decimal] = None
    discount_percent: Decimal = Decimal("0")


class SalesOrderIn(BaseModel):
    customer_id: Optional[str] = None
    seller_id: Optional[str] = None
    sale_date: Optional[date] = None
    expiration_date: Optional[date] = None
    credit_days: Optional[int] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None
    lines: List[SalesLineIn] = []
    tax_ids: List[str] = []
    global_discount_percent: Decimal = Decimal("0")


class SalesOrderUpdate(BaseModel):
    customer_id: Optional[str] = None
    seller_id: Optional[str] = None
    sale_date: Optional[date] = None
    expiration_date: Optional[date] = None
    credit_days: Optional[int] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None
    lines: Optional[List[SalesLineIn]] = None
    tax_ids: Optional[List[str]] = None
    global_discount_percent: Optional[Decimal] = None


class SalesPreviewIn(BaseModel):
    lines: List[SalesLineIn] = []
    tax_ids: List[str] = []
    global_discount_percent: Decimal = Decimal("0")


class DispatchIn(BaseModel):
    remittance_number: Optional[str] = None


def _line_inputs(lines: List[SalesLineIn]) -> list[LineInput]:
    out: list[LineInput] = []
    for idx, ln in enumerate(lines or [], start=1):
        if not (ln.product_id or "").strip():
            raise bad_request(f"line {idx}: product is required", "missing_product")
        if to_decimal(ln.quantity) <= 0:
            raise bad_request(f"line {idx}: quantity must be greater than zero", "invalid_quantity")
        if to_decimal(ln.unit_price) < 0:
            raise bad_request(f"line {idx}: unit price cannot be negative", "invalid_unit_price")
        out.append(
            LineInput(
                product_id=ln.product_id.strip(),
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                measured_quantity=ln.measured_quantity,
                base_price=ln.base_price,
                discount_percent=ln.discount_percent,
            )
        )
    return out


def _stored_line_inputs(cur, organization_id: str, order_id: str) -> list[LineInput]:
    cur.execute(
        """
        SELECT product_id, quantity, measured_quantity, measure_estimated,
               unit_price, base_price, discount_percent
        FROM sales_order_items
        WHERE organization_id = %s AND sales_order_id = %s
        ORDER BY line_no, id
        """,
        (organization_id, order_id),
    )
    return [
        LineInput(
            product_id=str(r["product_id"]),
            quantity=to_decimal(r["quantity"]),
            unit_price=to_decimal(r["unit_price"]),
            # Estimated measures are re-derived from the current lot average.
            measured_quantity=None if r.get("measure_estimated") else r.get("measured_quantity"),
            base_price=r.get("base_price"),
            discount_percent=to_decimal(r.get("discount_percent")),
        )
        for r in cur.fetchall() or []
    ]


def _write_lines(cur, organization_id: str, order_id: str, priced: list[PricedLine]) -> None:
    cur.execute(
        """
        DELETE FROM sales_order_items
        WHERE organization_id = %s AND sales_order_id = %s
        """,
        (organization_id, order_id),
    )
    for line_no, ln in enumerate(priced, start=1):
        cur.execute(
            """
            INSERT INTO sales_order_items
              (id, organization_id, sales_order_id, line_no, product_id, quantity,
               measured_quantity, measure_estimated, unit_price, applied_unit_price,
               base_price, discount_percent, gross_amount, discount_amount, subtotal)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                organization_id,
                order_id,
                line_no,
                ln.product_id,
                ln.quantity,
                ln.measured_quantity,
                ln.measure_estimated,
                ln.unit_price,
                ln.applied_unit_price,
                ln.base_price,
                ln.discount_percent,
                ln.gross_amount,
                ln.discount_amount,
                ln.subtotal,
            ),
        )


def _stock_requirements(priced: list[PricedLine], catalog: dict[str, CatalogProduct]) -> list[StockRequirement]:
    reqs: list[StockRequirement] = []
    for ln in priced:
        product = catalog.get(str(ln.product_id))
        if product is None:
            raise bad_request(f"product not found: {ln.product_id}", "product_not_found")
        if product.is_measured:
            qty = to_decimal(ln.measured_quantity) if ln.measured_quantity is not None else ln.quantity
            units = ln.quantity if product.tracks_stock_units else None
        else:
            qty = ln.quantity
            units = None
        reqs.append(StockRequirement(product_id=product.id, product_name=product.name or product.id, quantity=qty, units=units))
    return reqs


def _movement_reason(order: dict) -> str:
    ref = order.get("sale_number") or order["id"]
    return f"Sale {ref}"


@router.post("/orders/preview")
def preview_sales_order(data: SalesPreviewIn, organization_id: str = Depends(get_org_id)):
    lines = _line_inputs(data.lines)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            priced, _taxes, totals, _catalog = price_order(
                cur, organization_id, "sales", lines, data.tax_ids, data.global_discount_percent
            )
    return {"lines": [ln.as_dict() for ln in priced], "totals": totals.as_dict()}


@router.get("/orders")
def list_sales_orders(
    status: Optional[SalesStatus] = None,
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    organization_id: str = Depends(get_org_id),
):
    limit = min(limit, settings.max_page_size)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            return {"orders": list_orders(cur, organization_id, "sales", status, limit, offset)}


@router.get("/orders/{order_id}")
def get_sales_order(order_id: str, organization_id: str = Depends(get_org_id)):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            return fetch_order(cur, organization_id, "sales", order_id)


@router.post("/orders")
def create_sales_order(
    data: SalesOrderIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    lines = _line_inputs(data.lines)
    sale_date = data.sale_date or date.today()
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                priced, _taxes, totals, _catalog = price_order(
                    cur, organization_id, "sales", lines, data.tax_ids, data.global_discount_percent
                )
                cur.execute(
                    """
                    INSERT INTO sales_orders
                      (id, organization_id, status, customer_id, seller_id, sale_date, expiration_date,
                       credit_days, invoice_number, notes, created_by)
                    VALUES
                      (gen_random_uuid(), %s, 'DRAFT', %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        organization_id,
                        data.customer_id,
                        data.seller_id,
                        sale_date,
                        data.expiration_date,
                        data.credit_days,
                        (data.invoice_number or "").strip() or None,
                        (data.notes or "").strip() or None,
                        actor_id,
                    ),
                )
                order_id = str(cur.fetchone()["id"])
                _write_lines(cur, organization_id, order_id, priced)
                replace_tax_snapshot(cur, organization_id, "sales", order_id, totals)
                save_totals(cur, organization_id, "sales", order_id, totals)
                record_audit(cur, organization_id, actor_id, "sales_order_created", "sales_order", order_id, {"total": str(totals.total)})
    return {"success": True, "id": order_id, "status": "DRAFT", "totals": totals.as_dict()}


@router.patch("/orders/{order_id}")
def update_sales_order(
    order_id: str,
    data: SalesOrderUpdate,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    sent = data.model_fields_set
    new_lines = _line_inputs(data.lines) if data.lines is not None else None
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "sales", order_id, _ORDER_COLUMNS)
                if not is_editable("sales", order["status"]):
                    raise conflict(f"order is {order['status']} and can no longer be edited", "order_not_editable")

                lines = new_lines if new_lines is not None else _stored_line_inputs(cur, organization_id, order_id)
                snapshot = None if data.tax_ids is not None else load_tax_snapshot(cur, organization_id, "sales", order_id)
                pct = data.global_discount_percent if data.global_discount_percent is not None else order.get("global_discount_percent")
                priced, _taxes, totals, _catalog = price_order(
                    cur, organization_id, "sales", lines, data.tax_ids or [], pct, tax_snapshot=snapshot
                )

                fields = {}
                for name in ("customer_id", "seller_id", "sale_date", "expiration_date", "credit_days", "invoice_number", "notes"):
                    if name in sent:
                        val = getattr(data, name)
                        if isinstance(val, str):
                            val = val.strip() or None
                        fields[name] = val
                if fields:
                    sets = ", ".join(f"{k} = %s" for k in fields)
                    cur.execute(
                        f"""
                        UPDATE sales_orders
                        SET {sets}
                        WHERE organization_id = %s AND id = %s
                        """,
                        (*fields.values(), organization_id, order_id),
                    )
                _write_lines(cur, organization_id, order_id, priced)
                replace_tax_snapshot(cur, organization_id, "sales", order_id, totals)
                save_totals(cur, organization_id, "sales", order_id, totals)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "sales_order_updated",
                    "sales_order",
                    order_id,
                    {"fields": sorted(sent), "total": str(totals.total)},
                )
    return {"success": True, "id": order_id, "status": order["status"], "totals": totals.as_dict()}


@router.post("/orders/{order_id}/confirm")
def confirm_sales_order(
    order_id: str,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "sales", order_id, _ORDER_COLUMNS)
                check_transition("sales", order["status"], "CONFIRMED")

                lines = _stored_line_inputs(cur, organization_id, order_id)
                assert_can_confirm(order.get("customer_id"), order.get("seller_id"), len(lines))

                snapshot = load_tax_snapshot(cur, organization_id, "sales", order_id)
                priced, _taxes, totals, catalog = price_order(
                    cur, organization_id, "sales", lines, [], order.get("global_discount_percent"), tax_snapshot=snapshot
                )
                moved = consume_for_sales_order(
                    cur, organization_id, order_id, _stock_requirements(priced, catalog), _movement_reason(order)
                )

                sale_date = order.get("sale_date") or date.today()
                credit_days = order.get("credit_days")
                if credit_days is None:
                    credit_days = settings.default_credit_days
                due_date = compute_due_date(sale_date, order.get("expiration_date"), credit_days)

                _write_lines(cur, organization_id, order_id, priced)
                replace_tax_snapshot(cur, organization_id, "sales", order_id, totals)
                save_totals(cur, organization_id, "sales", order_id, totals)
                cur.execute(
                    """
                    UPDATE sales_orders
                    SET status = 'CONFIRMED', due_date = %s, confirmed_at = now(), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (due_date, organization_id, order_id),
                )
                account_id = create_account(
                    cur, organization_id, "receivables", order_id, order.get("customer_id"), totals.total, due_date
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "sales_order_confirmed",
                    "sales_order",
                    order_id,
                    {"total": str(totals.total), "account_id": account_id, "stock_movements": moved},
                )
    _json_log(
        "info",
        "sales.order.confirmed",
        organization_id=organization_id,
        order_id=order_id,
        total=totals.total,
        stock_movements=moved,
    )
    return {
        "success": True,
        "status": "CONFIRMED",
        "was_updated": True,
        "total_amount": totals.total,
        "due_date": due_date,
        "account_id": account_id,
        "totals": totals.as_dict(),
    }


@router.post("/orders/{order_id}/dispatch")
def dispatch_sales_order(
    order_id: str,
    data: DispatchIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    remittance = normalize_remittance(data.remittance_number)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "sales", order_id, _ORDER_COLUMNS)
                t = check_transition("sales", order["status"], "DISPATCH")
                cur.execute(
                    """
                    UPDATE sales_orders
                    SET status = 'DISPATCH', remittance_number = %s, dispatched_at = now(), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (remittance, organization_id, order_id),
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "sales_order_dispatched",
                    "sales_order",
                    order_id,
                    {"remittance_number": remittance, "from": t.from_status},
                )
    return {"success": True, "status": "DISPATCH", "was_updated": t.was_updated, "remittance_number": remittance}


@router.post("/orders/{order_id}/deliver")
def deliver_sales_order(
    order_id: str,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "sales", order_id, _ORDER_COLUMNS)
                t = check_transition("sales", order["status"], "DELIVERED")
                if not t.was_updated:
                    return {"success": True, "status": "DELIVERED", "was_updated": False}
                cur.execute(
                    """
                    UPDATE sales_orders
                    SET status = 'DELIVERED', delivered_at = now(), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (organization_id, order_id),
                )
                record_audit(cur, organization_id, actor_id, "sales_order_delivered", "sales_order", order_id, {})
    return {"success": True, "status": "DELIVERED", "was_updated": True}


@router.post("/orders/{order_id}/cancel")
def cancel_sales_order(
    order_id: str,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "sales", order_id, _ORDER_COLUMNS)
                t = check_transition("sales", order["status"], "CANCELLED")
                if not t.was_updated:
                    return {"success": True, "status": "CANCELLED", "was_updated": False}

                restocked = 0
                account_id = None
                if t.from_status == "CONFIRMED":
                    account_id = delete_account_for_order(cur, organization_id, "receivables", order_id)
                    restocked = restock_sales_order(cur, organization_id, order_id, f"{_movement_reason(order)} cancelled")
                cur.execute(
                    """
                    UPDATE sales_orders
                    SET status = 'CANCELLED', cancelled_at = now(), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (organization_id, order_id),
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "sales_order_cancelled",
                    "sales_order",
                    order_id,
                    {"from": t.from_status, "restocked_movements": restocked, "removed_account_id": account_id},
                )
    _json_log("info", "sales.order.cancelled", organization_id=organization_id, order_id=order_id, from_status=t.from_status)
    return {"success": True, "status": "CANCELLED", "was_updated": True, "restocked_movements": restocked}
