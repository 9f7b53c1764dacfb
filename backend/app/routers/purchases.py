from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date
from ..db import get_conn, set_org_context
from ..deps import get_org_id, get_actor_id
from ..validation import InputUnit, PurchaseStatus
from ..accounts import create_account, lock_account_for_order, paid_total, save_balance
from ..audit_log import record_audit
from ..balances import rebase_account_total
from ..catalog import load_catalog, load_tax_rates
from ..config import settings
from ..errors import bad_request, conflict
from ..inventory import receive_lot
from ..logs import _json_log
from ..money import to_decimal
from ..order_status import assert_can_ship, check_transition, is_editable, received_lines
from ..orders import (
    fetch_order,
    list_orders,
    load_tax_snapshot,
    lock_order,
    price_order,
    replace_tax_snapshot,
    save_totals,
)
from ..pricing import (
    CatalogProduct,
    LineInput,
    OrderTotals,
    PricedLine,
    available_input_units,
    compute_order_totals,
    convert_to_base_units,
    price_line,
)

router = APIRouter(prefix="/purchases", tags=["purchases"])

_ORDER_COLUMNS = (
    "id, status, order_number, supplier_id, purchase_date, payment_due_date, "
    "global_discount_percent, remittance_number"
)


class PurchaseLineIn(BaseModel):
    product_id: str
    quantity: Decimal
    unit_cost: Decimal
    input_unit: InputUnit = "UNITS"
    measured_quantity: Optional[Decimal] = None
    discount_percent: Decimal = Decimal("0")


class PurchaseOrderIn(BaseModel):
    supplier_id: str
    purchase_date: Optional[date] = None
    payment_due_date: Optional[date] = None
    remittance_number: Optional[str] = None
    notes: Optional[str] = None
    lines: List[PurchaseLineIn] = []
    tax_ids: List[str] = []
    global_discount_percent: Decimal = Decimal("0")


class PurchaseOrderUpdate(BaseModel):
    supplier_id: Optional[str] = None
    purchase_date: Optional[date] = None
    payment_due_date: Optional[date] = None
    remittance_number: Optional[str] = None
    notes: Optional[str] = None
    lines: Optional[List[PurchaseLineIn]] = None
    tax_ids: Optional[List[str]] = None
    global_discount_percent: Optional[Decimal] = None


class PurchasePreviewIn(BaseModel):
    lines: List[PurchaseLineIn] = []
    tax_ids: List[str] = []
    global_discount_percent: Decimal = Decimal("0")


class ShipIn(BaseModel):
    delivery_date: Optional[date] = None
    logistics_provider: Optional[str] = None


class ReceiveLineIn(BaseModel):
    item_id: str
    received: bool = False
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    # Kg/lt/mt for measured products, units otherwise.
    measured_quantity: Optional[Decimal] = None
    unit_quantity: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None


class ReceiveIn(BaseModel):
    lines: List[ReceiveLineIn] = []
    received_date: Optional[date] = None
    payment_due_date: Optional[date] = None
    invoice_number: Optional[str] = None


class AdjustLineIn(BaseModel):
    item_id: str
    measured_quantity: Optional[Decimal] = None
    unit_quantity: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None


class AdjustReceiptIn(BaseModel):
    lines: List[AdjustLineIn] = []
    tax_ids: Optional[List[str]] = None


def _line_inputs(lines: List[PurchaseLineIn], catalog: dict[str, CatalogProduct]) -> list[tuple[PurchaseLineIn, LineInput]]:
    out: list[tuple[PurchaseLineIn, LineInput]] = []
    for idx, ln in enumerate(lines or [], start=1):
        if not (ln.product_id or "").strip():
            raise bad_request(f"line {idx}: product is required", "missing_product")
        if to_decimal(ln.quantity) <= 0:
            raise bad_request(f"line {idx}: quantity must be greater than zero", "invalid_quantity")
        if to_decimal(ln.unit_cost) < 0:
            raise bad_request(f"line {idx}: unit cost cannot be negative", "invalid_unit_cost")
        product = catalog.get(ln.product_id.strip())
        out.append(
            (
                ln,
                LineInput(
                    product_id=ln.product_id.strip(),
                    quantity=convert_to_base_units(ln.quantity, ln.input_unit, product),
                    unit_price=ln.unit_cost,
                    measured_quantity=ln.measured_quantity,
                    discount_percent=ln.discount_percent,
                ),
            )
        )
    return out


def _price_request(cur, organization_id: str, lines: List[PurchaseLineIn], tax_ids, pct, tax_snapshot=None):
    catalog = load_catalog(cur, organization_id, [ln.product_id for ln in lines or []])
    pairs = _line_inputs(lines, catalog)
    priced, _taxes, totals, catalog = price_order(
        cur, organization_id, "purchase", [li for _raw, li in pairs], tax_ids, pct, tax_snapshot=tax_snapshot
    )
    return pairs, priced, totals, catalog


def _write_lines(cur, organization_id: str, order_id: str, pairs, priced: list[PricedLine]) -> None:
    cur.execute(
        """
        DELETE FROM purchase_order_items
        WHERE organization_id = %s AND purchase_order_id = %s
        """,
        (organization_id, order_id),
    )
    for line_no, ((raw, _li), ln) in enumerate(zip(pairs, priced), start=1):
        cur.execute(
            """
            INSERT INTO purchase_order_items
              (id, organization_id, purchase_order_id, line_no, product_id, input_quantity, input_unit,
               quantity, measured_quantity, measure_estimated, unit_cost, applied_unit_cost,
               discount_percent, gross_amount, discount_amount, subtotal)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                organization_id,
                order_id,
                line_no,
                ln.product_id,
                raw.quantity,
                raw.input_unit,
                ln.quantity,
                ln.measured_quantity,
                ln.measure_estimated,
                ln.unit_price,
                ln.applied_unit_price,
                ln.discount_percent,
                ln.gross_amount,
                ln.discount_amount,
                ln.subtotal,
            ),
        )


def _stored_line_inputs(cur, organization_id: str, order_id: str) -> list[LineInput]:
    cur.execute(
        """
        SELECT product_id, quantity, measured_quantity, measure_estimated, unit_cost, discount_percent
        FROM purchase_order_items
        WHERE organization_id = %s AND purchase_order_id = %s
        ORDER BY line_no, id
        """,
        (organization_id, order_id),
    )
    return [
        LineInput(
            product_id=str(r["product_id"]),
            quantity=to_decimal(r["quantity"]),
            unit_price=to_decimal(r["unit_cost"]),
            measured_quantity=None if r.get("measure_estimated") else r.get("measured_quantity"),
            discount_percent=to_decimal(r.get("discount_percent")),
        )
        for r in cur.fetchall() or []
    ]


def _lock_items(cur, organization_id: str, order_id: str) -> list[dict]:
    cur.execute(
        """
        SELECT id, product_id, quantity, measured_quantity, unit_cost, discount_percent,
               received, lot_number, expiration_date, received_unit_quantity
        FROM purchase_order_items
        WHERE organization_id = %s AND purchase_order_id = %s
        ORDER BY line_no, id
        FOR UPDATE
        """,
        (organization_id, order_id),
    )
    return cur.fetchall() or []


def _received_line_input(item: dict, product: Optional[CatalogProduct]) -> LineInput:
    """
    Price a received line from what actually arrived: the measured quantity
    for measured products, the counted units otherwise.
    """
    measured = to_decimal(item.get("measured_quantity"))
    units = to_decimal(item.get("received_unit_quantity"))
    if product is not None and product.is_measured:
        return LineInput(
            product_id=str(item["product_id"]),
            quantity=units if units > 0 else to_decimal(item.get("quantity")),
            unit_price=to_decimal(item.get("unit_cost")),
            measured_quantity=measured,
            discount_percent=to_decimal(item.get("discount_percent")),
        )
    return LineInput(
        product_id=str(item["product_id"]),
        quantity=measured if measured > 0 else to_decimal(item.get("quantity")),
        unit_price=to_decimal(item.get("unit_cost")),
        discount_percent=to_decimal(item.get("discount_percent")),
    )


def _reprice_received(cur, organization_id: str, items: list[dict], taxes, pct) -> tuple[list[tuple[dict, PricedLine]], OrderTotals]:
    received = [it for it in items if it.get("received")]
    catalog = load_catalog(cur, organization_id, [it["product_id"] for it in received])
    priced = [(it, price_line(_received_line_input(it, catalog.get(str(it["product_id"]))), catalog.get(str(it["product_id"])))) for it in received]
    totals = compute_order_totals("purchase", [p for _it, p in priced], taxes, pct)
    return priced, totals


def _save_received_pricing(cur, organization_id: str, priced: list[tuple[dict, PricedLine]]) -> None:
    for it, ln in priced:
        cur.execute(
            """
            UPDATE purchase_order_items
            SET quantity = %s,
                measured_quantity = %s,
                measure_estimated = false,
                unit_cost = %s,
                applied_unit_cost = %s,
                gross_amount = %s,
                discount_amount = %s,
                subtotal = %s
            WHERE organization_id = %s AND id = %s
            """,
            (
                ln.quantity,
                ln.measured_quantity,
                ln.unit_price,
                ln.applied_unit_price,
                ln.gross_amount,
                ln.discount_amount,
                ln.subtotal,
                organization_id,
                it["id"],
            ),
        )


@router.post("/orders/preview")
def preview_purchase_order(data: PurchasePreviewIn, organization_id: str = Depends(get_org_id)):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            _pairs, priced, totals, catalog = _price_request(
                cur, organization_id, data.lines, data.tax_ids, data.global_discount_percent
            )
    lines = [{**ln.as_dict(), "input_units": available_input_units(catalog.get(ln.product_id))} for ln in priced]
    return {"lines": lines, "totals": totals.as_dict()}


@router.get("/orders")
def list_purchase_orders(
    status: Optional[PurchaseStatus] = None,
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    organization_id: str = Depends(get_org_id),
):
    limit = min(limit, settings.max_page_size)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            return {"orders": list_orders(cur, organization_id, "purchase", status, limit, offset)}


@router.get("/orders/{order_id}")
def get_purchase_order(order_id: str, organization_id: str = Depends(get_org_id)):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            return fetch_order(cur, organization_id, "purchase", order_id)


@router.post("/orders")
def create_purchase_order(
    data: PurchaseOrderIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    if not (data.supplier_id or "").strip():
        raise bad_request("supplier is required", "missing_supplier")
    if not data.lines:
        raise bad_request("order has no lines", "empty_order")
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                pairs, priced, totals, _catalog = _price_request(cur, organization_id, data.lines, data.tax_ids, data.global_discount_percent)
                cur.execute(
                    """
                    INSERT INTO purchase_orders
                      (id, organization_id, status, supplier_id, purchase_date, payment_due_date,
                       remittance_number, notes, created_by)
                    VALUES
                      (gen_random_uuid(), %s, 'ORDERED', %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        organization_id,
                        data.supplier_id.strip(),
                        data.purchase_date or date.today(),
                        data.payment_due_date,
                        (data.remittance_number or "").strip() or None,
                        (data.notes or "").strip() or None,
                        actor_id,
                    ),
                )
                order_id = str(cur.fetchone()["id"])
                _write_lines(cur, organization_id, order_id, pairs, priced)
                replace_tax_snapshot(cur, organization_id, "purchase", order_id, totals)
                save_totals(cur, organization_id, "purchase", order_id, totals)
                record_audit(cur, organization_id, actor_id, "purchase_order_created", "purchase_order", order_id, {"total": str(totals.total)})
    return {"success": True, "id": order_id, "status": "ORDERED", "totals": totals.as_dict()}


@router.patch("/orders/{order_id}")
def update_purchase_order(
    order_id: str,
    data: PurchaseOrderUpdate,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    sent = data.model_fields_set
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "purchase", order_id, _ORDER_COLUMNS)
                if not is_editable("purchase", order["status"]):
                    raise conflict(f"order is {order['status']} and can no longer be edited", "order_not_editable")

                pct = data.global_discount_percent if data.global_discount_percent is not None else order.get("global_discount_percent")
                snapshot = None if data.tax_ids is not None else load_tax_snapshot(cur, organization_id, "purchase", order_id)
                if data.lines is not None:
                    if not data.lines:
                        raise bad_request("order has no lines", "empty_order")
                    pairs, priced, totals, _catalog = _price_request(cur, organization_id, data.lines, data.tax_ids or [], pct, tax_snapshot=snapshot)
                    _write_lines(cur, organization_id, order_id, pairs, priced)
                else:
                    lines = _stored_line_inputs(cur, organization_id, order_id)
                    _priced, _taxes, totals, _catalog = price_order(
                        cur, organization_id, "purchase", lines, data.tax_ids or [], pct, tax_snapshot=snapshot
                    )

                fields = {}
                for name in ("supplier_id", "purchase_date", "payment_due_date", "remittance_number", "notes"):
                    if name in sent:
                        val = getattr(data, name)
                        if isinstance(val, str):
                            val = val.strip() or None
                        fields[name] = val
                if "supplier_id" in fields and not fields["supplier_id"]:
                    raise bad_request("supplier is required", "missing_supplier")
                if fields:
                    sets = ", ".join(f"{k} = %s" for k in fields)
                    cur.execute(
                        f"""
                        UPDATE purchase_orders
                        SET {sets}
                        WHERE organization_id = %s AND id = %s
                        """,
                        (*fields.values(), organization_id, order_id),
                    )
                replace_tax_snapshot(cur, organization_id, "purchase", order_id, totals)
                save_totals(cur, organization_id, "purchase", order_id, totals)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "purchase_order_updated",
                    "purchase_order",
                    order_id,
                    {"fields": sorted(sent), "total": str(totals.total)},
                )
    return {"success": True, "id": order_id, "status": order["status"], "totals": totals.as_dict()}


@router.post("/orders/{order_id}/ship")
def ship_purchase_order(
    order_id: str,
    data: ShipIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    provider = assert_can_ship(data.delivery_date, data.logistics_provider)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "purchase", order_id, _ORDER_COLUMNS)
                check_transition("purchase", order["status"], "IN_TRANSIT")
                cur.execute(
                    """
                    UPDATE purchase_orders
                    SET status = 'IN_TRANSIT', delivery_date = %s, logistics_provider = %s, updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (data.delivery_date, provider, organization_id, order_id),
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "purchase_order_in_transit",
                    "purchase_order",
                    order_id,
                    {"delivery_date": data.delivery_date, "logistics_provider": provider},
                )
    return {"success": True, "status": "IN_TRANSIT", "was_updated": True}


@router.post("/orders/{order_id}/receive")
def receive_purchase_order(
    order_id: str,
    data: ReceiveIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    """
    Receive a purchase order in one transaction: lots, INBOUND movements,
    received line data, repriced totals, the payable and the status flip.
    A concurrent second receipt waits on the order lock and then fails the
    status check.
    """
    received = received_lines([ln.model_dump() for ln in data.lines])
    received_date = data.received_date or date.today()
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "purchase", order_id, _ORDER_COLUMNS)
                check_transition("purchase", order["status"], "RECEIVED")

                items = _lock_items(cur, organization_id, order_id)
                by_id = {str(it["id"]): it for it in items}
                for ln in received:
                    if ln["item_id"] not in by_id:
                        raise bad_request(f"line not found on this order: {ln['item_id']}", "line_not_found")

                received_ids = set()
                for ln in received:
                    it = by_id[ln["item_id"]]
                    received_ids.add(ln["item_id"])
                    it["received"] = True
                    it["measured_quantity"] = ln["measured_quantity"]
                    it["received_unit_quantity"] = ln.get("unit_quantity")
                    it["lot_number"] = (ln.get("lot_number") or "").strip()
                    it["expiration_date"] = ln["expiration_date"]
                    if ln.get("unit_cost") is not None:
                        if to_decimal(ln["unit_cost"]) < 0:
                            raise bad_request("unit cost cannot be negative", "invalid_unit_cost")
                        it["unit_cost"] = ln["unit_cost"]
                for it in items:
                    if str(it["id"]) not in received_ids:
                        it["received"] = False

                taxes = load_tax_snapshot(cur, organization_id, "purchase", order_id)
                priced, totals = _reprice_received(cur, organization_id, items, taxes, order.get("global_discount_percent"))

                lots = []
                for it, _ln in priced:
                    lot_id = receive_lot(
                        cur,
                        organization_id,
                        order_id,
                        str(it["product_id"]),
                        it["lot_number"],
                        it["expiration_date"],
                        it["measured_quantity"],
                        it.get("received_unit_quantity"),
                    )
                    lots.append(lot_id)
                    cur.execute(
                        """
                        UPDATE purchase_order_items
                        SET received = true, lot_number = %s, expiration_date = %s,
                            received_unit_quantity = %s, lot_id = %s
                        WHERE organization_id = %s AND id = %s
                        """,
                        (it["lot_number"], it["expiration_date"], it.get("received_unit_quantity"), lot_id, organization_id, it["id"]),
                    )
                _save_received_pricing(cur, organization_id, priced)
                replace_tax_snapshot(cur, organization_id, "purchase", order_id, totals)
                save_totals(cur, organization_id, "purchase", order_id, totals)

                due_date = data.payment_due_date or order.get("payment_due_date") or received_date
                cur.execute(
                    """
                    UPDATE purchase_orders
                    SET status = 'RECEIVED', received_date = %s, payment_due_date = %s,
                        invoice_number = COALESCE(%s, invoice_number), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (received_date, due_date, (data.invoice_number or "").strip() or None, organization_id, order_id),
                )
                account_id = create_account(
                    cur, organization_id, "payables", order_id, order.get("supplier_id"), totals.total, due_date
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "purchase_order_received",
                    "purchase_order",
                    order_id,
                    {"lots": lots, "total": str(totals.total), "account_id": account_id},
                )
    _json_log(
        "info",
        "purchases.order.received",
        organization_id=organization_id,
        order_id=order_id,
        lots=len(lots),
        total=totals.total,
    )
    return {
        "success": True,
        "status": "RECEIVED",
        "was_updated": True,
        "lot_ids": lots,
        "account_id": account_id,
        "total_amount": totals.total,
        "totals": totals.as_dict(),
    }


@router.post("/orders/{order_id}/adjust-receipt")
def adjust_purchase_receipt(
    order_id: str,
    data: AdjustReceiptIn,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    """
    Correct received quantities/costs after the fact (e.g. the real weighed
    kilos) and optionally the tax set. The payable keeps its payments and
    follows the new total.
    """
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "purchase", order_id, _ORDER_COLUMNS)
                if order["status"] != "RECEIVED":
                    raise conflict("only received orders can be adjusted", "order_not_received")

                items = _lock_items(cur, organization_id, order_id)
                by_id = {str(it["id"]): it for it in items}
                for ln in data.lines:
                    it = by_id.get(ln.item_id)
                    if not it or not it.get("received"):
                        raise bad_request(f"received line not found: {ln.item_id}", "line_not_found")
                    if ln.measured_quantity is not None:
                        if to_decimal(ln.measured_quantity) <= 0:
                            raise bad_request("received quantity must be greater than zero", "invalid_received_quantity")
                        it["measured_quantity"] = ln.measured_quantity
                    if ln.unit_quantity is not None:
                        if to_decimal(ln.unit_quantity) <= 0:
                            raise bad_request("received unit quantity must be greater than zero", "invalid_received_quantity")
                        it["received_unit_quantity"] = ln.unit_quantity
                    if ln.unit_cost is not None:
                        if to_decimal(ln.unit_cost) < 0:
                            raise bad_request("unit cost cannot be negative", "invalid_unit_cost")
                        it["unit_cost"] = ln.unit_cost

                if data.tax_ids is not None:
                    taxes = load_tax_rates(cur, organization_id, data.tax_ids)
                else:
                    taxes = load_tax_snapshot(cur, organization_id, "purchase", order_id)
                priced, totals = _reprice_received(cur, organization_id, items, taxes, order.get("global_discount_percent"))
                for it, _ln in priced:
                    cur.execute(
                        """
                        UPDATE purchase_order_items
                        SET received_unit_quantity = %s
                        WHERE organization_id = %s AND id = %s
                        """,
                        (it.get("received_unit_quantity"), organization_id, it["id"]),
                    )
                _save_received_pricing(cur, organization_id, priced)
                replace_tax_snapshot(cur, organization_id, "purchase", order_id, totals)
                save_totals(cur, organization_id, "purchase", order_id, totals)

                acct = lock_account_for_order(cur, organization_id, "payables", order_id)
                change = None
                if acct:
                    paid = paid_total(cur, organization_id, "payables", str(acct["id"]))
                    change = rebase_account_total(totals.total, paid)
                    save_balance(cur, organization_id, "payables", str(acct["id"]), change, total=totals.total)
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "purchase_receipt_adjusted",
                    "purchase_order",
                    order_id,
                    {"lines": [ln.item_id for ln in data.lines], "total": str(totals.total)},
                )
    return {
        "success": True,
        "total_amount": totals.total,
        "totals": totals.as_dict(),
        "new_pending_balance": change.pending_balance if change else None,
        "new_status": change.status if change else None,
    }


@router.post("/orders/{order_id}/cancel")
def cancel_purchase_order(
    order_id: str,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, organization_id, "purchase", order_id, _ORDER_COLUMNS)
                t = check_transition("purchase", order["status"], "CANCELLED")
                if not t.was_updated:
                    return {"success": True, "status": "CANCELLED", "was_updated": False}
                cur.execute(
                    """
                    UPDATE purchase_orders
                    SET status = 'CANCELLED', cancelled_at = now(), updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (organization_id, order_id),
                )
                record_audit(cur, organization_id, actor_id, "purchase_order_cancelled", "purchase_order", order_id, {"from": t.from_status})
    return {"success": True, "status": "CANCELLED", "was_updated": True}
