from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from .errors import bad_request
from .money import ZERO, clamp_non_negative, q_qty, to_decimal


_FAR_DATE = date.max
_FAR_TS = datetime.max


def _as_date(v) -> date:
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if v:
        try:
            return date.fromisoformat(str(v)[:10])
        except ValueError:
            return _FAR_DATE
    return _FAR_DATE


def _as_ts(v) -> datetime:
    if isinstance(v, datetime):
        return v.replace(tzinfo=None)
    return _FAR_TS


def fifo_key(lot: dict):
    # Earliest expiration first, then oldest lot, then lot number, then id.
    return (
        _as_date(lot.get("expiration_date")),
        _as_ts(lot.get("created_at")),
        str(lot.get("lot_number") or ""),
        str(lot.get("id") or ""),
    )


@dataclass(frozen=True)
class Allocation:
    lot_id: str
    product_id: str
    quantity: Decimal
    previous_stock: Decimal
    new_stock: Decimal
    units: Optional[Decimal] = None
    previous_units: Optional[Decimal] = None
    new_units: Optional[Decimal] = None


def allocate_fifo(product_name: str, lots: Iterable[dict], required_quantity, required_units=None) -> list[Allocation]:
    """
    Consume `required_quantity` (and `required_units` when the product counts
    units) from the given lots in FIFO order. Raises when stock is short;
    nothing is allocated in that case.
    """
    need_qty = clamp_non_negative(required_quantity)
    need_units = clamp_non_negative(required_units) if required_units is not None else None
    ordered = sorted(lots or [], key=fifo_key)

    total_qty = sum((clamp_non_negative(lt.get("quantity_available")) for lt in ordered), ZERO)
    if need_qty > total_qty:
        raise bad_request(f"insufficient stock for {product_name}: available {q_qty(total_qty)}", "insufficient_stock")
    if need_units is not None:
        unit_lots = [lt for lt in ordered if lt.get("unit_quantity_available") is not None]
        if unit_lots:
            total_units = sum((clamp_non_negative(lt.get("unit_quantity_available")) for lt in unit_lots), ZERO)
            if need_units > total_units:
                raise bad_request(f"insufficient units for {product_name}: available {total_units}", "insufficient_stock")
        else:
            # Lots received without unit counts: allocate on quantity alone.
            need_units = None

    remaining_qty = need_qty
    remaining_units = need_units if need_units is not None else ZERO
    out: list[Allocation] = []
    for lt in ordered:
        if remaining_qty <= 0 and remaining_units <= 0:
            break
        available = clamp_non_negative(lt.get("quantity_available"))
        tracks_units = need_units is not None and lt.get("unit_quantity_available") is not None
        available_units = clamp_non_negative(lt.get("unit_quantity_available")) if tracks_units else ZERO
        take = min(available, remaining_qty) if remaining_qty > 0 else ZERO
        take_units = min(available_units, remaining_units) if tracks_units and remaining_units > 0 else ZERO
        if take <= 0 and take_units <= 0:
            continue
        out.append(
            Allocation(
                lot_id=str(lt["id"]),
                product_id=str(lt.get("product_id") or ""),
                quantity=take,
                previous_stock=available,
                new_stock=available - take,
                units=take_units if tracks_units else None,
                previous_units=available_units if tracks_units else None,
                new_units=(available_units - take_units) if tracks_units else None,
            )
        )
        remaining_qty -= take
        remaining_units -= take_units

    if remaining_qty > 0 or remaining_units > 0:
        raise bad_request(f"could not allocate enough stock for {product_name}", "insufficient_stock")
    return out


def lock_lots(cur, organization_id: str, product_ids: Iterable[str]) -> dict[str, list[dict]]:
    ids = sorted({str(x) for x in (product_ids or []) if str(x).strip()})
    if not ids:
        return {}
    cur.execute(
        """
        SELECT id, product_id, lot_number, expiration_date, created_at,
               quantity_available, unit_quantity_available
        FROM product_lots
        WHERE organization_id = %s AND product_id = ANY(%s::uuid[])
        ORDER BY expiration_date NULLS LAST, created_at, lot_number, id
        FOR UPDATE
        """,
        (organization_id, ids),
    )
    by_product: dict[str, list[dict]] = {}
    for r in cur.fetchall() or []:
        by_product.setdefault(str(r["product_id"]), []).append(r)
    return by_product


def insert_movement(
    cur,
    organization_id: str,
    lot_id: str,
    movement_type: str,
    quantity,
    previous_stock,
    new_stock,
    reason: str,
    *,
    unit_quantity=None,
    sales_order_id: Optional[str] = None,
    purchase_order_id: Optional[str] = None,
) -> None:
    cur.execute(
        """
        INSERT INTO stock_movements
          (id, organization_id, lot_id, type, quantity, previous_stock, new_stock,
           unit_quantity, reason, sales_order_id, purchase_order_id)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            organization_id,
            lot_id,
            movement_type,
            q_qty(quantity),
            q_qty(previous_stock),
            q_qty(new_stock),
            q_qty(unit_quantity) if unit_quantity is not None else None,
            reason,
            sales_order_id,
            purchase_order_id,
        ),
    )


def apply_allocations(cur, organization_id: str, allocations: Iterable[Allocation], reason: str, sales_order_id: str) -> int:
    n = 0
    for a in allocations:
        cur.execute(
            """
            UPDATE product_lots
            SET quantity_available = %s,
                unit_quantity_available = COALESCE(%s, unit_quantity_available),
                updated_at = now()
            WHERE organization_id = %s AND id = %s
            """,
            (q_qty(a.new_stock), q_qty(a.new_units) if a.new_units is not None else None, organization_id, a.lot_id),
        )
        insert_movement(
            cur,
            organization_id,
            a.lot_id,
            "OUTBOUND",
            a.quantity,
            a.previous_stock,
            a.new_stock,
            reason,
            unit_quantity=(-a.units if a.units else None),
            sales_order_id=sales_order_id,
        )
        n += 1
    return n


def receive_lot(
    cur,
    organization_id: str,
    purchase_order_id: str,
    product_id: str,
    lot_number: str,
    expiration_date: date,
    quantity,
    unit_quantity=None,
) -> str:
    """
    Create a product lot for a received purchase line and record the INBOUND movement.
    """
    qty = q_qty(quantity)
    if qty <= 0:
        raise bad_request("received quantity must be greater than zero", "invalid_received_quantity")
    units = q_qty(unit_quantity) if unit_quantity is not None and to_decimal(unit_quantity) > 0 else None
    lot_no = (lot_number or "").strip()
    cur.execute(
        """
        INSERT INTO product_lots
          (id, organization_id, product_id, lot_number, expiration_date,
           quantity_received, quantity_available, unit_quantity_available, purchase_order_id)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (organization_id, product_id, lot_no, expiration_date, qty, qty, units, purchase_order_id),
    )
    lot_id = str(cur.fetchone()["id"])
    insert_movement(
        cur,
        organization_id,
        lot_id,
        "INBOUND",
        qty,
        ZERO,
        qty,
        f"Purchase receipt - Lot: {lot_no}",
        unit_quantity=units,
        purchase_order_id=purchase_order_id,
    )
    return lot_id


def restock_sales_order(cur, organization_id: str, sales_order_id: str, reason: str) -> int:
    """
    Return every lot consumed by a sales order, one INBOUND movement per
    OUTBOUND movement recorded at confirmation.
    """
    cur.execute(
        """
        SELECT m.id, m.lot_id, m.quantity, m.unit_quantity,
               l.quantity_available, l.unit_quantity_available
        FROM stock_movements m
        JOIN product_lots l ON l.id = m.lot_id
        WHERE m.organization_id = %s AND m.sales_order_id = %s AND m.type = 'OUTBOUND'
        ORDER BY m.created_at, m.id
        FOR UPDATE OF l
        """,
        (organization_id, sales_order_id),
    )
    rows = cur.fetchall() or []
    # Several movements may hit the same lot; track the running level.
    level: dict[str, tuple[Decimal, Optional[Decimal]]] = {}
    n = 0
    for r in rows:
        lot_id = str(r["lot_id"])
        prev_qty, prev_units = level.get(
            lot_id,
            (
                to_decimal(r.get("quantity_available")),
                to_decimal(r["unit_quantity_available"]) if r.get("unit_quantity_available") is not None else None,
            ),
        )
        qty = clamp_non_negative(r.get("quantity"))
        units_back = abs(to_decimal(r["unit_quantity"])) if r.get("unit_quantity") is not None else None
        new_qty = prev_qty + qty
        new_units = prev_units
        if units_back is not None and prev_units is not None:
            new_units = prev_units + units_back
        cur.execute(
            """
            UPDATE product_lots
            SET quantity_available = %s,
                unit_quantity_available = COALESCE(%s, unit_quantity_available),
                updated_at = now()
            WHERE organization_id = %s AND id = %s
            """,
            (q_qty(new_qty), q_qty(new_units) if new_units is not None else None, organization_id, lot_id),
        )
        insert_movement(
            cur,
            organization_id,
            lot_id,
            "INBOUND",
            qty,
            prev_qty,
            new_qty,
            reason,
            unit_quantity=units_back,
            sales_order_id=sales_order_id,
        )
        level[lot_id] = (new_qty, new_units)
        n += 1
    return n


@dataclass(frozen=True)
class StockRequirement:
    product_id: str
    product_name: str
    quantity: Decimal
    units: Optional[Decimal] = None


def consume_for_sales_order(cur, organization_id: str, sales_order_id: str, requirements: Iterable[StockRequirement], reason: str) -> int:
    """
    Allocate every requirement FIFO against locked lots, then write the lot
    updates and OUTBOUND movements. A shortage on any line aborts before writes.
    """
    reqs = [r for r in (requirements or []) if r.quantity > 0 or (r.units or ZERO) > 0]
    lots_by_product = lock_lots(cur, organization_id, [r.product_id for r in reqs])
    planned: list[Allocation] = []
    for r in reqs:
        lots = lots_by_product.get(str(r.product_id), [])
        allocs = allocate_fifo(r.product_name, lots, r.quantity, r.units)
        # Later lines for the same product see what earlier lines consumed.
        by_id = {str(lt["id"]): lt for lt in lots}
        for a in allocs:
            lt = by_id[a.lot_id]
            lt["quantity_available"] = a.new_stock
            if a.new_units is not None:
                lt["unit_quantity_available"] = a.new_units
        planned.extend(allocs)
    return apply_allocations(cur, organization_id, planned, reason, sales_order_id)
