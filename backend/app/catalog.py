from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from .errors import bad_request
from .money import q_qty, to_decimal
from .pricing import MEASURED_UNITS, CatalogProduct, TaxRate, norm_unit


def average_quantity_per_unit(unit_of_measure: Optional[str], tracks_stock_units: bool, total_quantity, total_units) -> Optional[Decimal]:
    """
    Average measure per stocked unit across the product's lots, e.g. kg per
    piece. Only meaningful for measured products that also count units.
    """
    if norm_unit(unit_of_measure) not in MEASURED_UNITS or not tracks_stock_units:
        return None
    units = to_decimal(total_units)
    qty = to_decimal(total_quantity)
    if units <= 0 or qty <= 0:
        return None
    return q_qty(qty / units)


def load_catalog(cur, organization_id: str, product_ids: Iterable[str]) -> dict[str, CatalogProduct]:
    ids = sorted({str(x) for x in (product_ids or []) if str(x).strip()})
    if not ids:
        return {}
    cur.execute(
        """
        SELECT p.id, p.name, p.unit_of_measure, p.tracks_stock_units,
               p.units_per_box, p.boxes_per_pallet,
               lots.total_quantity, lots.total_units
        FROM products p
        LEFT JOIN (
          SELECT product_id,
                 SUM(quantity_available) AS total_quantity,
                 SUM(unit_quantity_available) AS total_units
          FROM product_lots
          WHERE organization_id = %s
          GROUP BY product_id
        ) lots ON lots.product_id = p.id
        WHERE p.organization_id = %s AND p.id = ANY(%s::uuid[])
        """,
        (organization_id, organization_id, ids),
    )
    out: dict[str, CatalogProduct] = {}
    for r in cur.fetchall() or []:
        tracks = bool(r.get("tracks_stock_units"))
        out[str(r["id"])] = CatalogProduct(
            id=str(r["id"]),
            name=r.get("name") or "",
            unit_of_measure=norm_unit(r.get("unit_of_measure")),
            tracks_stock_units=tracks,
            units_per_box=r.get("units_per_box"),
            boxes_per_pallet=r.get("boxes_per_pallet"),
            average_quantity_per_unit=average_quantity_per_unit(
                r.get("unit_of_measure"), tracks, r.get("total_quantity"), r.get("total_units")
            ),
        )
    missing = [i for i in ids if i not in out]
    if missing:
        raise bad_request(f"product not found: {missing[0]}", "product_not_found")
    return out


def load_tax_rates(cur, organization_id: str, tax_ids: Iterable[str]) -> list[TaxRate]:
    """
    Resolve applied taxes to a name/rate snapshot, preserving request order.
    """
    ids = [str(x) for x in (tax_ids or []) if str(x).strip()]
    ordered = list(dict.fromkeys(ids))
    if not ordered:
        return []
    cur.execute(
        """
        SELECT id, name, rate
        FROM taxes
        WHERE organization_id = %s AND id = ANY(%s::uuid[]) AND is_active = true
        """,
        (organization_id, ordered),
    )
    by_id = {str(r["id"]): r for r in cur.fetchall() or []}
    out: list[TaxRate] = []
    for tid in ordered:
        r = by_id.get(tid)
        if not r:
            raise bad_request(f"tax not found: {tid}", "tax_not_found")
        out.append(TaxRate(tax_id=tid, name=r.get("name") or "", rate=to_decimal(r.get("rate"))))
    return out
