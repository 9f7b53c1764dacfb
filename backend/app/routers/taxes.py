from fastapi import APIRouter, Depends
from pydantic import BaseModel
from decimal import Decimal
from typing import Optional
from ..db import get_conn, set_org_context
from ..deps import get_org_id, get_actor_id
from ..audit_log import record_audit
from ..errors import bad_request, not_found
from ..money import HUNDRED, to_decimal

router = APIRouter(prefix="/taxes", tags=["taxes"])


class TaxIn(BaseModel):
    name: str
    rate: Decimal
    description: Optional[str] = None
    is_active: bool = True


class TaxUpdate(BaseModel):
    name: Optional[str] = None
    rate: Optional[Decimal] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


def _clean_name(name: Optional[str]) -> str:
    n = (name or "").strip()
    if not n:
        raise bad_request("tax name is required", "missing_tax_name")
    return n


def _check_rate(rate) -> Decimal:
    r = to_decimal(rate)
    if r < 0 or r > HUNDRED:
        raise bad_request("tax rate must be between 0 and 100", "invalid_tax_rate")
    return r


@router.get("")
def list_taxes(include_inactive: bool = False, organization_id: str = Depends(get_org_id)):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, rate, description, is_active, created_at
                FROM taxes
                WHERE organization_id = %s
                  AND (%s OR is_active = true)
                ORDER BY name, id
                """,
                (organization_id, include_inactive),
            )
            return {"taxes": cur.fetchall()}


@router.post("")
def create_tax(data: TaxIn, organization_id: str = Depends(get_org_id), actor_id: Optional[str] = Depends(get_actor_id)):
    name = _clean_name(data.name)
    rate = _check_rate(data.rate)
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO taxes (id, organization_id, name, rate, description, is_active)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (organization_id, name, rate, (data.description or "").strip() or None, data.is_active),
                )
                tid = cur.fetchone()["id"]
                record_audit(cur, organization_id, actor_id, "tax_created", "tax", tid, {"name": name, "rate": str(rate)})
                return {"success": True, "id": tid}


@router.patch("/{tax_id}")
def update_tax(
    tax_id: str,
    data: TaxUpdate,
    organization_id: str = Depends(get_org_id),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    # Orders keep their own name/rate snapshot, so edits here never reach stored orders.
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, name, rate, description, is_active
                    FROM taxes
                    WHERE organization_id = %s AND id = %s
                    FOR UPDATE
                    """,
                    (organization_id, tax_id),
                )
                before = cur.fetchone()
                if not before:
                    raise not_found("tax not found", "tax_not_found")
                sent = data.model_fields_set
                name = _clean_name(data.name) if "name" in sent else before["name"]
                rate = _check_rate(data.rate) if "rate" in sent else before["rate"]
                description = ((data.description or "").strip() or None) if "description" in sent else before["description"]
                is_active = bool(data.is_active) if data.is_active is not None else before["is_active"]
                cur.execute(
                    """
                    UPDATE taxes
                    SET name = %s, rate = %s, description = %s, is_active = %s, updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    """,
                    (name, rate, description, is_active, organization_id, tax_id),
                )
                record_audit(
                    cur,
                    organization_id,
                    actor_id,
                    "tax_updated",
                    "tax",
                    tax_id,
                    {"before": {"name": before["name"], "rate": str(before["rate"])}, "after": {"name": name, "rate": str(rate)}},
                )
                return {"success": True}


@router.delete("/{tax_id}")
def delete_tax(tax_id: str, organization_id: str = Depends(get_org_id), actor_id: Optional[str] = Depends(get_actor_id)):
    with get_conn() as conn:
        set_org_context(conn, organization_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE taxes
                    SET is_active = false, updated_at = now()
                    WHERE organization_id = %s AND id = %s
                    RETURNING id
                    """,
                    (organization_id, tax_id),
                )
                if not cur.fetchone():
                    raise not_found("tax not found", "tax_not_found")
                record_audit(cur, organization_id, actor_id, "tax_deactivated", "tax", tax_id, {})
                return {"success": True}
