from fastapi import Header, HTTPException
from .db import get_conn
from typing import Optional
import uuid


def _parse_uuid(raw: Optional[str]) -> Optional[str]:
    s = (raw or "").strip()
    if not s:
        return None
    try:
        return str(uuid.UUID(s))
    except ValueError:
        return None


def _resolve_org_slug(slug: str) -> str:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id
                FROM organizations
                WHERE slug = %s
                """,
                (slug,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="organization not found")
            return str(row["id"])


def get_org_id(
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
    x_organization_slug: Optional[str] = Header(None, alias="X-Organization-Slug"),
) -> str:
    """
    Every request is scoped to exactly one organization, passed explicitly.
    """
    if x_organization_id:
        org_id = _parse_uuid(x_organization_id)
        if not org_id:
            raise HTTPException(status_code=400, detail="invalid organization id")
        return org_id
    slug = (x_organization_slug or "").strip().lower()
    if slug:
        return _resolve_org_slug(slug)
    raise HTTPException(status_code=400, detail="missing organization id")


def get_actor_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Optional[str]:
    # Attribution only; identity is established upstream of this service.
    return _parse_uuid(x_user_id)
