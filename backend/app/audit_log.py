import json
from typing import Optional


def record_audit(cur, organization_id: str, actor_id: Optional[str], action: str, entity_type: str, entity_id, details: Optional[dict] = None) -> None:
    cur.execute(
        """
        INSERT INTO audit_logs (id, organization_id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s::jsonb)
        """,
        (organization_id, actor_id, action, entity_type, entity_id, json.dumps(details or {}, default=str)),
    )
