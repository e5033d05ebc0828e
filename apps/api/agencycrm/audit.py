from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from agencycrm.context import get_actor, get_run_id

logger = logging.getLogger("agencycrm.audit")

audit_entries: list[dict[str, Any]] = []


def record(
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    actor: str | None = None,
    run_id: str | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor": actor or get_actor(),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "run_id": run_id or get_run_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit.recorded",
        extra={"actor": entry["actor"], "entity_type": entity_type, "action": action},
    )
    return entry
