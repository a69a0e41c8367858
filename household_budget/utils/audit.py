import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")


def _json_default(value: Any):
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def audit(event: str, *, household_id: Optional[Any] = None, actor_id: Optional[Any] = None, **fields: Any) -> None:
    """Emit a budget-state change as a single JSON line on the ``audit`` logger."""
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    if household_id:
        payload["household_id"] = str(household_id)
    if actor_id:
        payload["actor_id"] = str(actor_id)
    if fields:
        payload.update(fields)
    try:
        _logger.info(json.dumps(payload, ensure_ascii=False, default=_json_default))
    except (TypeError, ValueError):
        # Fallback to plain message if JSON logging fails
        _logger.info(f"AUDIT {event} household_id={household_id} actor_id={actor_id} fields={fields}")
