from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from src.db.models import AuditLog
from src.utils.time import ensure_utc, utcnow


def _jsonable(value: Any) -> Any:
    # Decimals keep their exact text; timestamps are written as UTC ISO-8601.
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (dt.datetime, dt.date)):
        return ensure_utc(value).isoformat()
    return value


def snapshot(obj: Any, fields: Iterable[str], **extra: Any) -> dict[str, Any]:
    """JSON-safe dict of selected attributes of a model row, for audit old/new payloads."""
    out = {f: _jsonable(getattr(obj, f, None)) for f in fields}
    out.update({k: _jsonable(v) for k, v in extra.items()})
    return out


def log_change(
    session: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: Any,
    old: Optional[dict[str, Any]] = None,
    new: Optional[dict[str, Any]] = None,
    note: Optional[str] = None,
) -> AuditLog:
    row = AuditLog(
        at=utcnow(),
        actor=actor,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_json=old,
        new_json=new,
        note=note,
    )
    session.add(row)
    return row
