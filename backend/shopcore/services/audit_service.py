# Overview: Service-layer operations for the audit trail; append-only event log.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
from shopcore.time_utils import normalize_datetime, utcnow
"""
Audit Trail Invariants (authoritative)

- Append-only log for order, payment and purchase-order lifecycle events.
- No domain/business logic in the audit log itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back change leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""

CATEGORY_ORDER = "order"
CATEGORY_PAYMENT = "payment"
CATEGORY_PURCHASE_ORDER = "purchase_order"
CATEGORY_RECONCILIATION = "reconciliation"


def append_audit_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushes but never commits; the caller owns the transaction.
    """
    ev = AuditEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=normalize_datetime(occurred_at) or utcnow(),
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_category: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    q = AuditEvent.query
    if entity_type is not None:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if event_category is not None:
        q = q.filter(AuditEvent.event_category == event_category)
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
