"""
Append-only audit trail for rule, stipend, deduction and transaction writes.

Events are added to the caller's session so they commit (or roll back) with the
business write. When a write fails after it started, `abort` rolls the unit of
work back and commits a FAILED event on its own as the compensating step.

Snapshot shape per action:
- CREATE: no snapshots
- UPDATE: old and new
- DELETE: old only
"""

import enum
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stipend_service.domain.enums import AuditAction, AuditOutcome, EntityKind
from stipend_service.domain.limits import normalize_page
from stipend_service.infrastructure.database.models import AuditEvent
from stipend_service.infrastructure.database.repositories import AuditFilter, AuditRepository
from stipend_service.services.context import RequestContext
from stipend_service.utils.date_utils import format_rfc3339, utcnow
from stipend_service.utils.money import format_money

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_money(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return format_rfc3339(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


def snapshot(row) -> Dict[str, Any]:
    """JSON-safe copy of every mapped column of an ORM row"""
    return {column.name: _json_value(getattr(row, column.key)) for column in row.__table__.columns}


def _shape(action: AuditAction, old: Optional[dict], new: Optional[dict]) -> Tuple[Optional[dict], Optional[dict]]:
    if action is AuditAction.UPDATE:
        if old is None or new is None:
            raise ValueError("UPDATE audit events need both snapshots")
        return old, new
    if action is AuditAction.DELETE:
        if old is None:
            raise ValueError("DELETE audit events need the old snapshot")
        return old, None
    return None, None


class AuditTrail:
    """Writes and reads audit events within one request"""

    def __init__(self, db: Session, ctx: RequestContext):
        self.db = db
        self.ctx = ctx
        self.repo = AuditRepository(db)

    def _event(
        self,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id,
        description: str,
        old: Optional[dict],
        new: Optional[dict],
        outcome: AuditOutcome,
        error_text: Optional[str],
    ) -> AuditEvent:
        old, new = _shape(action, old, new)
        return AuditEvent(
            action=action,
            entity_kind=entity_kind,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor=self.ctx.actor,
            description=description,
            old_snapshot=old,
            new_snapshot=new,
            outcome=outcome,
            error_text=error_text,
            request_id=self.ctx.request_id,
            ip_address=self.ctx.ip_address,
            user_agent=self.ctx.user_agent,
            timestamp=utcnow(),
        )

    def record(
        self,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id,
        description: str,
        old: Optional[dict] = None,
        new: Optional[dict] = None,
    ) -> AuditEvent:
        """Add a SUCCESS event to the current unit of work (flushed, not committed)"""
        event = self._event(action, entity_kind, entity_id, description, old, new, AuditOutcome.SUCCESS, None)
        return self.repo.add(event)

    def abort(
        self,
        error: BaseException,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id,
        description: str,
        old: Optional[dict] = None,
        new: Optional[dict] = None,
    ) -> None:
        """
        Roll back the failed write and commit a FAILED event in its place.

        The caller re-raises the original error afterwards; a failure to write the
        compensating event is logged and does not replace that error.
        """
        self.db.rollback()
        if action is AuditAction.UPDATE and (old is None or new is None):
            old = old or {}
            new = new or {}
        elif action is AuditAction.DELETE and old is None:
            old = {}
        event = self._event(action, entity_kind, entity_id, description, old, new, AuditOutcome.FAILED, str(error))
        try:
            self.repo.add(event)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Could not write failure audit event",
                extra={
                    "request_id": self.ctx.request_id,
                    "actor": self.ctx.actor,
                    "entity_kind": entity_kind.value,
                    "entity_id": str(entity_id) if entity_id is not None else None,
                },
            )

    def list_events(self, criteria: AuditFilter, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[AuditEvent], int]:
        limit, offset = normalize_page(limit, offset)
        return self.repo.search(criteria, limit, offset)

    def events_for_entity(self, entity_kind: EntityKind, entity_id, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[AuditEvent], int]:
        return self.list_events(AuditFilter(entity_kind=entity_kind, entity_id=str(entity_id)), limit, offset)

    def events_by_actor(self, actor: str, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[AuditEvent], int]:
        return self.list_events(AuditFilter(actor=actor), limit, offset)
