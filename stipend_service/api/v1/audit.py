"""Audit trail queries, newest first"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stipend_service.api.dependencies import get_audit_trail
from stipend_service.api.v1.schemas import AuditEventListResponse
from stipend_service.domain.enums import AuditAction, AuditOutcome, EntityKind
from stipend_service.domain.exceptions import InvalidInputError
from stipend_service.infrastructure.database.repositories import AuditFilter
from stipend_service.services.audit import AuditTrail
from stipend_service.utils.date_utils import ensure_utc

router = APIRouter()


def _page(events, total: int, limit: int, offset: int) -> AuditEventListResponse:
    return AuditEventListResponse(items=events, total=total, limit=min(limit, 100), offset=offset)


@router.get("/audit/events", response_model=AuditEventListResponse)
def list_events(
    actor: Optional[str] = None,
    entity_kind: Optional[EntityKind] = None,
    entity_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    outcome: Optional[AuditOutcome] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    trail: AuditTrail = Depends(get_audit_trail),
):
    start, end = ensure_utc(start), ensure_utc(end)
    if start is not None and end is not None and start > end:
        raise InvalidInputError("start must not be after end")
    criteria = AuditFilter(
        actor=actor,
        entity_kind=entity_kind,
        entity_id=entity_id,
        action=action,
        outcome=outcome,
        start=start,
        end=end,
    )
    events, total = trail.list_events(criteria, limit, offset)
    return _page(events, total, limit, offset)


@router.get("/audit/entities/{entity_kind}/{entity_id}", response_model=AuditEventListResponse)
def entity_history(
    entity_kind: EntityKind,
    entity_id: str,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    trail: AuditTrail = Depends(get_audit_trail),
):
    events, total = trail.events_for_entity(entity_kind, entity_id, limit, offset)
    return _page(events, total, limit, offset)


@router.get("/audit/actors/{actor}", response_model=AuditEventListResponse)
def actor_history(
    actor: str,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    trail: AuditTrail = Depends(get_audit_trail),
):
    events, total = trail.events_by_actor(actor, limit, offset)
    return _page(events, total, limit, offset)
