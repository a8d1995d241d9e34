"""Deduction rule endpoints - authoring and listing"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from stipend_service.api.dependencies import get_rule_store
from stipend_service.api.v1.schemas import RuleCreateRequest, RuleListResponse, RulePatchRequest, RuleResponse
from stipend_service.domain.models import RuleDraft
from stipend_service.services.rule_store import RuleStore

router = APIRouter()


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(body: RuleCreateRequest, store: RuleStore = Depends(get_rule_store)):
    return store.create_rule(RuleDraft(**body.model_dump()))


@router.get("/rules", response_model=RuleListResponse)
def list_rules(
    name: Optional[str] = None,
    type_tag: Optional[str] = None,
    is_active: Optional[bool] = None,
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    store: RuleStore = Depends(get_rule_store),
):
    """Filtered listing; priority DESC then name ASC"""
    rules, total = store.list_rules(name=name, type_tag=type_tag, is_active=is_active, limit=limit, offset=offset)
    return RuleListResponse(items=rules, total=total, limit=min(limit, 100), offset=offset)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
def get_rule(rule_id: uuid.UUID, store: RuleStore = Depends(get_rule_store)):
    return store.get_rule(rule_id)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
def update_rule(rule_id: uuid.UUID, body: RulePatchRequest, store: RuleStore = Depends(get_rule_store)):
    return store.update_rule(rule_id, body.model_dump(exclude_unset=True))


@router.delete("/rules/{rule_id}", response_model=RuleResponse)
def retire_rule(rule_id: uuid.UUID, store: RuleStore = Depends(get_rule_store)):
    """Retire (soft-delete) a rule; repeating the call is a no-op"""
    return store.retire(rule_id)
