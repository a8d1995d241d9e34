"""Deduction rule authoring and lookup"""

import logging
import uuid
from dataclasses import fields
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stipend_service.domain.enums import AuditAction, EntityKind, StipendClass
from stipend_service.domain.exceptions import DuplicateNameError, InvalidInputError, NotFoundError
from stipend_service.domain.limits import normalize_page
from stipend_service.domain.models import RuleDraft, RuleSnapshot
from stipend_service.domain.validation import ensure_valid, parse_enum, validate_rule_input
from stipend_service.infrastructure.database.models import DeductionRule
from stipend_service.infrastructure.database.repositories import RuleRepository
from stipend_service.services.audit import AuditTrail, snapshot
from stipend_service.services.context import RequestContext

logger = logging.getLogger(__name__)

RULE_FIELDS = tuple(f.name for f in fields(RuleDraft))
PATCHABLE_FIELDS = RULE_FIELDS + ("is_active",)


def to_rule_snapshot(rule: DeductionRule) -> RuleSnapshot:
    return RuleSnapshot(
        id=rule.id,
        name=rule.name,
        type_tag=rule.type_tag,
        description=rule.description or "",
        base_amount=rule.base_amount,
        min_amount=rule.min_amount,
        max_amount=rule.max_amount,
        applies_to_full_scholar=rule.applies_to_full_scholar,
        applies_to_self_funded=rule.applies_to_self_funded,
        is_optional=rule.is_optional,
        priority=rule.priority,
        is_active=rule.is_active,
    )


class RuleStore:
    """Owns DeductionRule rows; every write is validated and audited"""

    def __init__(self, db: Session, ctx: RequestContext, audit: Optional[AuditTrail] = None):
        self.db = db
        self.ctx = ctx
        self.repo = RuleRepository(db)
        self.audit = audit or AuditTrail(db, ctx)

    def _log_warnings(self, warnings: List[str], rule_name: str) -> None:
        for warning in warnings:
            logger.warning(warning, extra={"request_id": self.ctx.request_id, "rule_name": rule_name})

    def create_rule(self, draft: RuleDraft) -> DeductionRule:
        """
        Persist a new rule.

        Raises:
            InvalidInputError: a rule invariant is violated
            DuplicateNameError: the name is used by another rule, active or retired
        """
        self._log_warnings(ensure_valid(validate_rule_input(draft), "invalid deduction rule"), draft.name)
        if self.repo.name_taken(draft.name):
            raise DuplicateNameError(f"deduction rule '{draft.name}' already exists")

        rule = DeductionRule(
            **{name: getattr(draft, name) for name in RULE_FIELDS},
            is_active=True,
            created_by=self.ctx.actor,
            modified_by=self.ctx.actor,
        )
        try:
            self.repo.add(rule)
            self.audit.record(AuditAction.CREATE, EntityKind.DEDUCTION_RULE, rule.id, f"Created deduction rule '{rule.name}'")
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateNameError(f"deduction rule '{draft.name}' already exists") from e
        except Exception as e:
            self.audit.abort(e, AuditAction.CREATE, EntityKind.DEDUCTION_RULE, None, f"Create deduction rule '{draft.name}'")
            raise

        logger.info("Deduction rule created", extra={"request_id": self.ctx.request_id, "rule_id": str(rule.id)})
        return rule

    def get_rule(self, rule_id: uuid.UUID) -> DeductionRule:
        rule = self.repo.get(rule_id)
        if rule is None:
            raise NotFoundError(f"deduction rule {rule_id} not found")
        return rule

    def update_rule(self, rule_id: uuid.UUID, patch: Dict[str, Any]) -> DeductionRule:
        """
        Apply a partial update and re-run full validation on the merged rule.

        Raises:
            NotFoundError: no rule with this id
            InvalidInputError: unknown field, or the merged rule breaks an invariant
            DuplicateNameError: renamed onto an existing rule name
        """
        unknown = sorted(set(patch) - set(PATCHABLE_FIELDS))
        if unknown:
            raise InvalidInputError(f"unknown rule fields: {', '.join(unknown)}")

        rule = self.repo.get_for_update(rule_id)
        if rule is None:
            self.db.rollback()
            raise NotFoundError(f"deduction rule {rule_id} not found")

        merged = RuleDraft(**{name: patch.get(name, getattr(rule, name)) for name in RULE_FIELDS})
        try:
            warnings = ensure_valid(validate_rule_input(merged), "invalid deduction rule")
            if merged.name != rule.name and self.repo.name_taken(merged.name, exclude_id=rule.id):
                raise DuplicateNameError(f"deduction rule '{merged.name}' already exists")
        except (InvalidInputError, DuplicateNameError):
            self.db.rollback()
            raise
        self._log_warnings(warnings, merged.name)

        old = snapshot(rule)
        try:
            for name in RULE_FIELDS:
                setattr(rule, name, getattr(merged, name))
            if "is_active" in patch:
                rule.is_active = bool(patch["is_active"])
            rule.modified_by = self.ctx.actor
            self.db.flush()
            self.audit.record(
                AuditAction.UPDATE,
                EntityKind.DEDUCTION_RULE,
                rule.id,
                f"Updated deduction rule '{rule.name}' ({', '.join(sorted(patch)) or 'no fields'})",
                old=old,
                new=snapshot(rule),
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateNameError(f"deduction rule '{merged.name}' already exists") from e
        except Exception as e:
            self.audit.abort(e, AuditAction.UPDATE, EntityKind.DEDUCTION_RULE, rule_id, "Update deduction rule", old=old)
            raise

        logger.info("Deduction rule updated", extra={"request_id": self.ctx.request_id, "rule_id": str(rule.id)})
        return rule

    def retire(self, rule_id: uuid.UUID) -> DeductionRule:
        """Soft-delete: the rule stops participating in calculations but stays referenced by deductions"""
        rule = self.repo.get_for_update(rule_id)
        if rule is None:
            self.db.rollback()
            raise NotFoundError(f"deduction rule {rule_id} not found")

        old = snapshot(rule)
        already_retired = not rule.is_active
        try:
            if already_retired:
                description = f"No-op: deduction rule '{rule.name}' already retired"
            else:
                rule.is_active = False
                rule.modified_by = self.ctx.actor
                self.db.flush()
                description = f"Retired deduction rule '{rule.name}'"
            self.audit.record(AuditAction.DELETE, EntityKind.DEDUCTION_RULE, rule.id, description, old=old)
            self.db.commit()
        except Exception as e:
            self.audit.abort(e, AuditAction.DELETE, EntityKind.DEDUCTION_RULE, rule_id, "Retire deduction rule", old=old)
            raise

        if already_retired:
            logger.warning("Deduction rule already retired", extra={"request_id": self.ctx.request_id, "rule_id": str(rule_id)})
        return rule

    def list_active(self, limit: Optional[int] = None, offset: Optional[int] = None) -> Tuple[List[DeductionRule], int]:
        limit, offset = normalize_page(limit, offset)
        return self.repo.list_active(limit, offset)

    def list_applicable(self, stipend_class) -> List[DeductionRule]:
        return self.repo.list_applicable(parse_enum(StipendClass, stipend_class))

    def list_rules(
        self,
        name: Optional[str] = None,
        type_tag: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[DeductionRule], int]:
        limit, offset = normalize_page(limit, offset)
        return self.repo.search(name=name, type_tag=type_tag, is_active=is_active, limit=limit, offset=offset)
