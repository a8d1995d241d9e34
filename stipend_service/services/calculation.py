"""Stipend calculation entry points over a single rule snapshot"""

import logging
import uuid
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from stipend_service.domain import calculator
from stipend_service.domain.enums import StipendClass
from stipend_service.domain.exceptions import UnusableRuleError
from stipend_service.domain.models import CalculationResult, RuleSnapshot
from stipend_service.domain.validation import parse_enum, validate_total_deductions
from stipend_service.infrastructure.database.repositories import RuleRepository
from stipend_service.services.context import RequestContext
from stipend_service.services.rule_store import to_rule_snapshot
from stipend_service.utils.money import divide_money

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


class CalculationService:
    """Loads the applicable rules once per call and runs the pure calculator"""

    def __init__(self, db: Session, ctx: RequestContext):
        self.db = db
        self.ctx = ctx
        self.rules = RuleRepository(db)

    def rule_snapshot(self, stipend_class: StipendClass, rule_ids: Optional[Iterable[uuid.UUID]] = None) -> List[RuleSnapshot]:
        """
        Rules for one calculation.

        Without rule_ids every applicable rule is used. With rule_ids the chosen
        subset is used, every id must resolve, and applicable mandatory rules are
        always added back since they cannot be skipped.
        """
        applicable = [to_rule_snapshot(rule) for rule in self.rules.list_applicable(stipend_class)]
        if rule_ids is None:
            return applicable

        wanted = list(dict.fromkeys(rule_ids))
        found = {rule.id: to_rule_snapshot(rule) for rule in self.rules.get_many(wanted)}
        missing = [str(rule_id) for rule_id in wanted if rule_id not in found]
        if missing:
            raise UnusableRuleError(f"unknown deduction rules: {', '.join(missing)}")

        chosen = dict(found)
        for rule in applicable:
            if not rule.is_optional:
                chosen.setdefault(rule.id, rule)
        return list(chosen.values())

    def calculate(
        self,
        student_id: str,
        stipend_class,
        base_amount: Decimal,
        rule_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> CalculationResult:
        stipend_class = parse_enum(StipendClass, stipend_class)
        rules = self.rule_snapshot(stipend_class, rule_ids)
        result = calculator.calculate(stipend_class, base_amount, rules)

        check = validate_total_deductions(result.base_amount, [line.amount for line in result.applied])
        for warning in check.warnings:
            logger.warning(warning, extra={"request_id": self.ctx.request_id, "student_id": student_id})
        logger.info(
            "Stipend calculated",
            extra={
                "request_id": self.ctx.request_id,
                "student_id": student_id,
                "stipend_class": stipend_class.value,
                "rules_considered": len(rules),
                "net_amount": str(result.net_amount),
            },
        )
        return result

    def calculate_monthly(self, student_id: str, stipend_class, annual_amount: Decimal, rule_ids=None) -> CalculationResult:
        """Monthly payout: annual amount divided by twelve, then calculated"""
        monthly = divide_money(annual_amount, MONTHS_PER_YEAR) if annual_amount is not None else None
        return self.calculate(student_id, stipend_class, monthly, rule_ids)

    def calculate_annual(self, student_id: str, stipend_class, annual_amount: Decimal, rule_ids=None) -> CalculationResult:
        return self.calculate(student_id, stipend_class, annual_amount, rule_ids)
