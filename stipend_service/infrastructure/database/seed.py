"""Default university deduction rules, inserted when missing"""

import logging
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from stipend_service.domain.models import RuleDraft
from stipend_service.infrastructure.database.models import DeductionRule
from stipend_service.infrastructure.database.repositories import RuleRepository

logger = logging.getLogger(__name__)

SEED_ACTOR = "system:seed"

DEFAULT_RULES: List[RuleDraft] = [
    RuleDraft(
        name="Hostel Fee",
        type_tag="hostel",
        description="Monthly on-campus hostel accommodation charges",
        base_amount=Decimal("3000.00"),
        min_amount=Decimal("2500.00"),
        max_amount=Decimal("3500.00"),
        applies_to_full_scholar=True,
        applies_to_self_funded=True,
        applies_monthly=True,
        priority=100,
    ),
    RuleDraft(
        name="Mess Fee",
        type_tag="mess_fees",
        description="Monthly dining facility and meal charges",
        base_amount=Decimal("2000.00"),
        min_amount=Decimal("1500.00"),
        max_amount=Decimal("2500.00"),
        applies_to_self_funded=True,
        applies_monthly=True,
        priority=90,
    ),
    RuleDraft(
        name="Electricity Bill",
        type_tag="electricity",
        description="Monthly electricity charges for hostel rooms",
        base_amount=Decimal("500.00"),
        min_amount=Decimal("300.00"),
        max_amount=Decimal("800.00"),
        applies_to_full_scholar=True,
        applies_to_self_funded=True,
        applies_monthly=True,
        priority=80,
    ),
    RuleDraft(
        name="Water Bill",
        type_tag="water",
        description="Monthly water supply charges",
        base_amount=Decimal("300.00"),
        min_amount=Decimal("200.00"),
        max_amount=Decimal("500.00"),
        applies_to_self_funded=True,
        applies_monthly=True,
        priority=70,
    ),
    RuleDraft(
        name="Library Fine",
        type_tag="library",
        description="Library facility and book damage charges",
        base_amount=Decimal("200.00"),
        min_amount=Decimal("0.00"),
        max_amount=Decimal("500.00"),
        applies_to_self_funded=True,
        applies_annually=True,
        is_optional=True,
        priority=30,
    ),
    RuleDraft(
        name="Sports Activity Fee",
        type_tag="sports",
        description="Optional sports and recreational facilities fee",
        base_amount=Decimal("500.00"),
        min_amount=Decimal("0.00"),
        max_amount=Decimal("1000.00"),
        applies_to_full_scholar=True,
        applies_to_self_funded=True,
        applies_monthly=True,
        is_optional=True,
        priority=20,
    ),
    RuleDraft(
        name="University Fund Contribution",
        type_tag="university_fund",
        description="Contribution to university development fund",
        base_amount=Decimal("1000.00"),
        min_amount=Decimal("500.00"),
        max_amount=Decimal("2000.00"),
        applies_to_full_scholar=True,
        applies_to_self_funded=True,
        applies_annually=True,
        is_optional=True,
        priority=10,
    ),
]


def seed_deduction_rules(db: Session) -> int:
    """Insert each default rule whose name is not yet taken; returns how many were created"""
    repo = RuleRepository(db)
    created = 0
    for draft in DEFAULT_RULES:
        if repo.name_taken(draft.name):
            logger.debug("Seed rule already present", extra={"rule_name": draft.name})
            continue
        repo.add(
            DeductionRule(
                name=draft.name,
                type_tag=draft.type_tag,
                description=draft.description,
                base_amount=draft.base_amount,
                min_amount=draft.min_amount,
                max_amount=draft.max_amount,
                applies_to_full_scholar=draft.applies_to_full_scholar,
                applies_to_self_funded=draft.applies_to_self_funded,
                applies_monthly=draft.applies_monthly,
                applies_annually=draft.applies_annually,
                is_optional=draft.is_optional,
                priority=draft.priority,
                is_active=True,
                created_by=SEED_ACTOR,
                modified_by=SEED_ACTOR,
            )
        )
        created += 1
    db.commit()
    logger.info("Deduction rules seeded", extra={"created": created, "known": len(DEFAULT_RULES)})
    return created
