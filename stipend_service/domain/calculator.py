"""Net stipend calculation over an ordered ladder of deduction rules"""

from decimal import Decimal
from typing import Iterable, List, Sequence

from stipend_service.domain.enums import StipendClass
from stipend_service.domain.exceptions import InvalidInputError, UnusableRuleError
from stipend_service.domain.models import AppliedDeduction, CalculationResult, RuleSnapshot
from stipend_service.domain.validation import parse_enum
from stipend_service.utils.money import ZERO, to_money

SKIPPED_EXHAUSTED = "exhausted"
SKIPPED_ZERO_AMOUNT = "zero_amount"


def order_rules(rules: Iterable[RuleSnapshot]) -> List[RuleSnapshot]:
    """Priority DESC, then Name ASC"""
    return sorted(rules, key=lambda rule: (-rule.priority, rule.name))


def clamp_rule_amount(rule: RuleSnapshot) -> Decimal:
    """Rule base amount clamped into [min, max]"""
    return min(max(rule.base_amount, rule.min_amount), rule.max_amount)


def check_usable(rules: Sequence[RuleSnapshot], stipend_class: StipendClass) -> None:
    """
    Reject caller-supplied rules that could not be picked by the rule store.

    Raises:
        UnusableRuleError: a rule is inactive or not applicable to the class
    """
    unusable = [rule.name for rule in rules if not rule.is_active or not rule.applies_to(stipend_class)]
    if unusable:
        raise UnusableRuleError(
            f"rules not usable for {stipend_class.value}: {', '.join(sorted(unusable))}",
            errors=[f"rule '{name}' is inactive or not applicable" for name in sorted(unusable)],
        )


def calculate(stipend_class, base_amount: Decimal, rules: Sequence[RuleSnapshot]) -> CalculationResult:
    """
    Apply deduction rules to a base amount and return the net stipend.

    Each rule's candidate amount is its base clamped into [min, max], then capped
    to what is left of the stipend. Once the stipend is exhausted, mandatory rules
    still appear with a zero amount marked "exhausted" and optional rules drop out.
    A rule whose clamped amount is zero for any other reason appears with a zero
    amount marked "zero_amount" and leaves the remaining balance untouched.

    Args:
        stipend_class: StipendClass or its wire string
        base_amount: gross payout, must be > 0
        rules: rule snapshot, already filtered for the class

    Returns:
        CalculationResult with net + total == base and applied amounts summing to total

    Raises:
        InvalidInputError: base amount not positive or class unknown
        UnusableRuleError: a rule is inactive or not applicable
    """
    stipend_class = parse_enum(StipendClass, stipend_class)
    if base_amount is None:
        raise InvalidInputError("base amount is required")
    base = to_money(base_amount)
    if base <= 0:
        raise InvalidInputError(f"base amount must be greater than zero, got {base}")

    check_usable(rules, stipend_class)

    remaining = base
    applied: List[AppliedDeduction] = []
    for rule in order_rules(rules):
        if remaining == 0:
            if not rule.is_optional:
                applied.append(_entry(rule, ZERO, SKIPPED_EXHAUSTED))
            continue

        amount = min(to_money(clamp_rule_amount(rule)), remaining)
        if amount == 0:
            applied.append(_entry(rule, ZERO, SKIPPED_ZERO_AMOUNT))
            continue

        applied.append(_entry(rule, amount))
        remaining -= amount

    return CalculationResult(
        base_amount=base,
        total_deductions=base - remaining,
        net_amount=remaining,
        applied=applied,
    )


def _entry(rule: RuleSnapshot, amount: Decimal, skipped_reason=None) -> AppliedDeduction:
    return AppliedDeduction(
        rule_id=rule.id,
        rule_name=rule.name,
        type_tag=rule.type_tag,
        amount=amount,
        description=rule.description,
        is_optional=rule.is_optional,
        skipped_reason=skipped_reason,
    )
