"""
Input validation run before any rule, stipend or deduction write.

Every function here is pure: it inspects values and returns a ValidationResult
listing errors (write must be rejected) and warnings (write may proceed but the
caller should log them). `ensure_valid` turns a failed result into an
InvalidInputError carrying every error message.
"""

from decimal import Decimal
from typing import Iterable, List, Optional

from stipend_service.domain.enums import StipendClass
from stipend_service.domain.exceptions import InvalidInputError
from stipend_service.domain.limits import ValidationLimits
from stipend_service.domain.models import RuleDraft, ValidationResult
from stipend_service.utils.money import CENT


def parse_enum(enum_cls, raw):
    """Convert a wire string into an enum member; unknown values raise InvalidInputError"""
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"unknown {enum_cls.__name__} '{raw}' (expected one of: {allowed})") from None


def ensure_valid(result: ValidationResult, message: str) -> List[str]:
    """Raise InvalidInputError when the result is invalid; return its warnings otherwise"""
    if not result.valid:
        raise InvalidInputError(f"{message}: {'; '.join(result.errors)}", errors=result.errors)
    return result.warnings


def _check_text(errors: List[str], value: Optional[str], field_name: str, max_len: int, required: bool = True) -> None:
    if value is None or not value.strip():
        if required:
            errors.append(f"{field_name} is required")
        return
    if len(value) > max_len:
        errors.append(f"{field_name} must be at most {max_len} characters")


def _check_amount(errors: List[str], amount: Optional[Decimal], field_name: str, maximum: Decimal) -> None:
    if amount is None:
        errors.append(f"{field_name} is required")
        return
    if not isinstance(amount, Decimal) or not amount.is_finite():
        errors.append(f"{field_name} must be a decimal amount")
        return
    if amount < ValidationLimits.MIN_AMOUNT:
        errors.append(f"{field_name} cannot be negative")
    if amount > maximum:
        errors.append(f"{field_name} cannot exceed {maximum}")
    if amount != amount.quantize(CENT):
        errors.append(f"{field_name} must have at most two fractional digits")


def validate_amount(amount: Optional[Decimal], field_name: str = "amount", maximum: Decimal = ValidationLimits.MAX_STIPEND) -> ValidationResult:
    """Non-negative, at most `maximum`, two fractional digits"""
    errors: List[str] = []
    warnings: List[str] = []
    _check_amount(errors, amount, field_name, maximum)
    if not errors and amount >= ValidationLimits.LARGE_AMOUNT_THRESHOLD:
        warnings.append(f"{field_name} {amount} is unusually large")
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_amount_range(min_amount: Decimal, base_amount: Decimal, max_amount: Decimal) -> ValidationResult:
    """0 <= min <= base <= max"""
    errors: List[str] = []
    if min_amount < ValidationLimits.MIN_AMOUNT:
        errors.append("min_amount cannot be negative")
    if min_amount > base_amount:
        errors.append("min_amount cannot exceed base_amount")
    if base_amount > max_amount:
        errors.append("base_amount cannot exceed max_amount")
    return ValidationResult(valid=not errors, errors=errors)


def validate_payment_method(payment_method: Optional[str]) -> ValidationResult:
    errors: List[str] = []
    _check_text(errors, payment_method, "payment_method", ValidationLimits.MAX_PAYMENT_METHOD_LEN)
    return ValidationResult(valid=not errors, errors=errors)


def validate_stipend_input(
    student_id: Optional[str],
    stipend_class,
    base_amount: Optional[Decimal],
    payment_method: Optional[str],
    journal_number: Optional[str],
    notes: Optional[str] = None,
) -> ValidationResult:
    """Field checks for CreateStipend"""
    errors: List[str] = []
    warnings: List[str] = []

    _check_text(errors, student_id, "student_id", ValidationLimits.MAX_NAME_LEN)
    if not isinstance(stipend_class, StipendClass):
        try:
            StipendClass(stipend_class)
        except ValueError:
            errors.append(f"stipend_class '{stipend_class}' is not one of: full-scholarship, self-funded, partial")

    amount_check = validate_amount(base_amount, "amount", ValidationLimits.MAX_STIPEND)
    errors.extend(amount_check.errors)
    warnings.extend(amount_check.warnings)
    if not amount_check.errors and base_amount <= 0:
        errors.append("amount must be greater than zero")

    _check_text(errors, payment_method, "payment_method", ValidationLimits.MAX_PAYMENT_METHOD_LEN)
    _check_text(errors, journal_number, "journal_number", ValidationLimits.MAX_JOURNAL_LEN)
    _check_text(errors, notes, "notes", ValidationLimits.MAX_NOTES_LEN, required=False)

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_rule_input(draft: RuleDraft) -> ValidationResult:
    """
    Cross-field invariants for a deduction rule.

    Requirements:
    - name and type_tag non-empty, at most 100 characters
    - description at most 5000 characters
    - 0 <= min <= base <= max, max <= 100,000,000, base <= 10,000,000
    - at least one applicability flag
    - exactly one cadence flag
    - priority fits a signed 32-bit integer
    """
    errors: List[str] = []
    warnings: List[str] = []

    _check_text(errors, draft.name, "name", ValidationLimits.MAX_NAME_LEN)
    _check_text(errors, draft.type_tag, "type_tag", ValidationLimits.MAX_TYPE_TAG_LEN)
    _check_text(errors, draft.description, "description", ValidationLimits.MAX_DESC_LEN, required=False)

    _check_amount(errors, draft.base_amount, "base_amount", ValidationLimits.MAX_BASE_AMOUNT)
    _check_amount(errors, draft.min_amount, "min_amount", ValidationLimits.MAX_DEDUCTION_PER_RULE)
    _check_amount(errors, draft.max_amount, "max_amount", ValidationLimits.MAX_DEDUCTION_PER_RULE)
    if not errors:
        errors.extend(validate_amount_range(draft.min_amount, draft.base_amount, draft.max_amount).errors)

    if not (draft.applies_to_full_scholar or draft.applies_to_self_funded):
        errors.append("rule must apply to at least one stipend class")
    if draft.applies_monthly == draft.applies_annually:
        errors.append("exactly one of applies_monthly and applies_annually must be set")

    if isinstance(draft.priority, bool) or not isinstance(draft.priority, int):
        errors.append("priority must be an integer")
    elif not ValidationLimits.INT32_MIN <= draft.priority <= ValidationLimits.INT32_MAX:
        errors.append("priority must fit a signed 32-bit integer")

    if not errors and draft.max_amount == 0:
        warnings.append(f"rule '{draft.name}' has max_amount 0 and will never deduct")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_total_deductions(base_amount: Decimal, amounts: Iterable[Decimal]) -> ValidationResult:
    """Σ deductions <= base; warn above the deduction warning ratio"""
    total = sum(amounts, Decimal("0"))
    errors: List[str] = []
    warnings: List[str] = []
    if total > base_amount:
        errors.append(f"total deductions {total} exceed stipend amount {base_amount}")
    elif base_amount > 0 and total / base_amount > ValidationLimits.DEDUCTION_WARNING_RATIO:
        warnings.append(
            f"total deductions {total} are more than {ValidationLimits.DEDUCTION_WARNING_RATIO:.0%} of {base_amount}"
        )
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_deduction_against_rule(
    amount: Decimal,
    rule_name: str,
    min_amount: Decimal,
    max_amount: Decimal,
    remaining: Decimal,
) -> ValidationResult:
    """
    Check one deduction against its rule bounds and the stipend's remaining balance.

    The rule minimum is waived when the deduction takes everything that is left,
    since a capped amount below the minimum is the expected result of exhaustion.
    """
    errors: List[str] = []
    if amount <= 0:
        errors.append(f"deduction for '{rule_name}' must be greater than zero")
    if amount > max_amount:
        errors.append(f"deduction for '{rule_name}' exceeds rule maximum {max_amount}")
    if amount > remaining:
        errors.append(f"deduction for '{rule_name}' exceeds remaining stipend {remaining}")
    elif amount < min_amount and amount != remaining:
        errors.append(f"deduction for '{rule_name}' is below rule minimum {min_amount}")
    return ValidationResult(valid=not errors, errors=errors)
