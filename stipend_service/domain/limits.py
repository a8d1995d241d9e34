"""Validation limits shared by the rule store, calculator and ledger"""

from decimal import Decimal


class ValidationLimits:
    """Enumerated bounds for amounts, text fields and pagination"""

    MIN_AMOUNT = Decimal("0")
    MAX_STIPEND = Decimal("10000000")
    MAX_BASE_AMOUNT = Decimal("10000000")
    MAX_DEDUCTION_PER_RULE = Decimal("100000000")
    LARGE_AMOUNT_THRESHOLD = Decimal("100000000")

    MAX_NAME_LEN = 100
    MAX_TYPE_TAG_LEN = 100
    MAX_DESC_LEN = 5000
    MAX_JOURNAL_LEN = 255
    MAX_PAYMENT_METHOD_LEN = 50
    MAX_NOTES_LEN = 5000
    MAX_REASON_LEN = 1000

    # Warn when total deductions exceed this share of the base amount
    DEDUCTION_WARNING_RATIO = Decimal("0.80")

    INT32_MIN = -(2**31)
    INT32_MAX = 2**31 - 1

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100


def normalize_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Clamp pagination to the default/maximum page size and a non-negative offset"""
    if limit is None or limit <= 0:
        limit = ValidationLimits.DEFAULT_PAGE_SIZE
    limit = min(limit, ValidationLimits.MAX_PAGE_SIZE)
    offset = max(offset or 0, 0)
    return limit, offset
