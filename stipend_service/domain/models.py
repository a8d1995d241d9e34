"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from stipend_service.domain.enums import Role, StipendClass


@dataclass(frozen=True)
class RuleSnapshot:
    """Deduction rule as seen by the calculator (one consistent read per calculation)"""

    id: uuid.UUID
    name: str
    type_tag: str
    description: str
    base_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal
    applies_to_full_scholar: bool
    applies_to_self_funded: bool
    is_optional: bool
    priority: int
    is_active: bool = True

    def applies_to(self, stipend_class: StipendClass) -> bool:
        # Partial-scholarship students follow the self-funded charge schedule
        if stipend_class is StipendClass.FULL_SCHOLARSHIP:
            return self.applies_to_full_scholar
        return self.applies_to_self_funded


@dataclass
class RuleDraft:
    """Author-supplied values for a new or updated deduction rule"""

    name: str
    type_tag: str
    base_amount: Decimal
    min_amount: Decimal
    max_amount: Decimal
    description: str = ""
    applies_to_full_scholar: bool = False
    applies_to_self_funded: bool = False
    applies_monthly: bool = False
    applies_annually: bool = False
    is_optional: bool = False
    priority: int = 0


@dataclass(frozen=True)
class AppliedDeduction:
    """One line of a calculation result"""

    rule_id: uuid.UUID
    rule_name: str
    type_tag: str
    amount: Decimal
    description: str
    is_optional: bool
    skipped_reason: Optional[str] = None  # "exhausted" | "zero_amount"


@dataclass(frozen=True)
class CalculationResult:
    """Output of a stipend calculation"""

    base_amount: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    applied: List[AppliedDeduction] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a pure validation pass"""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BankDetails:
    """Destination account resolved from the Banking collaborator"""

    account_number: str
    bank_id: str


@dataclass(frozen=True)
class StudentRecord:
    """Student facts the core consumes from the Students collaborator"""

    student_id: str
    exists: bool
    stipend_class: Optional[StipendClass]
    eligible: bool


@dataclass(frozen=True)
class Principal:
    """Verified caller identity"""

    subject: str
    role: Role


@dataclass(frozen=True)
class SettlementRequest:
    """Payload handed to the settlement oracle"""

    transaction_id: uuid.UUID
    stipend_id: uuid.UUID
    student_id: str
    amount: Decimal
    source_account: str
    destination_account: str
    destination_bank: str
    payment_method: str
    idempotency_key: str


@dataclass(frozen=True)
class SettlementResult:
    """Oracle verdict: ok with a reference number, or a failure text"""

    ok: bool
    reference_number: Optional[str] = None
    error: Optional[str] = None
