"""In-memory collaborators and small builders shared by the test suite"""

import uuid
from decimal import Decimal

from stipend_service.domain.enums import Role, StipendClass
from stipend_service.domain.exceptions import BankDetailsMissingError, UnauthorizedError
from stipend_service.domain.models import (
    AppliedDeduction,
    BankDetails,
    Principal,
    SettlementResult,
    StudentRecord,
)

ADMIN = Principal(subject="admin-1", role=Role.ADMIN)
FINANCE = Principal(subject="finance-1", role=Role.FINANCE_OFFICER)
STUDENT = Principal(subject="STU001", role=Role.STUDENT)
OTHER_STUDENT = Principal(subject="STU002", role=Role.STUDENT)

TOKENS = {
    "admin-token": ADMIN,
    "finance-token": FINANCE,
    "student-token": STUDENT,
    "other-student-token": OTHER_STUDENT,
}

ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
FINANCE_HEADERS = {"Authorization": "Bearer finance-token"}
STUDENT_HEADERS = {"Authorization": "Bearer student-token"}
OTHER_STUDENT_HEADERS = {"Authorization": "Bearer other-student-token"}


class FakeIdentity:
    """Identity collaborator backed by a fixed token table"""

    async def verify(self, token: str) -> Principal:
        if token not in TOKENS:
            raise UnauthorizedError("credential rejected by identity service")
        return TOKENS[token]


class FakeBanking:
    """Banking collaborator with an in-memory account book"""

    def __init__(self):
        self.accounts = {
            "STU001": BankDetails(account_number="0012345678", bank_id="BANK-A"),
            "STU002": BankDetails(account_number="0087654321", bank_id="BANK-B"),
            "STU003": BankDetails(account_number="0011223344", bank_id="BANK-A"),
        }
        self.calls = []

    async def get_bank_details(self, student_id: str) -> BankDetails:
        self.calls.append(student_id)
        if student_id not in self.accounts:
            raise BankDetailsMissingError(f"no bank details on file for student {student_id}")
        return self.accounts[student_id]


class FakeStudents:
    def __init__(self):
        self.records = {
            "STU001": StudentRecord("STU001", True, StipendClass.SELF_FUNDED, True),
            "STU002": StudentRecord("STU002", True, StipendClass.FULL_SCHOLARSHIP, True),
            "STU003": StudentRecord("STU003", True, StipendClass.PARTIAL, True),
            "STU009": StudentRecord("STU009", True, StipendClass.SELF_FUNDED, False),
        }

    async def get_student(self, student_id: str) -> StudentRecord:
        return self.records.get(student_id, StudentRecord(student_id, False, None, False))


class FakeOracle:
    """
    Scripted settlement oracle.

    Queued outcomes are consumed one per call: a SettlementResult is returned,
    an exception is raised, and an async callable is awaited with the request.
    An empty queue approves with a generated reference number.
    """

    def __init__(self):
        self.outcomes = []
        self.requests = []

    def will(self, *outcomes) -> None:
        self.outcomes.extend(outcomes)

    async def settle(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else ok(f"REF-{len(self.requests)}-{uuid.uuid4().hex[:6]}")
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome(request)
        return outcome


def ok(reference: str) -> SettlementResult:
    return SettlementResult(ok=True, reference_number=reference)


def fail(error: str) -> SettlementResult:
    return SettlementResult(ok=False, error=error)


def line(rule, amount) -> AppliedDeduction:
    """Deduction line for a persisted rule"""
    return AppliedDeduction(
        rule_id=rule.id,
        rule_name=rule.name,
        type_tag=rule.type_tag,
        amount=Decimal(str(amount)),
        description=rule.description,
        is_optional=rule.is_optional,
    )

