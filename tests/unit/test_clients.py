"""Unit tests for collaborator HTTP clients against a mocked transport"""

import asyncio
import json
import uuid
from decimal import Decimal

import httpx
import pytest

from stipend_service.domain.enums import Role, StipendClass
from stipend_service.domain.exceptions import (
    BankDetailsMissingError,
    DeadlineExceededError,
    UnauthorizedError,
    UpstreamError,
)
from stipend_service.domain.models import SettlementRequest
from stipend_service.infrastructure.clients.banking import BankingClient
from stipend_service.infrastructure.clients.identity import IdentityClient
from stipend_service.infrastructure.clients.settlement import HttpSettlementOracle, SimulatedSettlementOracle
from stipend_service.infrastructure.clients.students import StudentsClient

BASE_URL = "http://collaborators.test"


def transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def settlement_request(amount="1000.00") -> SettlementRequest:
    stipend_id = uuid.uuid4()
    return SettlementRequest(
        transaction_id=uuid.uuid4(),
        stipend_id=stipend_id,
        student_id="STU001",
        amount=Decimal(amount),
        source_account="INSTITUTION_ACCOUNT",
        destination_account="0012345678",
        destination_bank="BANK-A",
        payment_method="BANK_TRANSFER",
        idempotency_key=f"{stipend_id}:1",
    )


def test_banking_client_returns_bank_details():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/student-bank-details/STU001"
        return httpx.Response(200, json={"account_number": "0012345678", "bank_id": "BANK-A"})

    client = BankingClient(BASE_URL, transport=transport(handler))
    details = asyncio.run(client.get_bank_details("STU001"))

    assert details.account_number == "0012345678"
    assert details.bank_id == "BANK-A"


def test_banking_client_missing_details():
    client = BankingClient(BASE_URL, transport=transport(lambda request: httpx.Response(404, json={"detail": "nope"})))

    with pytest.raises(BankDetailsMissingError):
        asyncio.run(client.get_bank_details("STU404"))


def test_banking_client_incomplete_details():
    client = BankingClient(BASE_URL, transport=transport(lambda request: httpx.Response(200, json={"account_number": "", "bank_id": "B"})))

    with pytest.raises(BankDetailsMissingError):
        asyncio.run(client.get_bank_details("STU001"))


def test_banking_client_server_error():
    client = BankingClient(BASE_URL, transport=transport(lambda request: httpx.Response(503)))

    with pytest.raises(UpstreamError, match="503"):
        asyncio.run(client.get_bank_details("STU001"))


def test_banking_client_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = BankingClient(BASE_URL, timeout=0.5, transport=transport(handler))

    with pytest.raises(UpstreamError, match="timeout"):
        asyncio.run(client.get_bank_details("STU001"))


def test_students_client_parses_record():
    client = StudentsClient(
        BASE_URL,
        transport=transport(lambda request: httpx.Response(200, json={"stipend_type": "partial", "eligible": True})),
    )

    record = asyncio.run(client.get_student("STU003"))

    assert record.exists
    assert record.stipend_class is StipendClass.PARTIAL
    assert record.eligible


def test_students_client_unknown_student():
    client = StudentsClient(BASE_URL, transport=transport(lambda request: httpx.Response(404)))

    record = asyncio.run(client.get_student("STU404"))

    assert not record.exists
    assert not record.eligible


def test_students_client_rejects_unknown_class():
    client = StudentsClient(
        BASE_URL,
        transport=transport(lambda request: httpx.Response(200, json={"stipend_type": "graduate"})),
    )

    with pytest.raises(UpstreamError):
        asyncio.run(client.get_student("STU001"))


def test_identity_client_verifies_token():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer good-token"
        return httpx.Response(200, json={"subject": "finance@university.edu", "role": "finance_officer"})

    principal = asyncio.run(IdentityClient(BASE_URL, transport=transport(handler)).verify("good-token"))

    assert principal.subject == "finance@university.edu"
    assert principal.role is Role.FINANCE_OFFICER


@pytest.mark.parametrize("status", [401, 403])
def test_identity_client_rejected_token(status):
    client = IdentityClient(BASE_URL, transport=transport(lambda request: httpx.Response(status)))

    with pytest.raises(UnauthorizedError):
        asyncio.run(client.verify("bad-token"))


def test_identity_client_unknown_role():
    client = IdentityClient(
        BASE_URL,
        transport=transport(lambda request: httpx.Response(200, json={"subject": "x", "role": "dean"})),
    )

    with pytest.raises(UnauthorizedError):
        asyncio.run(client.verify("token"))


def test_settlement_oracle_success_sends_idempotency_key():
    request = settlement_request()
    seen = {}

    def handler(http_request: httpx.Request) -> httpx.Response:
        seen["key"] = http_request.headers["Idempotency-Key"]
        seen["payload"] = json.loads(http_request.content)
        return httpx.Response(200, json={"status": "ok", "reference_number": "TXN-ABC"})

    result = asyncio.run(HttpSettlementOracle(BASE_URL, transport=transport(handler)).settle(request))

    assert result.ok
    assert result.reference_number == "TXN-ABC"
    assert seen["key"] == request.idempotency_key
    assert seen["payload"]["amount"] == "1000.00"


def test_settlement_oracle_business_decline():
    oracle = HttpSettlementOracle(
        BASE_URL,
        transport=transport(lambda request: httpx.Response(422, json={"error": "gateway_timeout"})),
    )

    result = asyncio.run(oracle.settle(settlement_request()))

    assert not result.ok
    assert result.error == "gateway_timeout"


def test_settlement_oracle_server_error_raises_upstream():
    oracle = HttpSettlementOracle(BASE_URL, transport=transport(lambda request: httpx.Response(500)))

    with pytest.raises(UpstreamError):
        asyncio.run(oracle.settle(settlement_request()))


def test_settlement_oracle_timeout_raises_deadline():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    oracle = HttpSettlementOracle(BASE_URL, timeout=0.1, transport=transport(handler))

    with pytest.raises(DeadlineExceededError):
        asyncio.run(oracle.settle(settlement_request()))


@pytest.mark.parametrize(
    "amount, ok", [("0.00", True), ("0.01", True), ("1000000.00", True), ("1000000.01", False), ("-0.01", False)]
)
def test_simulated_oracle_limit(amount, ok):
    result = asyncio.run(SimulatedSettlementOracle().settle(settlement_request(amount)))

    assert result.ok is ok
    if ok:
        assert result.reference_number.startswith("TXN-")
    else:
        assert result.error == "Transfer amount exceeds limit or invalid"
