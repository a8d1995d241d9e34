"""Settlement oracle clients: the payment gateway over HTTP, and an in-process simulation"""

import time
from decimal import Decimal

import httpx

from stipend_service.domain.exceptions import DeadlineExceededError, UpstreamError
from stipend_service.domain.models import SettlementRequest, SettlementResult
from stipend_service.utils.money import format_money

SIMULATED_TRANSFER_LIMIT = Decimal("1000000")


class HttpSettlementOracle:
    """Client for a payment gateway exposing POST /settlements"""

    def __init__(self, base_url: str, timeout: float = 8.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        """
        Ask the gateway to move the transaction amount.

        The gateway deduplicates on the Idempotency-Key header, so re-sending the
        same attempt never moves money twice. A 4xx with a JSON body is a business
        decline and comes back as a failed result; transport problems are raised.

        Raises:
            DeadlineExceededError: The gateway did not answer within the timeout
            UpstreamError: 5xx, network failure, or unreadable response
        """
        payload = {
            "transaction_id": str(request.transaction_id),
            "stipend_id": str(request.stipend_id),
            "student_id": request.student_id,
            "amount": format_money(request.amount),
            "source_account": request.source_account,
            "destination_account": request.destination_account,
            "destination_bank": request.destination_bank,
            "payment_method": request.payment_method,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/settlements",
                    json=payload,
                    headers={"Idempotency-Key": request.idempotency_key},
                )
                if 400 <= response.status_code < 500:
                    data = response.json()
                    return SettlementResult(ok=False, error=str(data.get("error") or f"declined ({response.status_code})"))
                response.raise_for_status()
                data = response.json()

                if data.get("status") == "ok":
                    return SettlementResult(ok=True, reference_number=str(data["reference_number"]))
                return SettlementResult(ok=False, error=str(data.get("error") or "settlement declined"))

            except httpx.TimeoutException as e:
                raise DeadlineExceededError(f"Settlement gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"Settlement gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise UpstreamError(f"Settlement gateway unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise UpstreamError(f"Invalid settlement response: {e}") from e


class SimulatedSettlementOracle:
    """Gateway stand-in: approves transfers of 0 up to 1,000,000 and declines the rest"""

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        if request.amount < 0 or request.amount > SIMULATED_TRANSFER_LIMIT:
            return SettlementResult(ok=False, error="Transfer amount exceeds limit or invalid")
        reference = f"TXN-{time.time_ns()}-{str(request.transaction_id)[:8]}"
        return SettlementResult(ok=True, reference_number=reference)
