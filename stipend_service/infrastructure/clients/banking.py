"""Banking service HTTP client for resolving a student's payout account"""

import httpx

from stipend_service.domain.exceptions import BankDetailsMissingError, UpstreamError
from stipend_service.domain.models import BankDetails


class BankingClient:
    """Client for the Banking collaborator's student bank details API"""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def get_bank_details(self, student_id: str) -> BankDetails:
        """
        Fetch the account number and bank identifier registered for a student.

        Raises:
            BankDetailsMissingError: No bank details on file (404)
            UpstreamError: On timeout, other HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(f"{self.base_url}/api/student-bank-details/{student_id}")
                if response.status_code == 404:
                    raise BankDetailsMissingError(f"no bank details on file for student {student_id}")
                response.raise_for_status()
                data = response.json()

                account_number = str(data["account_number"]).strip()
                bank_id = str(data["bank_id"]).strip()
                if not account_number or not bank_id:
                    raise BankDetailsMissingError(f"incomplete bank details for student {student_id}")
                return BankDetails(account_number=account_number, bank_id=bank_id)

            except httpx.TimeoutException as e:
                raise UpstreamError(f"Banking service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"Banking service error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise UpstreamError(f"Banking service unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise UpstreamError(f"Invalid bank details payload: {e}") from e
