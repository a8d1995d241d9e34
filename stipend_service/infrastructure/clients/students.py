"""Students service HTTP client"""

import httpx

from stipend_service.domain.enums import StipendClass
from stipend_service.domain.exceptions import UpstreamError
from stipend_service.domain.models import StudentRecord


class StudentsClient:
    """Client for the Students collaborator; only the fields the stipend core consumes are parsed"""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def get_student(self, student_id: str) -> StudentRecord:
        """
        Look up a student's existence, stipend class and eligibility.

        An unknown student (404) is reported as exists=False rather than raised.

        Raises:
            UpstreamError: On timeout, HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(f"{self.base_url}/api/students/{student_id}")
                if response.status_code == 404:
                    return StudentRecord(student_id=student_id, exists=False, stipend_class=None, eligible=False)
                response.raise_for_status()
                data = response.json()

                raw_class = data.get("stipend_type") or data.get("stipend_class")
                return StudentRecord(
                    student_id=student_id,
                    exists=True,
                    stipend_class=StipendClass(raw_class) if raw_class else None,
                    eligible=bool(data.get("eligible", True)),
                )

            except httpx.TimeoutException as e:
                raise UpstreamError(f"Students service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"Students service error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise UpstreamError(f"Students service unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise UpstreamError(f"Invalid student payload: {e}") from e
