"""Identity service HTTP client for bearer credential verification"""

import httpx

from stipend_service.domain.enums import Role
from stipend_service.domain.exceptions import UnauthorizedError, UpstreamError
from stipend_service.domain.models import Principal


class IdentityClient:
    """Maps a bearer credential to (subject, role)"""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def verify(self, token: str) -> Principal:
        """
        Verify a bearer token.

        Raises:
            UnauthorizedError: Token rejected (401/403) or role unknown
            UpstreamError: On timeout, other HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/api/verify",
                    headers={"Authorization": f"Bearer {token}"},
                )
                if response.status_code in (401, 403):
                    raise UnauthorizedError("credential rejected by identity service")
                response.raise_for_status()
                data = response.json()

                try:
                    role = Role(data["role"])
                except ValueError:
                    raise UnauthorizedError(f"unrecognised role '{data['role']}'") from None
                return Principal(subject=str(data["subject"]), role=role)

            except httpx.TimeoutException as e:
                raise UpstreamError(f"Identity service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"Identity service error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise UpstreamError(f"Identity service unreachable: {e}") from e
            except (KeyError, TypeError) as e:
                raise UpstreamError(f"Invalid identity payload: {e}") from e
