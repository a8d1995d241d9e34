"""Per-request context handed to every service call"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from stipend_service.domain.enums import Role
from stipend_service.domain.exceptions import DeadlineExceededError
from stipend_service.domain.models import Principal


@dataclass(frozen=True)
class RequestContext:
    """Caller identity, request id and the absolute deadline (monotonic clock)"""

    principal: Principal
    deadline: float
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def start(cls, principal: Principal, timeout: float, **kwargs) -> "RequestContext":
        return cls(principal=principal, deadline=time.monotonic() + timeout, **kwargs)

    @classmethod
    def system(cls, timeout: float = 30.0, subject: str = "system") -> "RequestContext":
        """Context for internal callers such as seeding and tests"""
        return cls.start(Principal(subject=subject, role=Role.ADMIN), timeout)

    @property
    def actor(self) -> str:
        return self.principal.subject

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative"""
        return max(self.deadline - time.monotonic(), 0.0)

    def check_deadline(self, operation: str) -> None:
        if self.remaining() <= 0:
            raise DeadlineExceededError(f"deadline exceeded before {operation}")
