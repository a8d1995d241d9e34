"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from stipend_service.config import Settings
from stipend_service.domain.exceptions import ForbiddenError, InvalidInputError, UnauthorizedError
from stipend_service.domain.models import Principal
from stipend_service.infrastructure.clients.banking import BankingClient
from stipend_service.infrastructure.clients.identity import IdentityClient
from stipend_service.infrastructure.clients.settlement import HttpSettlementOracle, SimulatedSettlementOracle
from stipend_service.infrastructure.clients.students import StudentsClient
from stipend_service.infrastructure.database.session import get_db
from stipend_service.services.audit import AuditTrail
from stipend_service.services.context import RequestContext
from stipend_service.services.ledger import StipendLedger
from stipend_service.services.rule_store import RuleStore
from stipend_service.services.transfers import TransferEngine

bearer_scheme = HTTPBearer(auto_error=False)

REQUEST_TIMEOUT_HEADER = "X-Request-Timeout"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_banking_client(settings: Settings = Depends(get_settings)) -> BankingClient:
    """Provide Banking API client instance"""
    return BankingClient(settings.banking_endpoint, timeout=settings.request_timeout)


def get_students_client(settings: Settings = Depends(get_settings)) -> StudentsClient:
    return StudentsClient(settings.students_endpoint, timeout=settings.request_timeout)


def get_identity_client(settings: Settings = Depends(get_settings)) -> IdentityClient:
    return IdentityClient(settings.identity_endpoint, timeout=settings.request_timeout)


def get_settlement_oracle(settings: Settings = Depends(get_settings)):
    """HTTP gateway when an endpoint is configured, otherwise the simulated oracle"""
    if settings.settlement_endpoint:
        return HttpSettlementOracle(settings.settlement_endpoint, timeout=settings.settlement_timeout)
    return SimulatedSettlementOracle()


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityClient = Depends(get_identity_client),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("bearer credential required")
    return await identity.verify(credentials.credentials)


def _timeout(request: Request, settings: Settings) -> float:
    raw = request.headers.get(REQUEST_TIMEOUT_HEADER)
    if raw is None:
        return settings.request_timeout
    try:
        timeout = float(raw)
    except ValueError:
        raise InvalidInputError(f"{REQUEST_TIMEOUT_HEADER} must be a number of seconds") from None
    if timeout <= 0:
        raise InvalidInputError(f"{REQUEST_TIMEOUT_HEADER} must be positive")
    return timeout


def get_context(
    request: Request,
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(get_settings),
) -> RequestContext:
    """Per-request identity and deadline, passed explicitly to every service"""
    return RequestContext.start(
        principal,
        _timeout(request, settings),
        request_id=get_request_id(request),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def require_staff(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    """Only admins and finance officers may write or see cross-student data"""
    if not ctx.principal.role.is_staff:
        raise ForbiddenError(f"role '{ctx.principal.role.value}' may not perform this operation")
    return ctx


def ensure_student_access(ctx: RequestContext, student_id: str) -> None:
    """Students may read only their own records"""
    if not ctx.principal.role.is_staff and ctx.actor != student_id:
        raise ForbiddenError("students may only read their own stipends")


def get_rule_store(db: Session = Depends(get_db), ctx: RequestContext = Depends(require_staff)) -> RuleStore:
    return RuleStore(db, ctx)


def get_ledger(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_context)) -> StipendLedger:
    return StipendLedger(db, ctx)


def get_audit_trail(db: Session = Depends(get_db), ctx: RequestContext = Depends(require_staff)) -> AuditTrail:
    return AuditTrail(db, ctx)


def get_transfer_engine(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
    banking: BankingClient = Depends(get_banking_client),
    oracle=Depends(get_settlement_oracle),
) -> TransferEngine:
    return TransferEngine(
        db,
        ctx,
        banking=banking,
        oracle=oracle,
        source_account=settings.source_account,
        settlement_timeout=settings.settlement_timeout,
    )
