"""Pytest fixtures for testing"""

from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from stipend_service.api.dependencies import (
    get_banking_client,
    get_identity_client,
    get_settlement_oracle,
    get_students_client,
)
from stipend_service.api.main import create_app
from stipend_service.config import Settings
from stipend_service.domain.enums import StipendClass
from stipend_service.domain.models import RuleDraft
from stipend_service.infrastructure.database.models import Base
from stipend_service.infrastructure.database.session import build_engine, build_session_factory
from stipend_service.services.context import RequestContext
from stipend_service.services.ledger import StipendLedger
from stipend_service.services.rule_store import RuleStore
from stipend_service.services.transfers import TransferEngine
from tests.fakes import ADMIN, FakeBanking, FakeIdentity, FakeOracle, FakeStudents


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'stipends.db'}",
        request_timeout=10.0,
        settlement_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def engine(settings: Settings):
    """Create test database schema"""
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext.start(ADMIN, 30.0, request_id="test-request")


@pytest.fixture
def rule_store(db: Session, ctx: RequestContext) -> RuleStore:
    return RuleStore(db, ctx)


@pytest.fixture
def ledger(db: Session, ctx: RequestContext) -> StipendLedger:
    return StipendLedger(db, ctx)


@pytest.fixture
def banking() -> FakeBanking:
    return FakeBanking()


@pytest.fixture
def students() -> FakeStudents:
    return FakeStudents()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def transfer_engine(db: Session, ctx: RequestContext, banking: FakeBanking, oracle: FakeOracle, settings: Settings) -> TransferEngine:
    return TransferEngine(
        db,
        ctx,
        banking=banking,
        oracle=oracle,
        source_account=settings.source_account,
        settlement_timeout=settings.settlement_timeout,
    )


@pytest.fixture
def make_rule(rule_store: RuleStore):
    """Factory for persisted rules; amounts are strings or Decimals"""

    def _make(
        name: str,
        base,
        min_amount="0",
        max_amount=None,
        priority: int = 0,
        full_scholar: bool = True,
        self_funded: bool = True,
        optional: bool = False,
        type_tag: str = None,
        monthly: bool = True,
    ):
        return rule_store.create_rule(
            RuleDraft(
                name=name,
                type_tag=type_tag or name.lower().replace(" ", "_"),
                description=f"{name} charge",
                base_amount=Decimal(str(base)),
                min_amount=Decimal(str(min_amount)),
                max_amount=Decimal(str(max_amount if max_amount is not None else base)),
                applies_to_full_scholar=full_scholar,
                applies_to_self_funded=self_funded,
                applies_monthly=monthly,
                applies_annually=not monthly,
                is_optional=optional,
                priority=priority,
            )
        )

    return _make


@pytest.fixture
def make_stipend(ledger: StipendLedger):
    """Factory for persisted Pending stipends without deductions"""
    counter = {"n": 0}

    def _make(amount="5000", student_id: str = "STU001", stipend_class=StipendClass.SELF_FUNDED, journal_number: str = None):
        counter["n"] += 1
        return ledger.create_stipend(
            student_id=student_id,
            stipend_class=stipend_class,
            base_amount=Decimal(str(amount)),
            payment_method="BANK_TRANSFER",
            journal_number=journal_number or f"JN-{counter['n']:03d}",
        )

    return _make


@pytest.fixture
def app(settings: Settings, engine, banking: FakeBanking, students: FakeStudents, oracle: FakeOracle):
    """FastAPI app on the test database with in-memory collaborators"""
    app = create_app(settings, engine=engine)
    identity = FakeIdentity()
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.dependency_overrides[get_banking_client] = lambda: banking
    app.dependency_overrides[get_students_client] = lambda: students
    app.dependency_overrides[get_settlement_oracle] = lambda: oracle
    return app


@pytest.fixture
def client(app) -> TestClient:
    """Create FastAPI test client with test database"""
    return TestClient(app)
