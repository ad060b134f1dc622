import os

# settings are read when the app module is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import tender_engine.models  # noqa

from tender_engine.core.deps_rate_limit import get_proposal_limiter
from tender_engine.core.events import InMemoryEventSink
from tender_engine.db.base import Base
from tender_engine.db.session import get_db
from tender_engine.models.enums import EstimatedTimeline
from tender_engine.services.marketplace import MarketplaceFacade
from tender_engine.tests.factories import COMPANY, PROPOSAL_TEXT, make_terms


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture()
def file_engine(tmp_path):
    """File database: separate connections and real write locking."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'engine.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def SessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(SessionLocal):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def sink():
    return InMemoryEventSink()


@pytest.fixture()
def facade(sink):
    return MarketplaceFacade(sink)


@pytest.fixture()
def published_tender(db, facade):
    """Factory: a tender owned by COMPANY's organization, already published."""

    def _make(**overrides):
        tender = facade.create_tender(db, COMPANY, make_terms(**overrides))
        return facade.publish_tender(db, COMPANY, tender.id)

    return _make


@pytest.fixture()
def submit(db, facade):
    def _submit(actor, tender_id, bid=Decimal("1500"), text=PROPOSAL_TEXT):
        return facade.create_proposal(
            db,
            actor,
            tender_id,
            bid_amount=bid,
            proposal_text=text,
            estimated_timeline=EstimatedTimeline.two_to_four_weeks,
        )

    return _submit


@pytest.fixture()
def client(SessionLocal, sink):
    from tender_engine.main import create_app

    app = create_app(event_sink=sink)

    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    get_proposal_limiter().reset()
    with TestClient(app) as c:
        yield c
    get_proposal_limiter().reset()
