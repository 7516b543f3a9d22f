"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test (schema from the ORM models)
- A WhatsApp gateway wired to an in-process fake Evolution API
- HTTPX AsyncClient with dependency overrides for the app
"""
import json
import os
from dataclasses import dataclass, field
from typing import AsyncGenerator, Generator

# Must be set before slotbook.core.config is imported
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["CANCEL_CODE_PEPPER"] = "test-pepper"
os.environ["WEB_ORIGIN"] = "https://book.example.com"
os.environ["SWEEP_SEND_DELAY_SECONDS"] = "0"
os.environ["BROADCAST_SEND_DELAY_SECONDS"] = "0"
os.environ["EVOLUTION_API_BASE_URL"] = "http://gateway.test"
os.environ["EVOLUTION_API_KEY"] = "test-gateway-key"
os.environ["EVOLUTION_INSTANCE_NAME"] = "slotbook"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from slotbook.core.deps import get_catalog, get_db, get_gateway, get_session_factory
from slotbook.db.base import Base
from slotbook.db.models import Provider
from slotbook.main import app
from slotbook.services import customer_service
from slotbook.services.catalog_service import ServiceCatalog
from slotbook.services.messaging_gateway import WhatsAppGateway


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database shared by every session of one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def provider(db: Session) -> Provider:
    """Provider p1 on default hours (closed Sunday, 09:00-18:30)."""
    p1 = Provider(id="p1", name="Bruno", active=True)
    db.add(p1)
    db.commit()
    return p1


@pytest.fixture(scope="function")
def ana():
    """Customer Ana Silva, +5511999990000."""
    return customer_service.make_customer_input("Ana", "Silva", "+5511999990000")


@pytest.fixture(scope="function")
def catalog() -> ServiceCatalog:
    return ServiceCatalog(ttl_seconds=30)


# =============================================================================
# Gateway Fixtures
# =============================================================================

@dataclass
class FakeEvolutionApi:
    """Records gateway requests; fail_status makes every send fail."""
    requests: list[httpx.Request] = field(default_factory=list)
    fail_status: int | None = None
    fail_body: dict = field(default_factory=lambda: {"error": "instance disconnected"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status:
            return httpx.Response(self.fail_status, json=self.fail_body)
        return httpx.Response(201, json={"key": {"id": f"msg-{len(self.requests)}"}})

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture(scope="function")
def evolution() -> FakeEvolutionApi:
    return FakeEvolutionApi()


@pytest.fixture(scope="function")
def gateway(evolution: FakeEvolutionApi) -> Generator[WhatsAppGateway, None, None]:
    client = WhatsAppGateway(
        "http://gateway.test",
        "test-gateway-key",
        "slotbook",
        transport=httpx.MockTransport(evolution.handler),
    )
    yield client
    client.close()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(
    db: Session,
    session_factory,
    gateway: WhatsAppGateway,
    catalog: ServiceCatalog,
) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the app with test database, gateway and catalog.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_catalog] = lambda: catalog

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
