import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sync_api.main import app
from sync_api.models import db
from sync_api.services.auth import AuthService
from sync_api.services.progress import ProgressService

USER_ID = "user-1"


class FakeClock:
    """Epoch milliseconds that only move when the test says so."""

    def __init__(self, now: int = 1_760_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def server_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    db.Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def progress_service(server_engine, clock):
    ProgressService.reset()
    service = ProgressService(sessionmaker(server_engine), clock=clock)
    yield service
    ProgressService.reset()


@pytest.fixture
def auth_service(server_engine):
    AuthService.reset()
    service = AuthService(sessionmaker(server_engine))
    yield service
    AuthService.reset()


@pytest.fixture
def token(auth_service):
    return auth_service.issue_token(USER_ID)


@pytest.fixture
def api_client(progress_service, auth_service, token):
    client = TestClient(app)
    client.headers["Authorization"] = f"Bearer {token}"
    return client
