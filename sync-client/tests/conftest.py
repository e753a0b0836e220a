import pytest
import requests

from sync_client.client import SyncClient
from sync_client.manager import SyncManager
from sync_client.store import LocalStore


class CountingSession:
    """Wraps the test client to count requests and simulate network outages."""

    def __init__(self, session):
        self.session = session
        self.headers = session.headers
        self.requests = []
        self.offline = False

    def request(self, method, url, **kwargs):
        if self.offline:
            raise requests.ConnectionError("Network is unreachable")
        self.requests.append((method, url, kwargs.get("json")))
        return self.session.request(method, url, **kwargs)

    def pushes(self):
        return [body for method, url, body in self.requests if method == "POST"]


@pytest.fixture
def store(tmp_path):
    store = LocalStore(str(tmp_path / "store.db"))
    yield store
    store.close()


@pytest.fixture
def session(api_client):
    return CountingSession(api_client)


@pytest.fixture
def make_manager(tmp_path, session, clock):
    managers = []

    def _make(name="device-a", user_id="user-1", debounce_seconds=60, **kwargs):
        kwargs.setdefault("clock", clock)
        client = SyncClient(base_url="http://testserver", session=kwargs.pop("session", session))
        manager = SyncManager(user_id,
                              store=LocalStore(str(tmp_path / f"{name}.db")),
                              client=client,
                              debounce_seconds=debounce_seconds,
                              **kwargs)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.reconciler.stop()
        manager.debouncer.close()
        manager.store.close()
