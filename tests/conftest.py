"""Pytest shared fixtures for the provisioning adapter."""
import os
import pathlib
import sys
from typing import Callable, List, Optional, Sequence

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("DISPATCHER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCIM_SHARED_SECRET", "test-shared-secret-0123")

import pytest
import requests

from app.config.settings import AppConfig, GraphConfig, ProvisioningBatchConfig
from app.core.graph.models import BulkOperation, BulkResult
from app.core.queue_store import QueueStore
from app.flask_app import create_app

TEST_SHARED_SECRET = "test-shared-secret-0123"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching Entra ID or Graph.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _stub_post(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")

    def _stub_request(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests, "post", _stub_post)
    monkeypatch.setattr(requests.Session, "request", _stub_request)


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────
class FakeTransport:
    """Scripted bulk transport.

    By default every operation succeeds with 200. Set ``responder`` to a
    callable taking the operations to return custom results or raise.
    """

    def __init__(self):
        self.calls: List[List[BulkOperation]] = []
        self.responder: Optional[Callable[[Sequence[BulkOperation]], List[BulkResult]]] = None

    def send(self, operations):
        self.calls.append(list(operations))
        if self.responder is None:
            return [BulkResult(id=op.id, status=200) for op in operations]
        return self.responder(operations)

    def respond_all(self, status: int) -> None:
        self.responder = lambda ops: [BulkResult(id=op.id, status=status) for op in ops]

    def fail_with(self, exc: Exception) -> None:
        def _raise(ops):
            raise exc
        self.responder = _raise


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def store():
    """In-memory SQLite queue store with tables created."""
    queue_store = QueueStore("sqlite://")
    queue_store.create_all()
    yield queue_store
    queue_store.dispose()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def batch_config():
    return ProvisioningBatchConfig(max_operations=50, flush_seconds=5)


@pytest.fixture()
def app_config(batch_config):
    return AppConfig(
        demo_mode=True,
        scim_shared_secret=TEST_SHARED_SECRET,
        database_url="sqlite://",
        graph=GraphConfig(
            tenant_id="tenant",
            client_id="client",
            client_secret="secret",
            service_principal_id="sp-1",
            sync_job_id="job-1",
        ),
        batch=batch_config,
        dispatcher_enabled=False,
        log_level="INFO",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(app_config, store, transport):
    flask_app = create_app(app_config, store=store, transport=transport)
    flask_app.config.update(TESTING=True)
    yield flask_app
    flask_app.config["DISPATCHER"].stop(timeout=5)


@pytest.fixture()
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture()
def auth_headers():
    return {
        "Authorization": f"SharedSecret {TEST_SHARED_SECRET}",
        "Content-Type": "application/scim+json",
    }


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires a live Graph tenant)"
    )
