"""Pytest configuration and fixtures for the task manager test suite."""

import os
import sys
import warnings
from typing import Dict

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

warnings.filterwarnings("ignore", message="Duplicate Operation ID.*", category=UserWarning)

from wolmgr.core.config import config
from wolmgr.core.store import create_store

AGENT_TOKEN = "test-token"
USER_TOKENS = {"alice": "alice-token", "bob": "bob-token"}


@pytest.fixture(autouse=True)
def ensure_test_settings(monkeypatch):
    """Pin tokens and claim tuning so that a local .env cannot change test outcomes."""

    monkeypatch.setattr(config, "AUTHORIZED_TOKENS", {"test": AGENT_TOKEN})
    monkeypatch.setattr(config, "USER_TOKENS", dict(USER_TOKENS))
    monkeypatch.setattr(config, "AGENT_AUTH_REQUIRED", True)
    monkeypatch.setattr(config, "REQUIRE_USER_AUTH", False)
    monkeypatch.setattr(config, "API_DOCS_VISIBILITY", "public")
    monkeypatch.setattr(config, "CLAIM_LIMIT", 50)
    monkeypatch.setattr(config, "CLAIM_LIMIT_MAX", 500)
    monkeypatch.setattr(config, "CLAIM_MAX_ATTEMPTS", 5)
    monkeypatch.setattr(config, "PROCESSING_TIMEOUT_SECONDS", 600)
    yield


@pytest.fixture(params=["sqlite", "json"])
def store(request, tmp_path):
    """Fresh task store, once per backend."""

    filename = "tasks.sqlite3" if request.param == "sqlite" else "tasks.json"
    task_store = create_store(request.param, str(tmp_path / filename), lock_timeout=10)
    yield task_store
    task_store.close()


@pytest.fixture
def agent_headers() -> Dict[str, str]:
    return {"X-API-Token": AGENT_TOKEN}


@pytest.fixture
def alice_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {USER_TOKENS['alice']}"}


@pytest.fixture
def bob_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {USER_TOKENS['bob']}"}


@pytest.fixture
def client(monkeypatch, store):
    """Test client bound to a temporary store, background services and rate limiting disabled."""

    from fastapi.testclient import TestClient

    from wolmgr import main as main_module
    from wolmgr.core.state import get_store
    from wolmgr.services import background_service

    async def _noop(*_, **__):
        return None

    monkeypatch.setattr(background_service.background_manager, "start_all_services", _noop)
    monkeypatch.setattr(background_service.background_manager, "stop_all_services", _noop)
    monkeypatch.setattr(main_module.limiter, "enabled", False)

    main_module.app.dependency_overrides[get_store] = lambda: store
    try:
        with TestClient(main_module.app) as test_client:
            yield test_client
    finally:
        main_module.app.dependency_overrides.pop(get_store, None)
