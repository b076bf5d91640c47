import pytest
from fastapi.testclient import TestClient

import app as app_module
import routers.rooms as rooms_module
from backend import SignalingBackend


@pytest.fixture
def backend() -> SignalingBackend:
    return SignalingBackend()


@pytest.fixture
def relay_backend(monkeypatch) -> SignalingBackend:
    """Fresh backend wired into the app and the rooms router."""
    fresh = SignalingBackend()
    monkeypatch.setattr(app_module, "signaling_backend", fresh)
    monkeypatch.setattr(rooms_module, "signaling_backend", fresh)
    return fresh


@pytest.fixture
def client(relay_backend):
    # One portal for every socket so they share an event loop
    with TestClient(app_module.app) as test_client:
        yield test_client
