import pytest

from policy_watcher.config import settings
from policy_watcher.transport.factory import TransportFactory


@pytest.fixture(autouse=True)
def reset_transports():
    """Every test starts with fresh default transports, so memory topics never leak between tests."""
    TransportFactory.reset()
    yield
    TransportFactory.reset()


@pytest.fixture
def short_timeouts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "SHUTDOWN_TIMEOUT_SECONDS", 0.2)
    monkeypatch.setattr(settings, "PUBLISH_TIMEOUT_SECONDS", 0.2)
