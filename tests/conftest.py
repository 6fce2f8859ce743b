import pytest

from elicit.agents.policies import ClarificationConfig
from elicit.core.session_store import SessionStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> SessionStore:
    """
    Fixture for an in-memory store with the default timings and no sweeper.

    Returns:
        SessionStore: A fresh store.
    """
    return SessionStore(idle_ttl=24 * 60 * 60, sweep_interval=60 * 60)


@pytest.fixture
def config() -> ClarificationConfig:
    return ClarificationConfig(collaborator_timeout=1.0)
