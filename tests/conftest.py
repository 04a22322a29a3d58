"""Pytest configuration and shared fixtures for hivetrack tests."""

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from hivetrack.agents.registry import AgentRegistry
from hivetrack.config.app import AgentRegistryConfig, DaemonConfig
from hivetrack.hooks.server import HookServer
from hivetrack.storage.agents import LocalAgentManager
from hivetrack.storage.database import LocalDatabase
from hivetrack.storage.hook_events import LocalHookEventManager
from hivetrack.storage.migrations import run_migrations


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Iterator[LocalDatabase]:
    """Create a temporary database for testing."""
    db_path = temp_dir / "test.db"
    db = LocalDatabase(db_path)
    run_migrations(db)
    yield db
    db.close()


@pytest.fixture
def agent_manager(temp_db: LocalDatabase) -> LocalAgentManager:
    """Create an agent manager with temp database."""
    return LocalAgentManager(temp_db)


@pytest.fixture
def hook_event_manager(temp_db: LocalDatabase) -> LocalHookEventManager:
    """Create a hook event manager with temp database."""
    return LocalHookEventManager(temp_db)


@pytest.fixture
def hook_server(hook_event_manager: LocalHookEventManager) -> HookServer:
    """Hook server with default handlers and a null notifier."""
    return HookServer(hook_events=hook_event_manager)


@pytest.fixture
def registry_config() -> AgentRegistryConfig:
    """Registry config that never touches real PIDs."""
    return AgentRegistryConfig(check_pids=False)


@pytest.fixture
def registry(
    agent_manager: LocalAgentManager,
    hook_server: HookServer,
    registry_config: AgentRegistryConfig,
) -> Iterator[AgentRegistry]:
    """Initialized registry wired to the hook server (no loop, so no timers)."""
    reg = AgentRegistry(agent_manager, hook_server=hook_server, config=registry_config)
    reg.init()
    yield reg
    reg.shutdown()


@pytest.fixture
def default_config() -> DaemonConfig:
    """Create a default DaemonConfig for testing."""
    return DaemonConfig()
