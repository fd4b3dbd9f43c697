"""Pytest configuration and shared fixtures for Fitness Pal tests.

This module provides common test fixtures and configuration
that can be used across all test modules.
"""

import logging
from pathlib import Path
from typing import Generator, List

import pytest
from _pytest.config import Config

from fitness_pal.config.models import StreamConfig
from fitness_pal.persistence.reconciler import PersistenceReconciler
from fitness_pal.persistence.repository import InMemoryConversationRepository
from fitness_pal.state.generation_store import GenerationStore
from fitness_pal.state.schema import StoreEvent


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary stream config file for testing."""
    config_file = tmp_path / "fitness_pal.yml"
    config_content = """
endpoints:
  workout:
    start: /v2/workout/stream
    feedback: /v2/workout/feedback
data_prefix: "data: "
title_max_length: 30
"""
    config_file.write_text(config_content)
    yield config_file


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock environment variables for testing."""
    monkeypatch.setenv("FITNESS_PAL_API_BASE_URL", "https://api.test/")
    monkeypatch.setenv("FITNESS_PAL_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("FITNESS_PAL_STORE_URL", "https://store.test/rest/v1")
    monkeypatch.setenv("FITNESS_PAL_STORE_API_KEY", "test_store_key_1234")


@pytest.fixture
def store() -> GenerationStore:
    return GenerationStore()


@pytest.fixture
def store_events(store: GenerationStore) -> List[StoreEvent]:
    """Every event the store publishes during a test."""
    events: List[StoreEvent] = []
    store.subscribe(events.append)
    return events


@pytest.fixture
def stream_config() -> StreamConfig:
    return StreamConfig()


@pytest.fixture
def repository() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture
def reconciler(repository: InMemoryConversationRepository) -> PersistenceReconciler:
    return PersistenceReconciler(repository)


@pytest.fixture
def restore_root_logger() -> Generator[None, None, None]:
    """Put the root logger back after a test that configures logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)

@pytest.fixture(autouse=True)
def isolate_tests(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests by changing to a temporary directory."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "FITNESS_PAL_API_BASE_URL",
        "FITNESS_PAL_REQUEST_TIMEOUT",
        "FITNESS_PAL_STORE_URL",
        "FITNESS_PAL_STORE_API_KEY",
        "FITNESS_PAL_STORE_PATH",
        "FITNESS_PAL_LOG_LEVEL",
        "FITNESS_PAL_LOG_DIR",
        "FITNESS_PAL_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


def pytest_configure(config: Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
