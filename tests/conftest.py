"""Shared test fixtures for the agent runtime test suite.

Provides settings isolation, a temporary workspace and fakes for the model
client.
"""

from __future__ import annotations

import os
import sys

# Settings are read on first import of the logger; keep tests off the log files.
os.environ.setdefault("APP_ENV", "test")
os.environ["LOG_TO_FILE"] = "false"

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from agent_runtime.core.constants import Settings, clear_settings_cache
from agent_runtime.utils.workspace import WorkspaceContext

# ============================================================================
# Test Isolation: Settings Cache
# ============================================================================


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    """Drop cached settings before and after every test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Settings and Workspace
# ============================================================================


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    """Directory registered as the only workspace root."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def workspace(workspace_dir: Path) -> WorkspaceContext:
    return WorkspaceContext([workspace_dir])


@pytest.fixture
def test_settings(workspace_dir: Path, tmp_path: Path) -> Settings:
    """Settings pointing at the running interpreter and the temp workspace."""
    return Settings(
        app_env="test",
        log_to_file=False,
        python_interpreter=Path(sys.executable),
        workspace_directories=[workspace_dir],
        target_dir=workspace_dir,
        history_db_path=tmp_path / "history.db",
        client_idle_timeout=0.2,
    )


# ============================================================================
# Fakes
# ============================================================================


class FakeModelClient:
    """In-memory stand-in for a model client."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.history: list[Any] = []
        self.initialize = AsyncMock()
        self.update_tools = AsyncMock()
        self.send_message = AsyncMock(return_value="reply")

    def get_history(self) -> list[Any]:
        return list(self.history)

    def set_history(self, items: list[Any]) -> None:
        self.history = list(items)


@pytest.fixture
def client_factory() -> Mock:
    """Factory returning a new ``FakeModelClient`` per call."""
    return Mock(side_effect=FakeModelClient)

