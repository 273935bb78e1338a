"""
Constants and configuration for the agent runtime.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import sys
import threading

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

from agent_runtime.models.mcp_models import MCPServerConfig

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

#: Default directory for rotating log files
DEFAULT_LOG_DIR = PROJECT_ROOT / "logs"

#: Default SQLite database for persisted session histories
DEFAULT_HISTORY_DB_PATH = PROJECT_ROOT / "data" / "history.db"

#: Bundled interpreter shipped next to the application, preferred over the host interpreter
BUNDLED_PYTHON_PATH = PROJECT_ROOT / ".runtime" / ("python.exe" if sys.platform == "win32" else "bin/python3")

# ============================================================================
# Session Client Pool
# ============================================================================

#: Idle window before a pooled model client is saved and released (15 minutes)
CLIENT_IDLE_TIMEOUT_SECONDS = 15 * 60

#: Hard timeout for one streamed chat turn (15 minutes)
STREAM_TIMEOUT_SECONDS = 15 * 60

#: Default model for newly created sessions
DEFAULT_MODEL = "gpt-4.1"

# ============================================================================
# Code Execution Harness
# ============================================================================

#: Marker that opens a progress record on the child's stderr
PROGRESS_MARKER_START = "__GEMINI_PROGRESS__"

#: Marker that opens the base64 encoded result on the child's stdout
RESULT_MARKER_START = "__TOOL_RESULT_BASE64__"

#: Marker that closes both progress records and the result payload
MARKER_END = "__END__"

#: Longest unterminated progress record held back while waiting for its terminator
PROGRESS_PENDING_MAX_CHARS = 64 * 1024

#: Suffix of the allowlist key recorded for "approve always" on a Python tool
PYTHON_ALLOWLIST_SUFFIX = "_python"

#: Flags appended to the batched ``pip install`` invocation
PIP_INSTALL_FLAGS = ("--quiet",)

#: Trailing characters of pip output kept in logs and install failure results
PIP_OUTPUT_TAIL_CHARS = 2000

#: Characters of generated code scanned for imports in invocation descriptions
DESCRIPTION_IMPORT_SCAN_CHARS = 200

#: Prefix for temporary instrumented script files
SCRIPT_TEMP_PREFIX = "tool_script_"

# ============================================================================
# MCP (External Tool Servers)
# ============================================================================

#: Name given to the server created from the command-line override
MCP_COMMAND_SERVER_NAME = "mcp"

#: Separator used to qualify a tool name with its server on name conflicts
MCP_TOOL_NAME_SEPARATOR = "__"

#: MCP protocol version announced during the websocket handshake
MCP_PROTOCOL_VERSION = "2024-11-05"

#: Client identity sent in the MCP ``initialize`` request
MCP_CLIENT_NAME = "agent-runtime"
MCP_CLIENT_VERSION = "1.0.0"

#: Default timeouts for MCP operations (seconds)
MCP_CONNECT_TIMEOUT = 30.0
MCP_LIST_TOOLS_TIMEOUT = 30.0
MCP_CALL_TOOL_TIMEOUT = 600.0

#: Client session timeout handed to the stdio transport (seconds)
MCP_SERVER_TIMEOUT_SECONDS = 60

# ============================================================================
# Event Types
# ============================================================================

#: Published when a pooled client is created
EVENT_CLIENT_CREATED = "client_created"

#: Published when persisted history has been restored into a new client
EVENT_CLIENT_RESTORED = "client_restored"

#: Published when a pooled client is released
EVENT_CLIENT_RELEASED = "client_released"

#: Published whenever the MCP connection collection or discovery state changes
EVENT_MCP_CLIENT_UPDATE = "mcp_client_update"

#: User facing feedback channel (errors and warnings)
EVENT_USER_FEEDBACK = "user_feedback"

# ============================================================================
# Settings
# ============================================================================

Environment = Literal["development", "production", "test"]


def _get_env_files() -> list[Path]:
    """Determine which .env files to load based on APP_ENV.

    Load order (later files override earlier - pydantic-settings last-wins):
    1. .env (base defaults) - lowest priority
    2. .env.{environment} (environment-specific overrides)
    3. .env.local (local developer overrides, gitignored) - highest priority

    Returns:
        List of Path objects for env files that exist.
    """
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env_name}",
        PROJECT_ROOT / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


def _reload_dotenv_into_environ() -> None:
    """Reload the dotenv chain into os.environ so environment-specific files win.

    Must be called BEFORE Settings() instantiation.
    """
    from dotenv import load_dotenv

    for env_file in _get_env_files():
        load_dotenv(env_file, override=True)


class Settings(BaseSettings):
    """Environment settings with validation and environment-specific file support.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)

    Complex fields (``workspace_directories``, ``mcp_servers``) are read from
    environment variables as JSON.
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging")
    log_dir: Path = Field(default=DEFAULT_LOG_DIR, description="Directory for rotating log files")
    log_to_file: bool = Field(default=True, description="Write JSON logs to rotating files")

    # Session client pool
    client_idle_timeout: float = Field(
        default=float(CLIENT_IDLE_TIMEOUT_SECONDS),
        description="Seconds without access before a pooled client is released",
    )
    stream_timeout: float = Field(
        default=float(STREAM_TIMEOUT_SECONDS),
        description="Hard timeout for one streamed chat turn (seconds)",
    )
    history_db_path: Path = Field(
        default=DEFAULT_HISTORY_DB_PATH,
        description="SQLite database holding persisted session histories",
    )

    # Code execution
    python_interpreter: Path | None = Field(
        default=None,
        description="Interpreter used for generated scripts (default: bundled or running interpreter)",
    )
    workspace_directories: list[Path] = Field(
        default_factory=list,
        description="Filesystem roots generated scripts may run in",
    )
    target_dir: Path = Field(default_factory=Path.cwd, description="Fallback working directory")
    trusted_folder: bool = Field(default=True, description="Whether the workspace is trusted")
    keep_scripts: bool = Field(default=False, description="Keep instrumented temp scripts for debugging")

    # MCP servers
    mcp_servers: dict[str, MCPServerConfig] = Field(
        default_factory=dict,
        description="Declared external tool servers keyed by name",
    )
    mcp_server_command: str | None = Field(
        default=None,
        description="Shell-quoted command launching one extra server named 'mcp'",
    )
    mcp_connect_timeout: float = Field(default=MCP_CONNECT_TIMEOUT, description="MCP connect timeout (seconds)")
    mcp_list_tools_timeout: float = Field(
        default=MCP_LIST_TOOLS_TIMEOUT, description="MCP tools/list timeout (seconds)"
    )
    mcp_call_tool_timeout: float = Field(
        default=MCP_CALL_TOOL_TIMEOUT, description="MCP tools/call timeout (seconds)"
    )

    # Model provider
    default_model: str = Field(default=DEFAULT_MODEL, description="Model used by new sessions")
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    openai_base_url: str | None = Field(default=None, description="Override for the OpenAI API base URL")
    http_read_timeout: float = Field(default=600.0, description="HTTP read timeout for streaming (seconds)")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Environment variables override dotenv files; constructor values override both."""
        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=_get_env_files(),
            env_file_encoding="utf-8",
        )
        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("client_idle_timeout", "stream_timeout")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("mcp_server_command")
    @classmethod
    def normalize_server_command(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.app_env == "test"


# ============================================================================
# Settings Management
# ============================================================================


class _SettingsManager:
    """Thread-safe settings cache."""

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        if self._instance is not None:
            return self._instance

        with self._lock:
            if self._instance is not None:
                return self._instance
            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        with self._lock:
            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        with self._lock:
            self._instance = None


_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get the cached settings instance.

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If configuration is invalid.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files."""
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
