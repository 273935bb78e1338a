"""
Locate the interpreter used to run generated scripts.

Resolution order: configured ``python_interpreter``, the bundled runtime next
to the application, then the interpreter running this process.
"""

from __future__ import annotations

import sys

from pathlib import Path

from agent_runtime.core.constants import BUNDLED_PYTHON_PATH, Settings, get_settings


def get_python_interpreter(settings: Settings | None = None) -> Path:
    settings = settings or get_settings()
    if settings.python_interpreter is not None:
        return settings.python_interpreter
    if BUNDLED_PYTHON_PATH.exists():
        return BUNDLED_PYTHON_PATH
    return Path(sys.executable)


def python_interpreter_exists(interpreter: Path) -> bool:
    return interpreter.is_file()
