"""
Progress and result sub-protocol between the harness and a generated script.

The instrumented script multiplexes two record types onto its normal output:

- progress records on stderr:  ``__GEMINI_PROGRESS__{json}__END__``
- the final result on stdout:  ``__TOOL_RESULT_BASE64__{base64}__END__``

The result payload is the UTF-8 text the script printed, base64 encoded so
that any characters survive console encodings. An empty payload means the
script produced no output.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re

from string import Template

from pydantic import ValidationError

from agent_runtime.core.constants import (
    MARKER_END,
    PROGRESS_MARKER_START,
    PROGRESS_PENDING_MAX_CHARS,
    RESULT_MARKER_START,
)
from agent_runtime.models.event_models import ProgressEnvelope, ToolExecutionStage

logger = logging.getLogger(__name__)

PROGRESS_PATTERN = re.compile(re.escape(PROGRESS_MARKER_START) + r"(\{.*?\})" + re.escape(MARKER_END))
RESULT_PATTERN = re.compile(re.escape(RESULT_MARKER_START) + r"([A-Za-z0-9+/=]*)" + re.escape(MARKER_END))

# ============================================
# SCRIPT INSTRUMENTATION
# ============================================

_WRAPPER_TEMPLATE = Template(
    r'''# -*- coding: utf-8 -*-
import base64
import contextlib
import io
import json
import sys
import time
import traceback

sys.stdout.reconfigure(encoding="utf-8")
sys.stderr.reconfigure(encoding="utf-8", line_buffering=True)


class ProgressTracker:
    def __init__(self):
        self.start_time = time.time()

    def report(self, stage, progress=None, message=None, **details):
        event = {
            "__PROGRESS__": True,
            "stage": stage,
            "progress": progress,
            "message": message,
            "details": details,
            "timestamp": time.time(),
            "elapsed": time.time() - self.start_time,
        }
        print(f"$progress_start{json.dumps(event, default=str)}$end", file=sys.stderr, flush=True)


_progress = ProgressTracker()
report_progress = _progress.report

_tool_source = $source
_captured = io.StringIO()
_namespace = {"__name__": "__main__", "report_progress": report_progress}
_failed = False

with contextlib.redirect_stdout(_captured):
    try:
        exec(compile(_tool_source, "<tool>", "exec"), _namespace)
    except SystemExit as e:
        if e.code not in (None, 0):
            _failed = True
            print(f"Error: script exited with status {e.code}")
            report_progress("failed", message=f"exit status {e.code}")
    except Exception as e:
        _failed = True
        print(f"Error: {e}\n{traceback.format_exc()}", end="")
        report_progress("failed", message=str(e))

_final_output = _captured.getvalue()
if _final_output.strip():
    _encoded = base64.b64encode(_final_output.encode("utf-8")).decode("ascii")
    print(f"$result_start{_encoded}$end", flush=True)
else:
    print("$result_start$end", flush=True)

# Non-zero status marks a failed script even when it printed output first
sys.exit(1 if _failed else 0)
'''
)


def wrap_script(code: str) -> str:
    """Wrap a generated script body with the progress and result protocol.

    The body runs with ``report_progress(stage, progress=None, message=None, **details)``
    in scope. Its ``print`` output is captured and emitted once, encoded, at
    the end. An uncaught exception is turned into a traceback in the output,
    a ``failed`` progress record and exit status 1 instead of a crash.
    """
    return _WRAPPER_TEMPLATE.substitute(
        source=repr(code),
        progress_start=PROGRESS_MARKER_START,
        result_start=RESULT_MARKER_START,
        end=MARKER_END,
    )


# ============================================
# STAGE MAPPING
# ============================================


def map_python_stage(stage: str) -> ToolExecutionStage:
    """Translate a script's freeform stage name to the fixed stage set."""
    match stage:
        case "loading":
            return ToolExecutionStage.PREPARING
        case "cleaning" | "processing" | "reporting":
            return ToolExecutionStage.PROCESSING
        case "analyzing":
            return ToolExecutionStage.EXECUTING
        case "completed":
            return ToolExecutionStage.COMPLETED
        case "failed":
            return ToolExecutionStage.FAILED
        case _:
            return ToolExecutionStage.EXECUTING


# ============================================
# PROGRESS PARSING
# ============================================


def parse_progress_payload(raw: str) -> ProgressEnvelope | None:
    """Decode one progress payload; malformed or non-progress records yield None."""
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict) or not data.get("__PROGRESS__"):
        return None
    try:
        return ProgressEnvelope.model_validate(data)
    except ValidationError:
        return None


def extract_progress(output: str) -> tuple[str, list[ProgressEnvelope]]:
    """Split complete progress records out of ``output``.

    Returns:
        Tuple of (output with every marker removed, decoded envelopes in order)
    """
    envelopes = [envelope for raw in PROGRESS_PATTERN.findall(output) if (envelope := parse_progress_payload(raw))]
    return PROGRESS_PATTERN.sub("", output), envelopes


class ProgressStreamParser:
    """Incremental progress extraction for chunked output.

    A marker may be split across chunks; text from the start of an
    unterminated marker is held back until the rest arrives or ``flush``.
    Records are single lines, so a marker followed by a newline, or one
    longer than ``PROGRESS_PENDING_MAX_CHARS``, is passed through as text.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> tuple[str, list[ProgressEnvelope]]:
        text = self._pending + chunk
        self._pending = ""

        cleaned, envelopes = extract_progress(text)

        hold_from = self._partial_marker_start(cleaned)
        if hold_from is not None:
            self._pending = cleaned[hold_from:]
            cleaned = cleaned[:hold_from]
        return cleaned, envelopes

    def flush(self) -> str:
        """Return held-back text that never became a complete marker."""
        pending, self._pending = self._pending, ""
        return pending

    @staticmethod
    def _partial_marker_start(text: str) -> int | None:
        # An opened marker without its terminator
        start = text.rfind(PROGRESS_MARKER_START)
        if start != -1:
            tail = text[start:]
            if MARKER_END not in tail and "\n" not in tail and len(tail) <= PROGRESS_PENDING_MAX_CHARS:
                return start
        # A prefix of the opening marker at the very end
        for size in range(min(len(PROGRESS_MARKER_START) - 1, len(text)), 0, -1):
            if PROGRESS_MARKER_START.startswith(text[-size:]):
                return len(text) - size
        return None


# ============================================
# RESULT DECODING
# ============================================


def encode_tool_result(text: str) -> str:
    """Encode ``text`` the way the instrumented script does."""
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii") if text.strip() else ""
    return f"{RESULT_MARKER_START}{payload}{MARKER_END}"


def decode_tool_result(output: str) -> str:
    """Recover the script's printed text from raw subprocess output.

    Falls back to the trimmed raw output when no marker is present or the
    payload cannot be decoded.
    """
    raw = output.strip()
    match = RESULT_PATTERN.search(raw)
    if match is None:
        return raw

    payload = match.group(1)
    if not payload:
        return ""
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.warning(f"Failed to decode base64 tool result: {e}")
        return raw
