"""
JSONL event logger.

- One JSON object per line on stdout
- No buffering, no batching
- Never raises into the caller
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


_LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}


# ------------------------------------------------------------------
# Output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_enabled: bool = True
_min_level: int = _LEVELS["info"]


def configure(*, enabled: bool = True, level: str = "info") -> None:
    """Apply AppConfig logging settings. Unknown levels fall back to info."""
    global _enabled, _min_level  # pylint: disable=global-statement
    _enabled = enabled
    _min_level = _LEVELS.get(level.lower(), _LEVELS["info"])


def now_ms() -> int:
    """Wall-clock milliseconds, used for event timestamps."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event.

    Events may carry an optional "level" (debug/info/warning/error,
    default info); events below the configured level are dropped.
    Serialization failures are reported as LOGGER_SERIALIZATION_ERROR
    instead of raising.
    """
    if not _enabled:
        return
    level = _LEVELS.get(str(event.get("level", "info")), _LEVELS["info"])
    if level < _min_level:
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
