# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


@pytest.fixture(name="captured")
def fixture_captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    monkeypatch.setattr(logger, "_min_level", 20)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    assert json.loads(captured[0]) == payload


def test_events_below_level_are_dropped(captured: list[str]) -> None:
    logger.log_event({"event_type": "chatty", "level": "debug"})
    logger.log_event({"event_type": "kept", "level": "warning"})

    assert [json.loads(line)["event_type"] for line in captured] == ["kept"]


def test_configure_level_and_disable(captured: list[str]) -> None:
    logger.configure(level="DEBUG")
    logger.log_event({"event_type": "chatty", "level": "debug"})

    logger.configure(enabled=False)
    logger.log_event({"event_type": "muted", "level": "error"})

    logger.configure(level="nonsense")
    logger.log_event({"event_type": "chatty", "level": "debug"})
    logger.log_event({"event_type": "info"})

    assert [json.loads(line)["event_type"] for line in captured] == ["chatty", "info"]


def test_unserializable_event_reports_instead_of_raising(captured: list[str]) -> None:
    event: dict[str, Any] = {"ts_ms": 5, "event_type": "loop"}
    event["self"] = event

    logger.log_event(event)

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 5


def test_non_json_values_are_stringified(captured: list[str]) -> None:
    logger.log_event({"event_type": "set", "value": {1}})

    assert json.loads(captured[0])["value"] == "{1}"
