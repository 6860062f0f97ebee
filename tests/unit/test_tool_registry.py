# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

import pytest

import agent_tools.registry as registry_mod
from agent_tools.registry import (
    ParamSpec,
    ToolHandlerError,
    ToolRegistrationError,
    ToolRegistry,
    ToolRegistryLockedError,
)


async def echo(text: str) -> str:
    return f"echo: {text}"


def make_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register("echo", (ParamSpec("text"),), echo)
    return registry


# ---------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------

def test_duplicate_name_rejected():
    registry = make_registry()

    with pytest.raises(ToolRegistrationError):
        registry.register("echo", (ParamSpec("text"),), echo)


def test_sync_handler_rejected():
    registry = ToolRegistry()

    def sync_handler(text: str) -> str:
        return text

    with pytest.raises(ToolRegistrationError):
        registry.register("sync", (ParamSpec("text"),), sync_handler)  # type: ignore[arg-type]


def test_malformed_schema_rejected():
    registry = ToolRegistry()

    with pytest.raises(ToolRegistrationError):
        registry.register("bad_type", (ParamSpec("x", type="date"),), echo)
    with pytest.raises(ToolRegistrationError):
        registry.register("dup_param", (ParamSpec("x"), ParamSpec("x")), echo)
    with pytest.raises(ToolRegistrationError):
        registry.register("not_spec", ({"name": "x"},), echo)  # type: ignore[arg-type]
    with pytest.raises(ToolRegistrationError):
        registry.register("", (), echo)

    assert registry.names() == []


def test_registration_closed_while_locked():
    registry = make_registry()
    registry.set_locked(True)

    with pytest.raises(ToolRegistryLockedError):
        registry.register("other", (), echo)

    registry.set_locked(False)
    registry.register("other", (ParamSpec("text"),), echo)
    assert registry.names() == ["echo", "other"]


# ---------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------

def test_dispatch_returns_handler_string():
    registry = make_registry()

    assert asyncio.run(registry.dispatch("echo", {"text": "hi"})) == "echo: hi"


def test_unknown_tool_is_error_string():
    registry = make_registry()

    result = asyncio.run(registry.dispatch("nope", {}))

    assert result.startswith("ERROR:")
    assert "nope" in result


def test_schema_violations_are_error_strings():
    registry = ToolRegistry()

    async def count(n: int) -> str:
        return str(n)

    registry.register("count", (ParamSpec("n", type="integer"),), count)

    assert asyncio.run(registry.dispatch("count", {})).startswith("ERROR:")
    assert asyncio.run(registry.dispatch("count", {"n": "3"})).startswith("ERROR:")
    assert asyncio.run(registry.dispatch("count", {"n": True})).startswith("ERROR:")
    assert asyncio.run(registry.dispatch("count", {"n": 3, "extra": 1})) == "3"


def test_optional_parameter_uses_handler_default():
    registry = ToolRegistry()

    async def greet(name: str, greeting: str = "hello") -> str:
        return f"{greeting} {name}"

    registry.register("greet", (ParamSpec("name"), ParamSpec("greeting", required=False)), greet)

    assert asyncio.run(registry.dispatch("greet", {"name": "ana", "greeting": None})) == "hello ana"


def test_throwing_handler_becomes_error_string(monkeypatch: pytest.MonkeyPatch):
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(registry_mod, "log_event", logged.append)
    registry = ToolRegistry()

    async def explode() -> str:
        raise RuntimeError("database offline")

    registry.register("explode", (), explode)

    result = asyncio.run(registry.dispatch("explode", {}))

    assert result == "ERROR: database offline"
    assert logged[0]["event_type"] == "tool_handler_failed"


def test_handler_error_message_is_forwarded():
    registry = ToolRegistry()

    async def picky() -> str:
        raise ToolHandlerError("Reason is required")

    registry.register("picky", (), picky)

    assert asyncio.run(registry.dispatch("picky")) == "ERROR: Reason is required"


def test_non_string_result_is_error():
    registry = ToolRegistry()

    async def wrong() -> str:
        return 42  # type: ignore[return-value]

    registry.register("wrong", (), wrong)

    assert asyncio.run(registry.dispatch("wrong")).startswith("ERROR:")


def test_concurrent_dispatches_of_same_tool_are_not_serialized():
    registry = ToolRegistry()
    gate = asyncio.Event()
    entered: list[str] = []

    async def slow(tag: str) -> str:
        entered.append(tag)
        await gate.wait()
        return tag

    registry.register("slow", (ParamSpec("tag"),), slow)

    async def main() -> list[str]:
        tasks = [asyncio.create_task(registry.dispatch("slow", {"tag": t})) for t in ("a", "b")]
        while len(entered) < 2:
            await asyncio.sleep(0)
        gate.set()
        return list(await asyncio.gather(*tasks))

    assert asyncio.run(main()) == ["a", "b"]
