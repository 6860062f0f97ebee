"""
Client tool registry.

Tools are named async handlers the remote agent may invoke. Each tool
declares a parameter schema; dispatch validates against it, runs the
handler and always returns a string. Failures never raise out of
dispatch: they come back as "ERROR: <reason>" for the agent to read.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from observability.logger import log_event, now_ms


ToolHandler = Callable[..., Awaitable[str]]

_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "any": (object,),
}


class ToolRegistrationError(Exception):
    """Invalid tool definition (duplicate name, bad schema, sync handler)."""


class ToolRegistryLockedError(ToolRegistrationError):
    """Registration attempted while a conversation session is open."""


class ToolHandlerError(Exception):
    """Raised by handlers for an expected failure; reported as ERROR: text."""


@dataclass(frozen=True)
class ParamSpec:
    name: str
    type: str = "string"
    required: bool = True
    description: str = ""


@dataclass(frozen=True)
class Tool:
    name: str
    parameters: tuple[ParamSpec, ...]
    handler: ToolHandler
    description: str = ""


def _error(reason: str) -> str:
    return f"ERROR: {reason}"


class ToolRegistry:
    """
    Name -> Tool mapping.

    Registration is closed while a session is open; the runtime toggles
    the lock as sessions open and close. Concurrent dispatches, including
    of the same tool, run independently.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._locked = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def locked(self) -> bool:
        return self._locked

    def set_locked(self, locked: bool) -> None:
        self._locked = locked

    def register(
        self,
        name: str,
        parameters: tuple[ParamSpec, ...] | list[ParamSpec],
        handler: ToolHandler,
        description: str = "",
    ) -> Tool:
        if self._locked:
            raise ToolRegistryLockedError(f"cannot register {name!r} while a session is open")
        if not name or not isinstance(name, str):
            raise ToolRegistrationError("tool name must be a non-empty string")
        if name in self._tools:
            raise ToolRegistrationError(f"tool {name!r} already registered")
        if not inspect.iscoroutinefunction(handler):
            raise ToolRegistrationError(f"handler for {name!r} must be an async function")

        seen: set[str] = set()
        for spec in parameters:
            if not isinstance(spec, ParamSpec):
                raise ToolRegistrationError(f"{name!r}: parameters must be ParamSpec")
            if not spec.name or spec.name in seen:
                raise ToolRegistrationError(f"{name!r}: bad or duplicate parameter {spec.name!r}")
            if spec.type not in _TYPES:
                raise ToolRegistrationError(f"{name!r}: unknown parameter type {spec.type!r}")
            seen.add(spec.name)

        tool = Tool(name=name, parameters=tuple(parameters), handler=handler, description=description)
        self._tools[name] = tool
        return tool

    def names(self) -> list[str]:
        return sorted(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _validate(self, tool: Tool, parameters: Mapping[str, Any]) -> str | None:
        for spec in tool.parameters:
            if spec.name not in parameters or parameters[spec.name] is None:
                if spec.required:
                    return f"missing required parameter '{spec.name}'"
                continue
            value = parameters[spec.name]
            allowed = _TYPES[spec.type]
            # bool is an int subclass; only accept it where booleans are declared
            if isinstance(value, bool) and spec.type in ("number", "integer"):
                return f"parameter '{spec.name}' must be {spec.type}"
            if not isinstance(value, allowed):
                return f"parameter '{spec.name}' must be {spec.type}"
        return None

    async def dispatch(self, name: str, parameters: Mapping[str, Any] | None = None) -> str:
        """Run a tool. Never raises; failures become "ERROR: ..." strings."""
        params = dict(parameters or {})
        tool = self._tools.get(name)
        if tool is None:
            return _error(f"unknown tool '{name}'")

        problem = self._validate(tool, params)
        if problem is not None:
            return _error(problem)

        declared = {spec.name for spec in tool.parameters}
        kwargs = {k: v for k, v in params.items() if k in declared and v is not None}

        try:
            result = await tool.handler(**kwargs)
        except ToolHandlerError as exc:
            return _error(str(exc))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "tool_handler_failed",
                "level": "error",
                "tool": name,
                "error": repr(exc),
            })
            return _error(str(exc) or type(exc).__name__)

        if not isinstance(result, str):
            return _error(f"tool '{name}' returned {type(result).__name__}, expected str")
        return result
