"""Tool registration and dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

ToolHandler = Callable[[dict], dict]


class ToolDispatchError(Exception):
    """A request that cannot be served, reported to the client as an error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class ToolSpec:
    name: str
    handler: ToolHandler
    description: str = ""


@dataclass
class ToolRegistry:
    """In-memory tool registry preserving insertion order."""

    _tools: dict[str, ToolSpec] = field(default_factory=dict)

    def register(self, name: str, handler: ToolHandler, description: str = "") -> None:
        """Register a named handler."""
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = ToolSpec(name=name, handler=handler, description=description)

    def get(self, name: str) -> ToolHandler | None:
        """Return a handler by name."""
        spec = self._tools.get(name)
        return spec.handler if spec else None

    def names(self) -> tuple[str, ...]:
        """Return registered tool names in registration order."""
        return tuple(self._tools)

    def describe(self) -> list[dict]:
        return [
            {"name": spec.name, "description": spec.description}
            for spec in self._tools.values()
        ]

    def dispatch(self, name: str, arguments: dict) -> dict:
        """Dispatch to a registered tool by name."""
        handler = self.get(name)
        if handler is None:
            raise ToolDispatchError("UNKNOWN_TOOL", f"Unknown tool: {name}")
        return handler(arguments)
