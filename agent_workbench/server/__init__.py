"""Tool dispatcher: registry, handlers and the JSON-line STDIO server."""

from .handlers import WorkbenchTools
from .registry import ToolDispatchError, ToolRegistry
from .stdio import StdioServer

__all__ = ["StdioServer", "ToolDispatchError", "ToolRegistry", "WorkbenchTools"]
