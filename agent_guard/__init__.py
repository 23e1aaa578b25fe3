"""Security and sandboxing core for AI agent tool calls."""

__version__ = "0.1.0"

from .guard import ToolGuard, build_guard

__all__ = ["ToolGuard", "build_guard", "__version__"]
