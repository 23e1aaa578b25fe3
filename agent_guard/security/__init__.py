"""
Security core for agent tool calls.

Provides:
- Command parsing and risk classification for shell command lines
- A sandbox gate for file paths and commands
- Capability grants per skill and allow/deny/ask modes per tool
- Prompt-injection screening for untrusted text
- A bounded audit log with persistence and subscriber hooks
"""

from .audit_log import AuditLog
from .base import (
    AuditEntry,
    CommandAnalysis,
    CommandNode,
    Permission,
    PermissionGrant,
    PermissionRequest,
    RiskFinding,
    ToolPermissionResult,
    ToolRule,
)
from .command_parser import CommandParser
from .config import SandboxConfig
from .errors import PromptInjectionError
from .input_sanitizer import InputSanitizer, check_input_safety, sanitize_input
from .permissions import PermissionManager
from .sandbox import Sandbox

__all__ = [
    "AuditEntry",
    "AuditLog",
    "CommandAnalysis",
    "CommandNode",
    "CommandParser",
    "InputSanitizer",
    "Permission",
    "PermissionGrant",
    "PermissionManager",
    "PermissionRequest",
    "PromptInjectionError",
    "RiskFinding",
    "Sandbox",
    "SandboxConfig",
    "ToolPermissionResult",
    "ToolRule",
    "check_input_safety",
    "sanitize_input",
]
