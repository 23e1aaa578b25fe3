"""
Data models shared by the security components.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RiskLevel = Literal["critical", "high", "medium"]
ToolMode = Literal["allow", "deny", "ask"]
SanitizeMode = Literal["redact", "remove", "throw"]

# Ordinal severity; only the first two block a command.
RISK_SEVERITY: dict[str, int] = {"medium": 1, "high": 2, "critical": 3}
BLOCKING_LEVELS = ("critical", "high")
TOOL_MODES = ("allow", "deny", "ask")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes (e.g. from an older export) are taken to be UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Permission:
    """Capability names understood by the rest of the system."""

    FILE_READ = "file:read"
    FILE_WRITE = "file:write"
    FILE_DELETE = "file:delete"
    SHELL_EXECUTE = "shell:execute"
    NETWORK_HTTP = "network:http"
    NETWORK_WEBSOCKET = "network:websocket"
    SYSTEM_CLIPBOARD = "system:clipboard"
    SYSTEM_NOTIFICATION = "system:notification"
    SYSTEM_PROCESS = "system:process"

    ALL = (
        FILE_READ,
        FILE_WRITE,
        FILE_DELETE,
        SHELL_EXECUTE,
        NETWORK_HTTP,
        NETWORK_WEBSOCKET,
        SYSTEM_CLIPBOARD,
        SYSTEM_NOTIFICATION,
        SYSTEM_PROCESS,
    )


class CommandNode(BaseModel):
    """One parsed shell statement.

    Attributes:
        name: The command word (or a substitution token in head position).
        args: Non-flag tokens after the name.
        flags: Tokens starting with ``-``.
        pipes: Commands this one pipes into, recursively structured.
        redirects: Redirection targets, kept apart from ``args``.
    """

    name: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    flags: list[str] = Field(default_factory=list)
    pipes: list["CommandNode"] = Field(default_factory=list)
    redirects: list[str] = Field(default_factory=list)


CommandNode.model_rebuild()


class RiskFinding(BaseModel):
    """A categorical severity judgment produced by a risk rule."""

    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    description: str

    @property
    def severity(self) -> int:
        return RISK_SEVERITY[self.level]

    @property
    def is_blocking(self) -> bool:
        return self.level in BLOCKING_LEVELS


class CommandAnalysis(BaseModel):
    """Result of running the risk rules over a command line."""

    allowed: bool
    commands: list[CommandNode] = Field(default_factory=list)
    risks: list[RiskFinding] = Field(default_factory=list)

    @property
    def blocking_risks(self) -> list[RiskFinding]:
        return [r for r in self.risks if r.is_blocking]

    @property
    def max_level(self) -> Optional[str]:
        if not self.risks:
            return None
        return max(self.risks, key=lambda r: r.severity).level


class PathCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class CommandCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    sanitized_command: Optional[str] = None
    # Advisory (medium) findings are surfaced even when allowed
    risks: list[RiskFinding] = Field(default_factory=list)


class PermissionGrant(BaseModel):
    """A capability extended to one named skill."""

    permission: str
    skill_name: str
    granted_at: datetime = Field(default_factory=utcnow)
    granted_by: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("granted_at", "expires_at")
    @classmethod
    def _normalize_tz(cls, value):
        return _as_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())


class PermissionRequest(BaseModel):
    """What an interactive permission callback is asked to approve."""

    skill_name: str
    permissions: list[str]
    reason: Optional[str] = None


class ToolRule(BaseModel):
    tool: str
    mode: ToolMode


class ToolPermissionResult(BaseModel):
    allowed: bool
    mode: ToolMode
    reason: Optional[str] = None
    should_ask: bool = False


class AuditEntry(BaseModel):
    """One immutable audit record."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    action: str
    success: bool
    skill_name: Optional[str] = None
    user_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class AuditStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_action: dict[str, int] = Field(default_factory=dict)


class SanitizationResult(BaseModel):
    is_clean: bool
    sanitized_input: str
    detected_patterns: list[str] = Field(default_factory=list)
    was_truncated: bool = False


class SafetyCheck(BaseModel):
    is_safe: bool
    detected_patterns: list[str] = Field(default_factory=list)


class GuardDecision(BaseModel):
    """Final yes/no for a tool call, as returned by ToolGuard."""

    allowed: bool
    reason: Optional[str] = None
    risks: list[RiskFinding] = Field(default_factory=list)
