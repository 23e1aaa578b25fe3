"""
Sandbox gate: decides whether a file path or shell command may be used.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from .base import CommandCheckResult, PathCheckResult
from .command_parser import CommandParser
from .config import SandboxConfig

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_PATHS = [
    ".ssh",
    ".env",
    "credentials",
    ".git/config",
    ".npmrc",
    ".pypirc",
    "id_rsa",
    "id_ed25519",
    ".aws/credentials",
    ".azure",
]

DEFAULT_BLOCKED_COMMANDS = [
    "rm -rf /",
    "rm -rf /*",
    "rm -rf ~",
    "rm -rf ~/*",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",
    "chmod -R 777 /",
    "chown -R",
    "> /dev/sda",
    "curl | bash",
    "curl | sh",
    "wget | bash",
    "wget | sh",
]

# Patterns the parser cannot see structurally (fork bombs, raw device writes)
DANGEROUS_PATTERNS = [
    re.compile(r"rm\s+(-[rf]+\s+)*/(?!\w)", re.IGNORECASE),
    re.compile(r">\s*/dev/[sh]d[a-z]", re.IGNORECASE),
    re.compile(r"mkfs\.", re.IGNORECASE),
    re.compile(r"dd\s+if=", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", re.IGNORECASE),
    re.compile(r"curl\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r"wget\s+.*\|\s*(ba)?sh", re.IGNORECASE),
    re.compile(r"eval\s*\$\(", re.IGNORECASE),
    re.compile(r"`.*`"),
]

INJECTION_PATTERNS = [
    re.compile(r";\s*rm\s", re.IGNORECASE),
    re.compile(r"&&\s*rm\s", re.IGNORECASE),
    re.compile(r"\|\|\s*rm\s", re.IGNORECASE),
    re.compile(r"[\r\n]\s*rm\s", re.IGNORECASE),
    re.compile(r"`[^`]*`"),
    re.compile(r"\$\([^)]*\)"),
]


def _default_allowed_roots() -> list[str]:
    home = Path.home()
    return [
        str(home / "Documents"),
        str(home / "Desktop"),
        str(home / "Downloads"),
        os.getcwd(),
    ]


class Sandbox:
    """
    Path and command gate.

    Paths are checked against blocked substrings first, then allowed roots.
    In the default "broad" scope a path that matches neither list is
    allowed; "restricted" scope denies it instead. Commands go through the
    risk classifier, then the blocked command substrings, then a regex
    fallback for patterns the parser does not model.
    """

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        parser: Optional[CommandParser] = None,
    ):
        """
        Initialize the sandbox gate.

        Args:
            config: Sandbox configuration (defaults if None)
            parser: Command parser used for risk analysis (creates one if None)
        """
        self.config = config or SandboxConfig()
        self.parser = parser or CommandParser()
        self._enabled = self.config.enabled
        self._path_scope = self.config.path_scope

        roots = _default_allowed_roots() if self.config.include_default_allowed_paths else []
        self._allowed_paths: dict[str, None] = {}
        for p in [*roots, *self.config.allowed_paths]:
            self._allowed_paths[self._normalize_path(p)] = None

        self._blocked_paths: dict[str, None] = {}
        for p in [*DEFAULT_BLOCKED_PATHS, *self.config.blocked_paths]:
            self._blocked_paths[p.lower()] = None

        self._blocked_commands = [*DEFAULT_BLOCKED_COMMANDS, *self.config.blocked_commands]

    @staticmethod
    def _normalize_path(path: str) -> str:
        return os.path.normcase(os.path.abspath(os.path.expanduser(path))).lower()

    def _is_under(self, normalized: str, root: str) -> bool:
        return normalized == root or normalized.startswith(root.rstrip(os.sep) + os.sep)

    def check_path(self, path: str) -> PathCheckResult:
        """
        Check whether a file path may be accessed.

        Args:
            path: The path to check (relative paths resolve against the cwd)

        Returns:
            PathCheckResult with a reason when denied
        """
        if not self._enabled:
            return PathCheckResult(allowed=True)

        raw = path.replace("\\", "/").lower()
        normalized = self._normalize_path(path)

        for pattern in self._blocked_paths:
            if pattern in raw:
                logger.warning(f"Path blocked: {path} (pattern: {pattern})")
                return PathCheckResult(
                    allowed=False,
                    reason=f"Path contains blocked pattern: {pattern}",
                )

        if any(self._is_under(normalized, root) for root in self._allowed_paths):
            return PathCheckResult(allowed=True)

        if self._path_scope == "restricted":
            logger.warning(f"Path not in allowed directories: {path}")
            return PathCheckResult(
                allowed=False,
                reason="Path is not within allowed directories",
            )

        logger.debug(f"Path outside allowed roots, allowed by default: {path}")
        return PathCheckResult(allowed=True)

    def check_command(self, command: str) -> CommandCheckResult:
        """
        Check whether a shell command may be run.

        Args:
            command: The raw command line

        Returns:
            CommandCheckResult; advisory findings are in ``risks`` either way
        """
        if not self._enabled:
            return CommandCheckResult(allowed=True, sanitized_command=command)

        if not command or not command.strip():
            return CommandCheckResult(allowed=False, reason="Command cannot be empty")

        analysis = self.parser.analyze(command)
        if not analysis.commands:
            logger.warning(f"Command could not be parsed: {command!r}")
            return CommandCheckResult(
                allowed=False,
                reason="Command could not be parsed",
                risks=analysis.risks,
            )

        if not analysis.allowed:
            reasons = [r.description for r in analysis.blocking_risks]
            logger.warning(f"Command blocked by risk analysis: {command!r} ({'; '.join(reasons)})")
            return CommandCheckResult(
                allowed=False,
                reason=f"Security risk: {'; '.join(reasons)}",
                risks=analysis.risks,
            )

        result = self._check_command_patterns(command)
        return result.model_copy(update={"risks": analysis.risks})

    def _check_command_patterns(self, command: str) -> CommandCheckResult:
        command_lower = command.lower().strip()

        for blocked in self._blocked_commands:
            if blocked.lower() in command_lower:
                logger.warning(f"Command blocked: {command!r} (pattern: {blocked})")
                return CommandCheckResult(
                    allowed=False,
                    reason=f"Command contains blocked pattern: {blocked}",
                )

        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(command):
                logger.warning(f"Command matches dangerous pattern: {command!r} ({pattern.pattern})")
                return CommandCheckResult(
                    allowed=False,
                    reason="Command matches a dangerous pattern",
                )

        for pattern in INJECTION_PATTERNS:
            if pattern.search(command):
                logger.warning(f"Potential command injection detected: {command!r}")
                return CommandCheckResult(
                    allowed=False,
                    reason="Potential command injection detected",
                )

        return CommandCheckResult(allowed=True, sanitized_command=command)

    def allow_path(self, path: str):
        """Add a directory to the allowed roots."""
        self._allowed_paths[self._normalize_path(path)] = None
        logger.debug(f"Added allowed path: {path}")

    def disallow_path(self, path: str):
        """Remove a directory from the allowed roots."""
        self._allowed_paths.pop(self._normalize_path(path), None)
        logger.debug(f"Removed allowed path: {path}")

    def block_path(self, pattern: str):
        """Add a blocked substring pattern."""
        self._blocked_paths[pattern.lower()] = None
        logger.debug(f"Added blocked path pattern: {pattern}")

    def set_enabled(self, enabled: bool):
        """Enable or disable the sandbox (disabling allows everything)."""
        self._enabled = enabled
        logger.info(f"Sandbox {'enabled' if enabled else 'disabled'}")

    def is_enabled(self) -> bool:
        return self._enabled

    def get_allowed_paths(self) -> list[str]:
        return list(self._allowed_paths)

    def get_blocked_paths(self) -> list[str]:
        return list(self._blocked_paths)

    def get_blocked_commands(self) -> list[str]:
        return list(self._blocked_commands)

    def get_status(self) -> dict:
        """
        Get the current state of the gate.

        Returns:
            Dictionary with status information
        """
        return {
            **self.config.get_status(),
            "enabled": self._enabled,
            "path_scope": self._path_scope,
            "allowed_paths": self.get_allowed_paths(),
            "blocked_paths": self.get_blocked_paths(),
            "blocked_commands_count": len(self._blocked_commands),
        }
