"""
ToolGuard: one place that decides whether an agent tool call may proceed.

A command or file access passes three gates in order: the sandbox, the
skill's capability grants, then the tool's mode. The first denial wins and
is written to the audit log as a security violation.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from agent_guard import config
from agent_guard.security.approval import (
    create_cli_permission_callback,
    create_cli_tool_ask_callback,
)
from agent_guard.security.audit_log import AuditLog
from agent_guard.security.base import GuardDecision, Permission, SanitizationResult
from agent_guard.security.command_parser import CommandParser
from agent_guard.security.config import SandboxConfig
from agent_guard.security.errors import PromptInjectionError
from agent_guard.security.input_sanitizer import DEFAULT_MAX_LENGTH, InputSanitizer
from agent_guard.security.permissions import PermissionManager
from agent_guard.security.sandbox import Sandbox

logger = logging.getLogger(__name__)

FILE_OPERATIONS = ("read", "write", "delete")
INPUT_KINDS = ("general", "title", "body")


class ToolGuard:
    """Owns one of each security component and runs the authorization flow."""

    def __init__(
        self,
        parser: Optional[CommandParser] = None,
        sandbox: Optional[Sandbox] = None,
        permissions: Optional[PermissionManager] = None,
        sanitizer: Optional[InputSanitizer] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.parser = parser or (sandbox.parser if sandbox else CommandParser())
        self.sandbox = sandbox or Sandbox(parser=self.parser)
        self.permissions = permissions or PermissionManager()
        self.sanitizer = sanitizer or InputSanitizer()
        self.audit_log = audit_log or AuditLog()

    async def _deny(
        self, skill_name: str, action: str, reason: str, decision: GuardDecision, **details
    ) -> GuardDecision:
        await self.audit_log.log_security_violation(
            action, {"reason": reason, **details}, skill_name=skill_name
        )
        return decision

    async def authorize_command(
        self, skill_name: str, command: str, tool: str = "bash"
    ) -> GuardDecision:
        """
        Decide whether ``skill_name`` may run ``command`` through ``tool``.

        Args:
            skill_name: The skill asking to run the command
            command: The raw command line
            tool: The tool the command runs through

        Returns:
            GuardDecision with the risk findings from analysis
        """
        check = self.sandbox.check_command(command)
        if not check.allowed:
            reason = check.reason or "Command blocked by sandbox"
            return await self._deny(
                skill_name,
                "shell:execute",
                reason,
                GuardDecision(allowed=False, reason=reason, risks=check.risks),
                command=command,
            )

        granted = await self.permissions.request_permissions(
            skill_name, [Permission.SHELL_EXECUTE], reason=f"Run command: {command}"
        )
        if not granted:
            reason = f"Permission denied: {Permission.SHELL_EXECUTE}"
            return await self._deny(
                skill_name,
                "shell:execute",
                reason,
                GuardDecision(allowed=False, reason=reason, risks=check.risks),
                command=command,
            )

        tool_result = await self.permissions.check_tool_permission(tool, reason=command)
        if not tool_result.allowed:
            reason = tool_result.reason or f"Tool '{tool}' is not allowed"
            return await self._deny(
                skill_name,
                "shell:execute",
                reason,
                GuardDecision(allowed=False, reason=reason, risks=check.risks),
                command=command,
                tool=tool,
            )

        await self.audit_log.log_command_execution(
            command, True, details={"tool": tool}, skill_name=skill_name
        )
        return GuardDecision(allowed=True, risks=check.risks)

    async def authorize_file(
        self,
        skill_name: str,
        operation: str,
        path: str,
        tool: Optional[str] = None,
    ) -> GuardDecision:
        """
        Decide whether ``skill_name`` may read, write or delete ``path``.

        The tool mode is only consulted when ``tool`` is given.
        """
        if operation not in FILE_OPERATIONS:
            raise ValueError(f"Invalid file operation: {operation}")
        action = f"file:{operation}"

        check = self.sandbox.check_path(path)
        if not check.allowed:
            reason = check.reason or "Path blocked by sandbox"
            return await self._deny(
                skill_name, action, reason, GuardDecision(allowed=False, reason=reason), path=path
            )

        if not await self.permissions.request_permissions(
            skill_name, [action], reason=f"{operation.capitalize()} {path}"
        ):
            reason = f"Permission denied: {action}"
            return await self._deny(
                skill_name, action, reason, GuardDecision(allowed=False, reason=reason), path=path
            )

        if tool is not None:
            tool_result = await self.permissions.check_tool_permission(tool, reason=path)
            if not tool_result.allowed:
                reason = tool_result.reason or f"Tool '{tool}' is not allowed"
                return await self._deny(
                    skill_name,
                    action,
                    reason,
                    GuardDecision(allowed=False, reason=reason),
                    path=path,
                    tool=tool,
                )

        await self.audit_log.log_file_operation(operation, path, True, skill_name=skill_name)
        return GuardDecision(allowed=True)

    async def sanitize_inbound(
        self, text: str, kind: str = "general", skill_name: Optional[str] = None
    ) -> SanitizationResult:
        """
        Sanitize untrusted text and audit any detected injection patterns.

        Raises:
            PromptInjectionError: When the sanitizer is in ``throw`` mode
        """
        if kind not in INPUT_KINDS:
            raise ValueError(f"Invalid input kind: {kind}")

        sanitize = {
            "general": self.sanitizer.sanitize,
            "title": self.sanitizer.sanitize_title,
            "body": self.sanitizer.sanitize_body,
        }[kind]

        try:
            result = sanitize(text)
        except PromptInjectionError as e:
            await self.audit_log.log_security_violation(
                "input:sanitize",
                {"kind": kind, "pattern": e.pattern_name},
                skill_name=skill_name,
            )
            raise

        if result.detected_patterns:
            await self.audit_log.log(
                "security:injection",
                False,
                skill_name=skill_name,
                details={
                    "kind": kind,
                    "patterns": result.detected_patterns,
                    "mode": self.sanitizer.mode,
                },
            )
        return result


def build_guard(
    config_dir: Optional[Path] = None,
    interactive: bool = False,
    console: Optional[Console] = None,
) -> ToolGuard:
    """
    Build a ToolGuard from guard.cfg and sandbox_config.json.

    Args:
        config_dir: Directory holding sandbox_config.json (CONFIG_DIR if None)
        interactive: Attach terminal prompts for permission and tool asks
        console: Console used for those prompts

    Returns:
        A ready ToolGuard
    """
    sandbox_config = SandboxConfig.load(config_dir)
    if not config.get_sandbox_enabled():
        sandbox_config = sandbox_config.model_copy(update={"enabled": False})

    parser = CommandParser()
    sandbox = Sandbox(sandbox_config, parser=parser)

    permissions = PermissionManager()
    for tool, mode in config.get_default_tool_modes().items():
        permissions.set_tool_mode(tool, mode)

    if interactive:
        console = console or Console()
        permissions.set_permission_callback(create_cli_permission_callback(console))
        permissions.set_tool_ask_callback(create_cli_tool_ask_callback(console))

    sanitizer = InputSanitizer(
        max_length=config.get_sanitizer_max_length() or DEFAULT_MAX_LENGTH,
        mode=config.get_sanitizer_mode(),
    )
    audit_log = AuditLog(max_entries=config.get_audit_max_entries())

    logger.debug(
        f"Guard built (sandbox={'on' if sandbox.is_enabled() else 'off'}, "
        f"sanitizer={sanitizer.mode})"
    )
    return ToolGuard(
        parser=parser,
        sandbox=sandbox,
        permissions=permissions,
        sanitizer=sanitizer,
        audit_log=audit_log,
    )
