"""
Permission manager.

Two independent models live here and are never mixed:

- Capability grants: a permission such as ``shell:execute`` extended to one
  named skill, optionally until an expiry time. Global grants apply to
  every skill and never expire.
- Tool modes: a per-tool ``allow``/``deny``/``ask`` policy. An ``ask`` is
  resolved once through a callback and the answer is cached for the tool.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .base import (
    TOOL_MODES,
    PermissionGrant,
    PermissionRequest,
    ToolPermissionResult,
    ToolRule,
    utcnow,
)

logger = logging.getLogger(__name__)

PermissionCallback = Callable[[PermissionRequest], Awaitable[bool]]
ToolAskCallback = Callable[[str, Optional[str]], Awaitable[bool]]

DEFAULT_TOOL_MODE = "ask"


class PermissionManager:
    """Tracks skill capability grants and per-tool modes."""

    def __init__(
        self,
        permission_callback: Optional[PermissionCallback] = None,
        tool_ask_callback: Optional[ToolAskCallback] = None,
    ):
        """
        Initialize the permission manager.

        Args:
            permission_callback: Async function asked to approve missing
                capabilities. Receives a PermissionRequest, returns bool.
            tool_ask_callback: Async function asked about tools in ``ask``
                mode. Receives (tool, reason), returns bool.
        """
        self._grants: dict[str, list[PermissionGrant]] = {}
        self._global_grants: dict[str, None] = {}
        self._permission_callback = permission_callback

        self._tool_modes: dict[str, str] = {}
        self._tool_decisions: dict[str, bool] = {}
        self._pending_tool_asks: dict[str, asyncio.Future] = {}
        # Bumped whenever a tool's policy or cached answer is reset
        self._tool_generations: dict[str, int] = {}
        self._tool_ask_callback = tool_ask_callback

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    # Capability grants

    def set_permission_callback(self, callback: Optional[PermissionCallback]):
        self._permission_callback = callback

    def grant(
        self,
        skill_name: str,
        permission: str,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
    ):
        """Grant ``permission`` to a skill. Re-granting a live grant is a no-op."""
        if not permission:
            raise ValueError("Permission must be a non-empty string")

        key = self._key(skill_name)
        existing = self._grants.get(key, [])
        current = next((g for g in existing if g.permission == permission), None)
        if current is not None and not current.is_expired():
            return

        grant = PermissionGrant(
            permission=permission,
            skill_name=skill_name,
            granted_by=granted_by,
            expires_at=expires_at,
        )
        self._grants[key] = [g for g in existing if g.permission != permission] + [grant]
        logger.debug(f"Permission granted: {permission} -> {skill_name}")

    def grant_many(
        self,
        skill_name: str,
        permissions: Iterable[str],
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
    ):
        for permission in permissions:
            self.grant(skill_name, permission, expires_at=expires_at, granted_by=granted_by)

    def revoke(self, skill_name: str, permission: str):
        key = self._key(skill_name)
        remaining = [g for g in self._grants.get(key, []) if g.permission != permission]
        if remaining:
            self._grants[key] = remaining
        else:
            self._grants.pop(key, None)
        logger.debug(f"Permission revoked: {permission} <- {skill_name}")

    def revoke_all(self, skill_name: str):
        self._grants.pop(self._key(skill_name), None)
        logger.debug(f"All permissions revoked for {skill_name}")

    def has_permission(self, skill_name: str, permission: str) -> bool:
        """
        Check whether a skill holds a permission.

        Global grants win. An expired skill grant is revoked as a side
        effect and reported as absent.
        """
        if permission in self._global_grants:
            return True

        grants = self._grants.get(self._key(skill_name), [])
        grant = next((g for g in grants if g.permission == permission), None)
        if grant is None:
            return False

        if grant.is_expired():
            logger.info(f"Permission {permission} for {skill_name} expired, revoking")
            self.revoke(skill_name, permission)
            return False

        return True

    def has_all_permissions(self, skill_name: str, permissions: Iterable[str]) -> bool:
        return all(self.has_permission(skill_name, p) for p in permissions)

    def get_permissions(self, skill_name: str) -> list[str]:
        """Global permissions plus the skill's unexpired grants."""
        now = utcnow()
        valid = [
            g.permission
            for g in self._grants.get(self._key(skill_name), [])
            if not g.is_expired(now)
        ]
        return list(dict.fromkeys([*self._global_grants, *valid]))

    async def request_permissions(
        self,
        skill_name: str,
        permissions: Iterable[str],
        reason: Optional[str] = None,
    ) -> bool:
        """
        Make sure a skill holds every permission, asking for the missing ones.

        Args:
            skill_name: The requesting skill
            permissions: Permissions it needs
            reason: Shown to the user by the callback

        Returns:
            True if all permissions are held afterwards. With no callback
            registered, missing permissions are denied.
        """
        permissions = list(permissions)
        missing = [p for p in permissions if not self.has_permission(skill_name, p)]
        if not missing:
            return True

        if self._permission_callback is None:
            logger.warning(
                f"Permission request denied (no callback): {skill_name} -> {missing}"
            )
            return False

        request = PermissionRequest(skill_name=skill_name, permissions=missing, reason=reason)
        try:
            granted = bool(await self._permission_callback(request))
        except Exception as e:
            logger.error(f"Error in permission callback for {skill_name}: {e}")
            return False

        if granted:
            self.grant_many(skill_name, missing, granted_by="user")
            logger.info(f"Permissions granted by user: {skill_name} -> {missing}")
        else:
            logger.info(f"Permissions denied by user: {skill_name} -> {missing}")
        return granted

    def grant_global(self, permission: str):
        self._global_grants[permission] = None
        logger.debug(f"Global permission granted: {permission}")

    def revoke_global(self, permission: str):
        self._global_grants.pop(permission, None)
        logger.debug(f"Global permission revoked: {permission}")

    def get_global_permissions(self) -> list[str]:
        return list(self._global_grants)

    def clear_all(self):
        """Drop every skill grant and global grant. Tool modes are kept."""
        self._grants.clear()
        self._global_grants.clear()

    def export_grants(self) -> dict[str, list[dict[str, Any]]]:
        """Export skill grants as JSON-safe data, expired ones included."""
        return {
            key: [g.model_dump(mode="json") for g in grants]
            for key, grants in self._grants.items()
        }

    def import_grants(self, data: dict[str, list[dict[str, Any]]]):
        """
        Restore grants produced by ``export_grants``.

        Expiry is not evaluated here; it is applied by the next
        ``has_permission`` call.
        """
        for key, grants in data.items():
            self._grants[self._key(key)] = [PermissionGrant.model_validate(g) for g in grants]

    # Tool modes

    def set_tool_ask_callback(self, callback: Optional[ToolAskCallback]):
        self._tool_ask_callback = callback

    def set_tool_mode(self, tool: str, mode: str):
        """
        Set the policy for a tool.

        Args:
            tool: Tool name (case-insensitive)
            mode: "allow", "deny" or "ask"
        """
        if mode not in TOOL_MODES:
            raise ValueError(f"Invalid tool mode: {mode}")
        key = self._key(tool)
        self._tool_modes[key] = mode
        # A new policy invalidates any earlier or in-flight answer
        self._invalidate_tool_decision(key)
        logger.debug(f"Tool mode set: {tool} -> {mode}")

    def set_tool_modes(self, rules: Iterable[Union[ToolRule, dict]]):
        for rule in rules:
            if isinstance(rule, dict):
                rule = ToolRule.model_validate(rule)
            self.set_tool_mode(rule.tool, rule.mode)

    def get_tool_mode(self, tool: str) -> str:
        return self._tool_modes.get(self._key(tool), DEFAULT_TOOL_MODE)

    def get_tool_rules(self) -> list[ToolRule]:
        return [ToolRule(tool=tool, mode=mode) for tool, mode in self._tool_modes.items()]

    def is_tool_allowed(self, tool: str) -> bool:
        """Non-prompting check: True only for tools in ``allow`` mode."""
        return self.get_tool_mode(tool) == "allow"

    def reset_tool_decision(self, tool: Optional[str] = None):
        """Forget cached ask answers for one tool, or for all tools."""
        if tool is None:
            keys = list({*self._tool_decisions, *self._pending_tool_asks})
        else:
            keys = [self._key(tool)]
        for key in keys:
            self._invalidate_tool_decision(key)

    def _invalidate_tool_decision(self, key: str):
        self._tool_decisions.pop(key, None)
        # Later callers start a fresh ask instead of joining a stale one
        self._pending_tool_asks.pop(key, None)
        self._tool_generations[key] = self._tool_generations.get(key, 0) + 1

    async def check_tool_permission(
        self, tool: str, reason: Optional[str] = None
    ) -> ToolPermissionResult:
        """
        Resolve whether a tool may run.

        ``ask`` mode calls the ask callback at most once per tool: the answer
        is cached, and concurrent first-time callers share one prompt.
        """
        key = self._key(tool)
        mode = self.get_tool_mode(key)

        if mode == "allow":
            return ToolPermissionResult(allowed=True, mode="allow")

        if mode == "deny":
            return ToolPermissionResult(
                allowed=False,
                mode="deny",
                reason=f"Tool '{tool}' is denied by policy",
            )

        if key in self._tool_decisions:
            allowed = self._tool_decisions[key]
            return ToolPermissionResult(
                allowed=allowed,
                mode="ask",
                reason=None if allowed else f"Tool '{tool}' was denied by the user",
            )

        allowed = await self._resolve_tool_ask(key, tool, reason)
        current = self.get_tool_mode(key)
        if current != "ask":
            # The policy changed while the prompt was open
            return await self.check_tool_permission(tool, reason)
        if allowed:
            return ToolPermissionResult(allowed=True, mode="ask", should_ask=True)
        if self._tool_ask_callback is None:
            denial = f"Tool '{tool}' requires approval and no prompt is available"
        else:
            denial = f"Tool '{tool}' was denied by the user"
        return ToolPermissionResult(allowed=False, mode="ask", reason=denial, should_ask=True)

    async def _resolve_tool_ask(self, key: str, tool: str, reason: Optional[str]) -> bool:
        # Someone is already asking about this tool; share their answer
        pending = self._pending_tool_asks.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        if self._tool_ask_callback is None:
            logger.warning(f"Tool '{tool}' needs approval but no ask callback is set, denying")
            return False

        future = asyncio.get_running_loop().create_future()
        self._pending_tool_asks[key] = future
        generation = self._tool_generations.get(key, 0)

        allowed = False
        try:
            allowed = bool(await self._tool_ask_callback(tool, reason))
            if self._tool_generations.get(key, 0) == generation:
                self._tool_decisions[key] = allowed
            else:
                logger.debug(f"Tool '{tool}' was reset during the prompt, answer not cached")
            logger.info(f"Tool '{tool}' {'approved' if allowed else 'denied'} by user")
        except Exception as e:
            logger.error(f"Error in tool ask callback for '{tool}': {e}")
        finally:
            if self._pending_tool_asks.get(key) is future:
                del self._pending_tool_asks[key]
            if not future.done():
                future.set_result(allowed)
        return allowed

    def export_tool_grants(self) -> dict[str, str]:
        return dict(self._tool_modes)

    def import_tool_grants(self, data: dict[str, str]):
        for tool, mode in data.items():
            self.set_tool_mode(tool, mode)
