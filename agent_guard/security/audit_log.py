"""
In-memory audit trail of security-relevant actions.

Entries live in a bounded ring buffer; the oldest are dropped first. A
persistence callback and any number of subscribers are notified after each
entry is recorded. Their failures are logged and never reach the caller.
"""

import inspect
import json
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from .base import AuditEntry, AuditStats, _as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_QUERY_LIMIT = 100

PersistCallback = Callable[[AuditEntry], Awaitable[None]]
EntryCallback = Callable[[AuditEntry], Union[None, Awaitable[None]]]


def _tail(entries: list[AuditEntry], limit: int) -> list[AuditEntry]:
    if limit <= 0:
        return []
    return entries[-limit:]


class AuditLog:
    """Bounded, append-only record of actions and their outcome."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        self._subscribers: list[EntryCallback] = []
        self._persist_callback: Optional[PersistCallback] = None

    def set_persist_callback(self, callback: Optional[PersistCallback]):
        self._persist_callback = callback

    def on_entry(self, callback: EntryCallback) -> Callable[[], None]:
        """
        Subscribe to new entries.

        Args:
            callback: Called with each new entry; may be sync or async

        Returns:
            A function that removes this subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def log(
        self,
        action: str,
        success: bool,
        *,
        skill_name: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Record an entry, then notify persistence and subscribers."""
        entry = AuditEntry(
            timestamp=utcnow(),
            action=action,
            success=success,
            skill_name=skill_name,
            user_id=user_id,
            details=details,
        )
        # Appended before any await so entries keep call order
        self._entries.append(entry)

        if self._persist_callback is not None:
            try:
                await self._persist_callback(entry)
            except Exception as e:
                logger.error(f"Failed to persist audit entry {action}: {e}", exc_info=True)

        for callback in list(self._subscribers):
            try:
                result = callback(entry)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Audit subscriber failed for {action}: {e}", exc_info=True)

        if success:
            logger.debug(f"Audit: {action} (skill={skill_name})")
        else:
            logger.warning(f"Audit: {action} failed (skill={skill_name}, details={details})")

        return entry

    async def log_skill_execution(
        self,
        skill_name: str,
        success: bool,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        return await self.log(
            "skill:execute", success, skill_name=skill_name, details=details
        )

    async def log_file_operation(
        self,
        operation: str,
        path: str,
        success: bool,
        details: Optional[dict[str, Any]] = None,
        skill_name: Optional[str] = None,
    ) -> AuditEntry:
        """Record a file access; ``operation`` is read, write or delete."""
        return await self.log(
            f"file:{operation}",
            success,
            skill_name=skill_name,
            details={"path": path, **(details or {})},
        )

    async def log_command_execution(
        self,
        command: str,
        success: bool,
        details: Optional[dict[str, Any]] = None,
        skill_name: Optional[str] = None,
    ) -> AuditEntry:
        return await self.log(
            "shell:execute",
            success,
            skill_name=skill_name,
            details={"command": command, **(details or {})},
        )

    async def log_permission_change(
        self, skill_name: str, permission: str, granted: bool
    ) -> AuditEntry:
        return await self.log(
            "permission:grant" if granted else "permission:revoke",
            True,
            skill_name=skill_name,
            details={"permission": permission},
        )

    async def log_security_violation(
        self,
        action: str,
        details: Optional[dict[str, Any]] = None,
        skill_name: Optional[str] = None,
    ) -> AuditEntry:
        """Record a denied or rejected action as ``security:violation``."""
        entry = await self.log(
            "security:violation",
            False,
            skill_name=skill_name,
            details={"attempted_action": action, **(details or {})},
        )
        logger.warning(f"Security violation: {action} (skill={skill_name})")
        return entry

    def get_recent(self, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        return _tail(list(self._entries), limit)

    def get_by_action(self, action: str, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        return _tail([e for e in self._entries if e.action == action], limit)

    def get_by_skill(self, skill_name: str, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        return _tail([e for e in self._entries if e.skill_name == skill_name], limit)

    def get_failed(self, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        return _tail([e for e in self._entries if not e.success], limit)

    def get_by_time_range(self, start: datetime, end: datetime) -> list[AuditEntry]:
        """Entries with ``start <= timestamp <= end``. Naive bounds are taken as UTC."""
        start, end = _as_utc(start), _as_utc(end)
        return [e for e in self._entries if start <= e.timestamp <= end]

    def get_stats(self) -> AuditStats:
        stats = AuditStats(total=len(self._entries))
        for entry in self._entries:
            if entry.success:
                stats.successful += 1
            else:
                stats.failed += 1
            stats.by_action[entry.action] = stats.by_action.get(entry.action, 0) + 1
        return stats

    def get_count(self) -> int:
        return len(self._entries)

    def clear(self):
        self._entries.clear()

    def export_json(self) -> str:
        """Serialize all entries, oldest first, as a JSON array."""
        return json.dumps(
            [e.model_dump(mode="json") for e in self._entries], indent=2
        )
