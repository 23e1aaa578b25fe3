"""Tests for the audit log."""

import json
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from agent_guard.security.audit_log import AuditLog
from agent_guard.security.base import utcnow


class TestAuditLog(unittest.IsolatedAsyncioTestCase):
    """Test cases for AuditLog."""

    def setUp(self):
        self.audit = AuditLog()

    async def test_log_returns_entry(self):
        entry = await self.audit.log("skill:execute", True, skill_name="notes", user_id="u1")
        self.assertEqual(entry.action, "skill:execute")
        self.assertTrue(entry.success)
        self.assertEqual(entry.user_id, "u1")
        self.assertIsNotNone(entry.timestamp.tzinfo)
        self.assertEqual(self.audit.get_count(), 1)

    async def test_trims_oldest_first(self):
        """Test that only the newest max_entries are kept, in order."""
        audit = AuditLog(max_entries=10)
        for i in range(15):
            await audit.log(f"action-{i}", True)

        entries = audit.get_recent()
        self.assertEqual(audit.get_count(), 10)
        self.assertEqual(entries[0].action, "action-5")
        self.assertEqual(entries[-1].action, "action-14")

    async def test_invalid_max_entries(self):
        with self.assertRaises(ValueError):
            AuditLog(max_entries=0)

    async def test_wrappers(self):
        await self.audit.log_skill_execution("notes", True, {"duration_ms": 12})
        await self.audit.log_file_operation("write", "/tmp/a.txt", False, {"size": 3})
        await self.audit.log_command_execution("ls -la", True)
        await self.audit.log_permission_change("notes", "file:read", granted=False)
        await self.audit.log_security_violation("shell:execute", {"command": "rm -rf /"}, skill_name="bad")

        actions = [e.action for e in self.audit.get_recent()]
        self.assertEqual(
            actions,
            ["skill:execute", "file:write", "shell:execute", "permission:revoke", "security:violation"],
        )

        file_entry = self.audit.get_by_action("file:write")[0]
        self.assertEqual(file_entry.details, {"path": "/tmp/a.txt", "size": 3})

        command_entry = self.audit.get_by_action("shell:execute")[0]
        self.assertEqual(command_entry.details["command"], "ls -la")

        violation = self.audit.get_by_action("security:violation")[0]
        self.assertFalse(violation.success)
        self.assertEqual(violation.skill_name, "bad")
        self.assertEqual(violation.details["attempted_action"], "shell:execute")
        self.assertEqual(violation.details["command"], "rm -rf /")

    async def test_queries(self):
        await self.audit.log("a", True, skill_name="one")
        await self.audit.log("b", False, skill_name="two")
        await self.audit.log("a", False, skill_name="one")

        self.assertEqual(len(self.audit.get_by_action("a")), 2)
        self.assertEqual(len(self.audit.get_by_skill("one")), 2)
        self.assertEqual([e.action for e in self.audit.get_failed()], ["b", "a"])
        self.assertEqual([e.action for e in self.audit.get_recent(2)], ["b", "a"])
        self.assertEqual(self.audit.get_recent(0), [])
        self.assertEqual(len(self.audit.get_by_action("a", limit=1)), 1)

    async def test_time_range_is_inclusive(self):
        entry = await self.audit.log("a", True)
        self.assertEqual(self.audit.get_by_time_range(entry.timestamp, entry.timestamp), [entry])

        later = utcnow() + timedelta(hours=1)
        self.assertEqual(self.audit.get_by_time_range(later, later + timedelta(hours=1)), [])

    async def test_stats(self):
        await self.audit.log("a", True)
        await self.audit.log("a", False)
        await self.audit.log("b", True)

        stats = self.audit.get_stats()
        self.assertEqual(stats.total, 3)
        self.assertEqual(stats.successful, 2)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.by_action, {"a": 2, "b": 1})

    async def test_clear(self):
        await self.audit.log("a", True)
        self.audit.clear()
        self.assertEqual(self.audit.get_count(), 0)

    async def test_export_json(self):
        await self.audit.log("a", True, details={"k": "v"})
        data = json.loads(self.audit.export_json())
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]["action"], "a")
        self.assertEqual(data[0]["details"], {"k": "v"})
        self.assertIsInstance(data[0]["timestamp"], str)

    async def test_persist_callback(self):
        persist = AsyncMock()
        self.audit.set_persist_callback(persist)
        entry = await self.audit.log("a", True)
        persist.assert_awaited_once_with(entry)

    async def test_persist_failure_is_isolated(self):
        """Test that a failing persist callback does not stop subscribers."""
        self.audit.set_persist_callback(AsyncMock(side_effect=OSError("disk full")))
        subscriber = MagicMock(return_value=None)
        self.audit.on_entry(subscriber)

        with self.assertLogs("agent_guard.security.audit_log", level="ERROR"):
            entry = await self.audit.log("a", True)

        subscriber.assert_called_once_with(entry)
        self.assertEqual(self.audit.get_count(), 1)

    async def test_subscribers_sync_and_async(self):
        broken = MagicMock(side_effect=RuntimeError("boom"))
        sync_sub = MagicMock(return_value=None)
        async_sub = AsyncMock()
        self.audit.on_entry(broken)
        self.audit.on_entry(sync_sub)
        unsubscribe = self.audit.on_entry(async_sub)

        with self.assertLogs("agent_guard.security.audit_log", level="ERROR"):
            await self.audit.log("a", True)

        sync_sub.assert_called_once()
        async_sub.assert_awaited_once()

        unsubscribe()
        unsubscribe()
        await self.audit.log("b", True)
        async_sub.assert_awaited_once()
        self.assertEqual(sync_sub.call_count, 2)


if __name__ == "__main__":
    unittest.main()
