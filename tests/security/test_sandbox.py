"""Tests for the sandbox gate."""

import os
import shutil
import tempfile
import unittest

from agent_guard.security.config import SandboxConfig
from agent_guard.security.sandbox import DEFAULT_BLOCKED_PATHS, Sandbox


class TestSandboxPaths(unittest.TestCase):
    """Test cases for Sandbox.check_path."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.sandbox = Sandbox(SandboxConfig(allowed_paths=[self.temp_dir]))

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_ssh_key_blocked(self):
        """Test that a private key under .ssh is blocked with a reason."""
        result = self.sandbox.check_path("/home/u/.ssh/id_rsa")
        self.assertFalse(result.allowed)
        self.assertIn(".ssh", result.reason)

    def test_default_blocked_patterns(self):
        for path in ("/srv/app/.env", "/home/u/.aws/credentials", "repo/.git/config"):
            with self.subTest(path=path):
                self.assertFalse(self.sandbox.check_path(path).allowed)

    def test_blocked_pattern_is_case_insensitive(self):
        self.assertFalse(self.sandbox.check_path("/home/u/.SSH/config").allowed)

    def test_windows_separators(self):
        self.assertFalse(self.sandbox.check_path("C:\\Users\\u\\.aws\\credentials").allowed)

    def test_allowed_root(self):
        path = os.path.join(self.temp_dir, "notes.txt")
        self.assertTrue(self.sandbox.check_path(path).allowed)

    def test_blocked_pattern_wins_inside_allowed_root(self):
        path = os.path.join(self.temp_dir, ".env")
        self.assertFalse(self.sandbox.check_path(path).allowed)

    def test_unlisted_path_allowed_in_broad_scope(self):
        """Test that paths outside every list are allowed by default."""
        self.assertTrue(self.sandbox.check_path("/opt/some/file.txt").allowed)

    def test_unlisted_path_denied_in_restricted_scope(self):
        sandbox = Sandbox(
            SandboxConfig(
                path_scope="restricted",
                allowed_paths=[self.temp_dir],
                include_default_allowed_paths=False,
            )
        )
        result = sandbox.check_path("/opt/some/file.txt")
        self.assertFalse(result.allowed)
        self.assertIn("allowed directories", result.reason)
        self.assertTrue(sandbox.check_path(os.path.join(self.temp_dir, "a.txt")).allowed)

    def test_allowed_root_prefix_is_not_a_match(self):
        """Test that /tmp/abc does not count as being under /tmp/ab."""
        sandbox = Sandbox(
            SandboxConfig(
                path_scope="restricted",
                allowed_paths=[self.temp_dir],
                include_default_allowed_paths=False,
            )
        )
        self.assertFalse(sandbox.check_path(self.temp_dir + "x/file").allowed)

    def test_check_path_is_idempotent(self):
        for path in ("/home/u/.ssh/id_rsa", "/opt/file", os.path.join(self.temp_dir, "f")):
            with self.subTest(path=path):
                self.assertEqual(self.sandbox.check_path(path), self.sandbox.check_path(path))

    def test_path_mutators(self):
        """Test allow_path, disallow_path and block_path."""
        other = tempfile.mkdtemp()
        try:
            self.sandbox.allow_path(other)
            self.assertIn(Sandbox._normalize_path(other), self.sandbox.get_allowed_paths())
            self.sandbox.disallow_path(other)
            self.assertNotIn(Sandbox._normalize_path(other), self.sandbox.get_allowed_paths())
        finally:
            shutil.rmtree(other, ignore_errors=True)

        self.sandbox.block_path("Secrets")
        self.assertIn("secrets", self.sandbox.get_blocked_paths())
        self.assertFalse(self.sandbox.check_path("/data/secrets/db.txt").allowed)

    def test_disabled_allows_everything(self):
        self.sandbox.set_enabled(False)
        self.assertFalse(self.sandbox.is_enabled())
        self.assertTrue(self.sandbox.check_path("/home/u/.ssh/id_rsa").allowed)

    def test_config_entries_extend_defaults(self):
        sandbox = Sandbox(SandboxConfig(blocked_paths=["private"]))
        blocked = sandbox.get_blocked_paths()
        self.assertIn("private", blocked)
        for pattern in DEFAULT_BLOCKED_PATHS:
            self.assertIn(pattern, blocked)


class TestSandboxCommands(unittest.TestCase):
    """Test cases for Sandbox.check_command."""

    def setUp(self):
        self.sandbox = Sandbox()

    def test_safe_command(self):
        result = self.sandbox.check_command("git status")
        self.assertTrue(result.allowed)
        self.assertEqual(result.sanitized_command, "git status")
        self.assertIsNone(result.reason)

    def test_empty_command(self):
        for command in ("", "   "):
            with self.subTest(command=command):
                result = self.sandbox.check_command(command)
                self.assertFalse(result.allowed)
                self.assertEqual(result.reason, "Command cannot be empty")

    def test_unparseable_command(self):
        result = self.sandbox.check_command(";;")
        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, "Command could not be parsed")

    def test_critical_risk_blocked(self):
        result = self.sandbox.check_command("rm -rf /")
        self.assertFalse(result.allowed)
        self.assertTrue(result.reason.startswith("Security risk:"))
        self.assertIn("critical", [r.level for r in result.risks])

    def test_blocked_command_substring(self):
        """Test that configured blocked commands are matched as substrings."""
        sandbox = Sandbox(SandboxConfig(blocked_commands=["shutdown"]))
        result = sandbox.check_command("sudo shutdown -h now")
        self.assertFalse(result.allowed)
        self.assertIn("shutdown", result.reason)

    def test_default_blocked_substring(self):
        result = self.sandbox.check_command("chown -R nobody /srv")
        self.assertFalse(result.allowed)
        self.assertIn("chown -R", result.reason)

    def test_newline_separated_rm_home_blocked(self):
        for command in ("true\nrm -fr ~", "ls\r\nrm -rf ~"):
            with self.subTest(command=command):
                result = self.sandbox.check_command(command)
                self.assertFalse(result.allowed)
                self.assertIn("critical", [r.level for r in result.risks])

    def test_fork_bomb_caught_by_fallback(self):
        result = self.sandbox.check_command(":(){ :|:& };:")
        self.assertFalse(result.allowed)

    def test_substitution_denied_by_fallback(self):
        """Test that analysis allows $(...) but the gate still denies it."""
        self.assertTrue(self.sandbox.parser.analyze("echo $(whoami)").allowed)
        result = self.sandbox.check_command("echo $(whoami)")
        self.assertFalse(result.allowed)
        self.assertEqual(result.reason, "Potential command injection detected")
        self.assertIn("medium", [r.level for r in result.risks])

    def test_chained_rm_denied_by_fallback(self):
        result = self.sandbox.check_command("ls; rm notes.txt")
        self.assertFalse(result.allowed)

    def test_disabled_allows_commands(self):
        self.sandbox.set_enabled(False)
        result = self.sandbox.check_command("rm -rf /")
        self.assertTrue(result.allowed)
        self.assertEqual(result.sanitized_command, "rm -rf /")

    def test_status(self):
        status = self.sandbox.get_status()
        self.assertTrue(status["enabled"])
        self.assertEqual(status["path_scope"], "broad")
        self.assertEqual(status["blocked_commands_count"], len(self.sandbox.get_blocked_commands()))


if __name__ == "__main__":
    unittest.main()
