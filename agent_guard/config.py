import configparser
import os
from typing import Optional

CONFIG_DIR = os.getenv(
    "AGENT_GUARD_HOME",
    os.path.join(os.getenv("HOME", os.path.expanduser("~")), ".agent_guard"),
)
CONFIG_FILE = os.path.join(CONFIG_DIR, "guard.cfg")

DEFAULT_SECTION = "guard"

DEFAULT_AUDIT_MAX_ENTRIES = 10000
SANITIZER_MODES = ("redact", "remove", "throw")


def get_value(key: str) -> Optional[str]:
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    return config.get(DEFAULT_SECTION, key, fallback=None)


def set_config_value(key: str, value: str):
    """Set a key in guard.cfg, creating the file if needed."""
    config_dir = os.path.dirname(CONFIG_FILE)
    if config_dir:
        os.makedirs(config_dir, exist_ok=True)
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    if DEFAULT_SECTION not in config:
        config[DEFAULT_SECTION] = {}
    config[DEFAULT_SECTION][key] = value
    with open(CONFIG_FILE, "w") as f:
        config.write(f)


def get_config_keys():
    """Return the keys that are understood in the [guard] section."""
    return sorted(
        [
            "audit_max_entries",
            "sandbox_enabled",
            "sanitizer_max_length",
            "sanitizer_mode",
            "tool_modes",
        ]
    )


def _is_truthy(val: str) -> bool:
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def get_sandbox_enabled() -> bool:
    """Get whether the sandbox gate is enabled (on unless explicitly disabled)."""
    val = get_value("sandbox_enabled")
    if val is None:
        return True
    return _is_truthy(val)


def set_sandbox_enabled(enabled: bool):
    set_config_value("sandbox_enabled", "true" if enabled else "false")


def get_sanitizer_mode() -> str:
    """Get the input sanitizer mode; unknown values fall back to 'redact'."""
    val = (get_value("sanitizer_mode") or "redact").strip().lower()
    if val not in SANITIZER_MODES:
        return "redact"
    return val


def get_sanitizer_max_length() -> Optional[int]:
    val = get_value("sanitizer_max_length")
    if val is None:
        return None
    try:
        length = int(val)
    except ValueError:
        return None
    return length if length > 0 else None


def get_audit_max_entries() -> int:
    """
    Get the audit ring buffer size from guard.cfg.
    Falls back to 10000 when unset or invalid.
    """
    val = get_value("audit_max_entries")
    try:
        entries = int(val) if val is not None else DEFAULT_AUDIT_MAX_ENTRIES
    except ValueError:
        return DEFAULT_AUDIT_MAX_ENTRIES
    return entries if entries > 0 else DEFAULT_AUDIT_MAX_ENTRIES


def get_default_tool_modes() -> dict[str, str]:
    """
    Parse the ``tool_modes`` key, e.g. ``bash=ask, file_read=allow``.
    Entries with an unknown mode are skipped.
    """
    val = get_value("tool_modes")
    modes: dict[str, str] = {}
    if not val:
        return modes
    for item in val.split(","):
        tool, sep, mode = item.partition("=")
        tool, mode = tool.strip(), mode.strip().lower()
        if sep and tool and mode in ("allow", "deny", "ask"):
            modes[tool] = mode
    return modes


def set_default_tool_mode(tool: str, mode: str):
    """Persist a default mode for ``tool`` in guard.cfg."""
    if mode not in ("allow", "deny", "ask"):
        raise ValueError(f"Invalid tool mode: {mode}")
    modes = get_default_tool_modes()
    modes[tool] = mode
    set_config_value("tool_modes", ", ".join(f"{t}={m}" for t, m in modes.items()))
