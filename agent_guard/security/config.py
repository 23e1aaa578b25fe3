"""
Configuration for the sandbox gate.
"""

import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "sandbox_config.json"


def default_config_dir() -> Path:
    from agent_guard.config import CONFIG_DIR

    return Path(CONFIG_DIR)


class SandboxConfig(BaseModel):
    """Validated settings handed to ``Sandbox`` at construction.

    The built-in allowed roots and blocked patterns always apply; the lists
    here are added on top of them.
    """

    # Kill-switch for both path and command checks
    enabled: bool = True

    # "broad": paths outside the allowed roots are allowed unless blocked.
    # "restricted": only paths under an allowed root are allowed.
    path_scope: Literal["broad", "restricted"] = "broad"

    allowed_paths: list[str] = Field(default_factory=list)
    blocked_paths: list[str] = Field(default_factory=list)
    blocked_commands: list[str] = Field(default_factory=list)

    # Add ~/Documents, ~/Desktop, ~/Downloads and the cwd to the allowed roots
    include_default_allowed_paths: bool = True

    @field_validator("allowed_paths", "blocked_paths", "blocked_commands")
    @classmethod
    def _drop_blank_entries(cls, values: list[str]) -> list[str]:
        return [v.strip() for v in values if v and v.strip()]

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "SandboxConfig":
        """
        Load configuration from ``<config_dir>/sandbox_config.json``.

        A missing file gives the defaults. An unreadable or invalid file is
        logged and also gives the defaults, which keep the sandbox enabled.
        """
        config_file = Path(config_dir or default_config_dir()) / CONFIG_FILENAME
        if not config_file.exists():
            return cls()
        try:
            with open(config_file, encoding="utf-8") as f:
                return cls.model_validate(json.load(f))
        except Exception as e:
            logger.warning(f"Failed to load sandbox config from {config_file}: {e}")
            return cls()

    def save(self, config_dir: Optional[Path] = None) -> Path:
        """Write configuration to disk and return the file path."""
        config_dir = Path(config_dir or default_config_dir())
        config_file = config_dir / CONFIG_FILENAME
        config_dir.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(), f, indent=2)
        return config_file

    def get_status(self) -> dict:
        """Get the configuration as a summary dictionary."""
        return {
            "enabled": self.enabled,
            "path_scope": self.path_scope,
            "allowed_paths": list(self.allowed_paths),
            "blocked_paths_count": len(self.blocked_paths),
            "blocked_commands_count": len(self.blocked_commands),
            "include_default_allowed_paths": self.include_default_allowed_paths,
        }
