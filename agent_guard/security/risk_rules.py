"""
Risk rules evaluated against a flattened list of parsed commands.

Rules are independent of each other: every matching rule contributes one
finding, and whether the command is allowed is decided once over the full
set of findings.
"""

import re
from dataclasses import dataclass
from typing import Callable, Sequence

from .base import CommandNode, RiskLevel

ROOT_TARGETS = frozenset({"/", "/*", "~", "~/*"})
SHELLS = frozenset({"bash", "sh", "zsh"})
DOWNLOADERS = frozenset({"curl", "wget"})

_DISK_DEVICE_RE = re.compile(r"^/dev/[sh]d[a-z]")


@dataclass(frozen=True)
class RiskRule:
    """A pure predicate over the flattened command list plus a fixed verdict."""

    name: str
    level: RiskLevel
    description: str
    test: Callable[[Sequence[CommandNode]], bool]


def flatten_commands(commands: Sequence[CommandNode]) -> list[CommandNode]:
    """Return every node depth-first: each command, then its pipe chain."""
    result: list[CommandNode] = []
    for command in commands:
        result.append(command)
        if command.pipes:
            result.extend(flatten_commands(command.pipes))
    return result


def _base(name: str) -> str:
    # /bin/rm and rm are the same program
    return name.rsplit("/", 1)[-1]


def _has_substitution(value: str) -> bool:
    return "`" in value or "$(" in value


def _is_recursive_force(flag: str) -> bool:
    lowered = flag.lower()
    return "r" in lowered and "f" in lowered


def _is_recursive(flag: str) -> bool:
    return flag == "--recursive" or (not flag.startswith("--") and "R" in flag)


def _rm_root(cmds: Sequence[CommandNode]) -> bool:
    return any(
        _base(c.name) == "rm"
        and any(_is_recursive_force(f) for f in c.flags)
        and any(a in ROOT_TARGETS for a in c.args)
        for c in cmds
    )


def _mkfs(cmds: Sequence[CommandNode]) -> bool:
    return any(_base(c.name).startswith("mkfs") for c in cmds)


def _dd_input(cmds: Sequence[CommandNode]) -> bool:
    return any(
        _base(c.name) == "dd" and any(a.startswith("if=") for a in c.args)
        for c in cmds
    )


def _download_to_shell(cmds: Sequence[CommandNode]) -> bool:
    return any(
        _base(c.name) in DOWNLOADERS
        and any(_base(p.name) in SHELLS for p in flatten_commands(c.pipes))
        for c in cmds
    )


def _chmod_root_777(cmds: Sequence[CommandNode]) -> bool:
    return any(
        _base(c.name) == "chmod"
        and any(_is_recursive(f) for f in c.flags)
        and "777" in c.args
        and "/" in c.args
        for c in cmds
    )


def _eval_substitution(cmds: Sequence[CommandNode]) -> bool:
    return any(
        _base(c.name) == "eval" and any(_has_substitution(a) for a in c.args)
        for c in cmds
    )


def _disk_device(cmds: Sequence[CommandNode]) -> bool:
    return any(_DISK_DEVICE_RE.match(a) for c in cmds for a in (*c.args, *c.redirects))


def _substitution_arg(cmds: Sequence[CommandNode]) -> bool:
    return any(_has_substitution(a) for c in cmds for a in c.args)


def _rm_in_chain(cmds: Sequence[CommandNode]) -> bool:
    return len(cmds) > 1 and any(_base(c.name) == "rm" for c in cmds)


RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        "rm-root",
        "critical",
        "Recursive forced deletion of the root or home directory (rm -rf)",
        _rm_root,
    ),
    RiskRule("mkfs", "critical", "Formats a filesystem (mkfs)", _mkfs),
    RiskRule("dd-input", "critical", "Raw disk operation (dd if=)", _dd_input),
    RiskRule(
        "download-to-shell",
        "high",
        "Downloads a script and pipes it straight into a shell",
        _download_to_shell,
    ),
    RiskRule(
        "chmod-root-777",
        "high",
        "Recursively makes the root directory world-writable (chmod -R 777 /)",
        _chmod_root_777,
    ),
    RiskRule(
        "eval-substitution",
        "high",
        "eval of a command substitution (possible injection)",
        _eval_substitution,
    ),
    RiskRule("disk-device", "high", "Targets a raw disk device", _disk_device),
    RiskRule(
        "command-substitution",
        "medium",
        "Contains command substitution",
        _substitution_arg,
    ),
    RiskRule(
        "rm-in-chain",
        "medium",
        "Command chain includes rm (possible command injection)",
        _rm_in_chain,
    ),
)
