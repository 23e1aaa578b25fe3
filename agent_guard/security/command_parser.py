"""
Tokenizer and parser for shell-like command lines.

This is not a POSIX shell grammar. It recovers just enough structure
(statements, pipe chains, flags, arguments, redirections and command
substitutions) for the risk rules to recognize dangerous patterns.
Nothing in this module executes anything.
"""

import logging
from typing import NamedTuple, Optional, Sequence

from .base import CommandAnalysis, CommandNode, RiskFinding
from .risk_rules import RISK_RULES, RiskRule, flatten_commands

logger = logging.getLogger(__name__)

WORD = "word"
PIPE = "pipe"
AND = "and"
OR = "or"
SEMICOLON = "semicolon"
BACKGROUND = "background"
REDIRECT = "redirect"
SUBSTITUTION = "substitution"

STATEMENT_BOUNDARIES = frozenset({AND, OR, SEMICOLON, BACKGROUND})

# Characters that end an unquoted word
_WORD_BREAKS = frozenset("|&;<>")

# How deep substitution bodies are re-analyzed
MAX_SUBSTITUTION_DEPTH = 3


class Token(NamedTuple):
    type: str
    value: str


def _scan_backtick(text: str, i: int) -> tuple[str, int]:
    """Capture a backtick substitution starting at ``text[i]``."""
    end = text.find("`", i + 1)
    if end == -1:
        return text[i:], len(text)
    return text[i : end + 1], end + 1


def _scan_dollar_paren(text: str, i: int) -> tuple[str, int]:
    """Capture ``$( ... )`` starting at ``text[i]``, honouring nested parens."""
    depth = 1
    j = i + 2
    n = len(text)
    while j < n and depth > 0:
        if text[j] == "(":
            depth += 1
        elif text[j] == ")":
            depth -= 1
        j += 1
    value = text[i:j]
    if depth > 0:
        # Dangling subshell, close it so it is still recognizable
        value += ")"
    return value, j


def _scan_quoted(text: str, i: int) -> tuple[str, int]:
    """Scan a quoted string starting at ``text[i]``; returns the unquoted body."""
    quote = text[i]
    chars = []
    i += 1
    n = len(text)
    while i < n and text[i] != quote:
        if text[i] == "\\" and quote == '"' and i + 1 < n:
            i += 1
        chars.append(text[i])
        i += 1
    # Skip the closing quote if there is one
    return "".join(chars), min(i + 1, n)


def _scan_redirect(text: str, i: int) -> tuple[str, int]:
    op = text[i]
    i += 1
    if op == ">" and i < len(text) and text[i] == ">":
        op += ">"
        i += 1
    if i < len(text) and text[i] == "&":
        # >&2 style descriptor duplication
        op += "&"
        i += 1
        while i < len(text) and (text[i].isdigit() or text[i] == "-"):
            op += text[i]
            i += 1
    return op, i


def _scan_word(text: str, i: int) -> tuple[str, int, bool]:
    """Scan one unquoted/quoted word. Returns (word, next_index, was_quoted)."""
    chars = []
    quoted = False
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace() or ch in _WORD_BREAKS:
            break
        if ch == "\\":
            if i + 1 < n:
                chars.append(text[i + 1])
            i += 2
        elif ch in "\"'":
            quoted = True
            segment, i = _scan_quoted(text, i)
            chars.append(segment)
        elif ch == "`":
            segment, i = _scan_backtick(text, i)
            chars.append(segment)
        elif text.startswith("$(", i):
            segment, i = _scan_dollar_paren(text, i)
            chars.append(segment)
        else:
            chars.append(ch)
            i += 1
    return "".join(chars), i, quoted


def tokenize(command: str) -> list[Token]:
    """Split a command line into tokens."""
    tokens: list[Token] = []
    i = 0
    n = len(command)

    while i < n:
        ch = command[i]

        if ch in "\r\n":
            # A line break ends the statement like ;
            tokens.append(Token(SEMICOLON, ch))
            i += 1
        elif ch.isspace():
            i += 1
        elif ch == "|":
            if command.startswith("||", i):
                tokens.append(Token(OR, "||"))
                i += 2
            else:
                tokens.append(Token(PIPE, "|"))
                i += 1
        elif ch == "&":
            if command.startswith("&&", i):
                tokens.append(Token(AND, "&&"))
                i += 2
            elif command.startswith("&>", i):
                op, i = _scan_redirect(command, i + 1)
                tokens.append(Token(REDIRECT, "&" + op))
            else:
                tokens.append(Token(BACKGROUND, "&"))
                i += 1
        elif ch == ";":
            tokens.append(Token(SEMICOLON, ";"))
            i += 1
        elif ch in "<>":
            op, i = _scan_redirect(command, i)
            tokens.append(Token(REDIRECT, op))
        elif ch == "`":
            value, i = _scan_backtick(command, i)
            tokens.append(Token(SUBSTITUTION, value))
        elif command.startswith("$(", i):
            value, i = _scan_dollar_paren(command, i)
            tokens.append(Token(SUBSTITUTION, value))
        else:
            word, i, quoted = _scan_word(command, i)
            if not quoted and word.isdigit() and i < n and command[i] in "<>":
                # 2> file, 2>&1
                op, i = _scan_redirect(command, i)
                tokens.append(Token(REDIRECT, word + op))
            elif word or quoted:
                tokens.append(Token(WORD, word))

    return tokens


def find_substitutions(text: str) -> list[str]:
    """Return the bodies of the outermost command substitutions in ``text``."""
    bodies = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] == "`":
            segment, i = _scan_backtick(text, i)
            body = segment[1:-1] if len(segment) > 1 and segment.endswith("`") else segment[1:]
            bodies.append(body)
        elif text.startswith("$(", i):
            segment, i = _scan_dollar_paren(text, i)
            bodies.append(segment[2:-1])
        else:
            i += 1
    return [body for body in bodies if body.strip()]


class _Parser:
    """Single-pass recursive-descent parser over a token list."""

    def __init__(self, tokens: Sequence[Token]):
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> Optional[Token]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def parse_statements(self) -> list[CommandNode]:
        commands: list[CommandNode] = []
        while True:
            token = self._peek()
            if token is None:
                break
            if token.type in STATEMENT_BOUNDARIES or token.type == PIPE:
                # Empty statement, or a pipe with nothing in front of it
                self._pos += 1
                continue

            node = self._parse_command()
            token = self._peek()
            if token is not None and token.type == PIPE:
                self._pos += 1
                after = self._peek()
                if after is None or after.type in STATEMENT_BOUNDARIES:
                    # Nothing to pipe into
                    if node is not None:
                        commands.append(node)
                    continue
                tail = self.parse_statements()
                if node is None:
                    commands.extend(tail)
                else:
                    # The pipe tail is everything that follows the pipe
                    node.pipes.extend(tail)
            if node is not None:
                commands.append(node)
        return commands

    def _parse_command(self) -> Optional[CommandNode]:
        name: Optional[str] = None
        args: list[str] = []
        flags: list[str] = []
        redirects: list[str] = []

        while True:
            token = self._peek()
            if token is None or token.type in STATEMENT_BOUNDARIES or token.type == PIPE:
                break
            self._pos += 1

            if token.type == REDIRECT:
                if token.value[-1].isdigit() or token.value.endswith("-"):
                    # 2>&1 duplicates a descriptor and has no target
                    continue
                target = self._peek()
                if target is not None and target.type in (WORD, SUBSTITUTION):
                    self._pos += 1
                    redirects.append(target.value)
                continue

            if token.type == WORD and token.value.startswith("-"):
                # Flags before the command name are dropped
                if name is not None:
                    flags.append(token.value)
            elif name is None:
                if token.value:
                    name = token.value
            else:
                args.append(token.value)

        if name is None:
            return None
        return CommandNode(name=name, args=args, flags=flags, redirects=redirects)


class CommandParser:
    """Parses command lines and classifies their risk.

    Args:
        rules: Risk rules to evaluate, in order. Defaults to ``RISK_RULES``.
    """

    def __init__(self, rules: Optional[Sequence[RiskRule]] = None):
        self.rules: tuple[RiskRule, ...] = tuple(rules) if rules is not None else RISK_RULES

    def parse(self, command: str) -> list[CommandNode]:
        """Parse ``command`` into a list of statements.

        Never raises. An empty list means nothing could be confirmed, not
        that the command is safe.
        """
        try:
            return _Parser(tokenize(command)).parse_statements()
        except Exception as e:
            logger.debug(f"Failed to parse command {command!r}: {e}")
            return []

    def analyze(self, command: str) -> CommandAnalysis:
        """Run every risk rule against the parsed command.

        Substitution bodies (``$(...)`` and backticks) are parsed and added
        to the evaluated set, so ``echo `rm -rf /``` is judged on the inner
        ``rm`` as well.
        """
        commands = self.parse(command)
        flat = self._expand(commands, depth=0)

        risks = [
            RiskFinding(level=rule.level, description=rule.description)
            for rule in self.rules
            if rule.test(flat)
        ]
        allowed = not any(risk.is_blocking for risk in risks)

        if risks:
            logger.debug(
                f"Command {command!r} matched {len(risks)} risk rule(s), "
                f"allowed={allowed}"
            )
        return CommandAnalysis(allowed=allowed, commands=commands, risks=risks)

    def extract_paths(self, command: str) -> list[str]:
        """Return arguments and redirect targets that look like file paths."""
        paths = []
        for node in flatten_commands(self.parse(command)):
            for value in (*node.args, *node.redirects):
                if _looks_like_path(value):
                    paths.append(value)
        return paths

    def _expand(self, commands: Sequence[CommandNode], depth: int) -> list[CommandNode]:
        flat = flatten_commands(commands)
        if depth >= MAX_SUBSTITUTION_DEPTH:
            return flat

        expanded = list(flat)
        for node in flat:
            for value in (node.name, *node.args, *node.redirects):
                for body in find_substitutions(value):
                    expanded.extend(self._expand(self.parse(body), depth + 1))
        return expanded


def _looks_like_path(value: str) -> bool:
    if value.startswith(("/", "./", "../", "~/")):
        return True
    return "/" in value and not value.startswith("-")
