"""
Prompt-injection screening for untrusted text.
"""

import logging
import re
from typing import Optional, Sequence, Union

from .base import SanitizationResult, SafetyCheck
from .errors import PromptInjectionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 100_000
MAX_TITLE_LENGTH = 500
MAX_BODY_LENGTH = 10_000

SANITIZE_MODES = ("redact", "remove", "throw")
REDACTION = "[REDACTED]"

# Checked in this order; names are reported in the same order
DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern], ...] = tuple(
    (name, re.compile(pattern, re.IGNORECASE))
    for name, pattern in (
        # Instruction override
        (
            "instruction-ignore",
            r"ignore\s+(all\s+)?(previous|above|prior|earlier)\s+instructions?",
        ),
        (
            "instruction-disregard",
            r"disregard\s+(all\s+)?(previous|above|prior|earlier)\s+instructions?",
        ),
        (
            "instruction-forget",
            r"forget\s+(all\s+)?(previous|above|prior|earlier)\s+(instructions?|context)",
        ),
        ("role-hijack", r"you\s+are\s+now\s+(a|an)\s+\w+\s+that"),
        ("system-override", r"system:\s*you\s+are"),
        # Code execution
        ("eval-injection", r"eval\s*\("),
        ("function-injection", r"Function\s*\("),
        ("setTimeout-injection", r"setTimeout\s*\(\s*[\"'`]"),
        ("setInterval-injection", r"setInterval\s*\(\s*[\"'`]"),
        # Delimiters
        ("delimiter-attack", r"---\s*(system|assistant|user|human)\s*---"),
        ("delimiter-attack-alt", r"<<<\s*(system|assistant|user|human)\s*>>>"),
        # Jailbreaks
        ("dan-jailbreak", r"do\s+anything\s+now"),
        ("developer-mode", r"developer\s+mode"),
        ("explicit-jailbreak", r"jailbreak"),
        # Output manipulation
        ("output-manipulation", r"print\s+(\".*\"|'.*')\s*;?\s*$"),
        ("response-hijack", r"respond\s+with\s+(only|exactly):"),
    )
)

PatternLike = Union[str, re.Pattern]


class InputSanitizer:
    """
    Screens text against a fixed table of prompt-injection patterns.

    Text longer than ``max_length`` is truncated before matching. Each
    matching pattern is then redacted, removed or turned into a
    ``PromptInjectionError``, depending on ``mode``.
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        mode: str = "redact",
        custom_patterns: Optional[Sequence[PatternLike]] = None,
    ):
        if mode not in SANITIZE_MODES:
            raise ValueError(f"Invalid sanitizer mode: {mode}")
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")

        self.max_length = max_length
        self.mode = mode
        self.custom_patterns = list(custom_patterns or [])

        custom = [
            (f"custom-{i}", p if isinstance(p, re.Pattern) else re.compile(p, re.IGNORECASE))
            for i, p in enumerate(self.custom_patterns)
        ]
        self._patterns = [*DANGEROUS_PATTERNS, *custom]

    def _with_max_length(self, max_length: int) -> "InputSanitizer":
        return InputSanitizer(
            max_length=max_length, mode=self.mode, custom_patterns=self.custom_patterns
        )

    def sanitize(self, text: str) -> SanitizationResult:
        """
        Sanitize untrusted text.

        Args:
            text: The input to screen

        Returns:
            SanitizationResult; ``is_clean`` is False if anything matched
            or the input was truncated

        Raises:
            PromptInjectionError: In ``throw`` mode, on the first match
        """
        detected: list[str] = []
        sanitized = text
        was_truncated = False

        if len(sanitized) > self.max_length:
            sanitized = sanitized[: self.max_length]
            was_truncated = True
            logger.warning(
                f"Input truncated from {len(text)} to {self.max_length} characters"
            )

        for name, pattern in self._patterns:
            if not pattern.search(sanitized):
                continue
            detected.append(name)
            if self.mode == "throw":
                logger.warning(f"Prompt injection pattern rejected: {name}")
                raise PromptInjectionError(name)
            replacement = REDACTION if self.mode == "redact" else ""
            sanitized = pattern.sub(replacement, sanitized)

        if detected:
            logger.warning(f"Dangerous patterns handled ({self.mode}): {', '.join(detected)}")

        return SanitizationResult(
            is_clean=not detected and not was_truncated,
            sanitized_input=sanitized,
            detected_patterns=detected,
            was_truncated=was_truncated,
        )

    def sanitize_title(self, title: str) -> SanitizationResult:
        return self._with_max_length(MAX_TITLE_LENGTH).sanitize(title)

    def sanitize_body(self, body: str) -> SanitizationResult:
        return self._with_max_length(MAX_BODY_LENGTH).sanitize(body)

    def check(self, text: str) -> SafetyCheck:
        """Report matching patterns without modifying the text or truncating it."""
        detected = [name for name, pattern in self._patterns if pattern.search(text)]
        return SafetyCheck(is_safe=not detected, detected_patterns=detected)

    def get_pattern_names(self) -> list[str]:
        return [name for name, _ in self._patterns]


def sanitize_input(text: str, **options) -> SanitizationResult:
    """Sanitize with a one-off sanitizer built from ``options``."""
    return InputSanitizer(**options).sanitize(text)


def check_input_safety(text: str) -> SafetyCheck:
    return InputSanitizer().check(text)
