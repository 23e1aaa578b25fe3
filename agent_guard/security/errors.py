"""
Exceptions raised by the security core.
"""


class PromptInjectionError(ValueError):
    """Raised by the input sanitizer in ``throw`` mode."""

    def __init__(self, pattern_name: str):
        self.pattern_name = pattern_name
        super().__init__(f"Potential prompt injection detected: {pattern_name}")
