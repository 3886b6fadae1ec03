"""Exceptions raised while loading service configuration."""

from typing import List, Optional


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded or fails validation.

    Collects every problem found in one pass so operators can fix a broken
    config file or environment in a single edit, and renders them together
    with suggested remedies.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        """
        Initialize ConfigurationError.

        Args:
            message: Primary error message
            errors: Individual validation problems
            suggestions: Hints for fixing the problems
        """
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.message]

        if self.errors:
            lines.append("\nValidation Errors:")
            lines.extend(f"  {i}. {error}" for i, error in enumerate(self.errors, 1))

        if self.suggestions:
            lines.append("\nSuggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)

        return "\n".join(lines)

    def __str__(self) -> str:
        return self._format_message()
