"""Scheduler administration errors."""


class SchedulerError(Exception):
    """Base exception for scheduler administration failures."""


class UnknownJobError(SchedulerError):
    """Raised when a job name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown job '{name}'")


class InvalidCronExpressionError(SchedulerError):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        super().__init__(reason)


class InvalidCheckKindError(SchedulerError):
    """Raised when a manual check names an unknown kind."""

    def __init__(self, kind: str, valid_kinds):
        self.kind = kind
        self.valid_kinds = sorted(valid_kinds)
        super().__init__(
            f"Unknown check kind '{kind}'. Valid kinds: {', '.join(self.valid_kinds)}"
        )
