"""Exception hierarchy for copy operations.

Pre-flight errors (validation, resolution, conflicts) abort before any side
effect. Task-level failures are never raised out of the dispatcher; they are
recorded per task and aggregated into the CopyResult.
"""


class CopyError(Exception):
    """Base class for all copy failures surfaced to the CLI."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(CopyError):
    """Raised when the pre-flight option validation finds fatal violations.

    Carries every violation found, not just the first one.
    """

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        summary = (
            self.violations[0]
            if len(self.violations) == 1
            else f"{len(self.violations)} validation errors"
        )
        super().__init__(summary, details="\n".join(f"- {v}" for v in violations))


class ResolutionError(CopyError):
    """Raised when connection parameters cannot be resolved."""


class ConnectionFailedError(CopyError):
    """Raised when a database connection cannot be established."""


class ConflictError(CopyError):
    """Raised when the target state conflicts with the requested mode."""


class ExecutionError(CopyError):
    """Raised when an external tool cannot be executed."""

