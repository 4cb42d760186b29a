"""Pre-flight validation of copy requests.

Runs every rule before reporting so the user sees all conflicts at once.
Nothing here touches a database or runs an external tool; the only side
effect is a filesystem check for TLS certificate and key files.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from .errors import ValidationError
from .models import CopyRequest

MEMORY_SIZE_PATTERN = re.compile(r"^\d+(KB|MB|GB)$")

TEMPLATE_FILTER_NOTICE = (
    "Template copy doesn't support table filtering; "
    "falling back to dump/restore"
)

TEMPLATE_PHASE_NOTICE = (
    "Template copy always copies schema and data; "
    "falling back to dump/restore for --schema-only/--data-only"
)


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""

    WARNING = "warning"  # Reported, copy proceeds
    NOTICE = "notice"  # Behaviour change the user should know about
    ERROR = "error"  # Blocks execution


@dataclass
class ValidationIssue:
    """A single rule violation."""

    severity: ValidationSeverity
    rule: str
    message: str


@dataclass
class ValidationReport:
    """Result of validating a copy request."""

    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, severity: ValidationSeverity, rule: str, message: str) -> None:
        self.issues.append(ValidationIssue(severity, rule, message))

    @property
    def errors(self) -> list[str]:
        return [
            i.message for i in self.issues if i.severity == ValidationSeverity.ERROR
        ]

    @property
    def warnings(self) -> list[str]:
        return [
            i.message for i in self.issues if i.severity != ValidationSeverity.ERROR
        ]

    @property
    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    @property
    def is_clean(self) -> bool:
        return len(self.issues) == 0


@dataclass(frozen=True)
class ValidatedRequest:
    """A request that passed validation, with the non-fatal findings."""

    request: CopyRequest
    warnings: tuple[str, ...] = ()
    template_fallback: bool = False


class OptionValidator:
    """Checks mutual exclusion and precondition rules over the flag set."""

    def check(self, request: CopyRequest) -> ValidationReport:
        """Run every rule and collect all issues without raising."""
        report = ValidationReport()
        opts = request.options

        if request.same_database:
            report.add(
                ValidationSeverity.ERROR,
                "same-database",
                "Cannot copy database to itself: source and target names must be different",
            )

        if opts.sync and opts.drop_target:
            report.add(
                ValidationSeverity.ERROR,
                "sync-drop-target",
                "Cannot use --sync with --drop-target (mutually exclusive)",
            )

        if opts.truncate_tables and not opts.sync:
            report.add(
                ValidationSeverity.ERROR,
                "truncate-requires-sync",
                "--truncate-tables can only be used with --sync",
            )

        if opts.fast and not request.same_server:
            report.add(
                ValidationSeverity.ERROR,
                "fast-same-server",
                "--fast (template copy) requires source and target on the same server",
            )

        if opts.fast and opts.has_filters and request.same_server:
            report.add(
                ValidationSeverity.NOTICE,
                "fast-filters",
                TEMPLATE_FILTER_NOTICE,
            )

        if opts.fast and opts.phase_restricted and request.same_server:
            report.add(
                ValidationSeverity.NOTICE,
                "fast-phases",
                TEMPLATE_PHASE_NOTICE,
            )

        for side, spec in (("source", request.source), ("target", request.target)):
            for label, path in (("sslcert", spec.sslcert), ("sslkey", spec.sslkey)):
                if path is not None and not path.is_file():
                    report.add(
                        ValidationSeverity.ERROR,
                        "ssl-file",
                        f"SSL {label.removeprefix('ssl')} file for {side} not found: {path}",
                    )

        for param, value in (
            ("work-mem", opts.work_mem),
            ("maintenance-work-mem", opts.maintenance_work_mem),
        ):
            if value is not None and not MEMORY_SIZE_PATTERN.match(value):
                report.add(
                    ValidationSeverity.ERROR,
                    "memory-format",
                    f"Invalid {param} format: {value!r} (expected e.g. 64MB, 512KB, 1GB)",
                )

        if opts.schema_only and (opts.disable_triggers or opts.disable_indexes):
            report.add(
                ValidationSeverity.WARNING,
                "schema-only-load-flags",
                "--disable-triggers/--disable-indexes have no effect with --schema-only",
            )

        for param, timeout in (
            ("connection-timeout", opts.connection_timeout),
            ("copy-timeout", opts.copy_timeout),
            ("total-timeout", opts.total_timeout),
        ):
            if timeout is not None and timeout <= 0:
                report.add(
                    ValidationSeverity.ERROR,
                    "timeout",
                    f"--{param} must be a positive integer, got {timeout}",
                )

        self._check_extras(request, report)
        return report

    def _check_extras(self, request: CopyRequest, report: ValidationReport) -> None:
        opts = request.options

        if opts.schema_only and opts.data_only:
            report.add(
                ValidationSeverity.ERROR,
                "schema-data-only",
                "Cannot use --schema-only with --data-only (mutually exclusive)",
            )
        if opts.fast and opts.sync:
            report.add(
                ValidationSeverity.ERROR,
                "fast-sync",
                "Cannot use --fast with --sync (template copy creates a new target)",
            )
        if opts.jobs < 1:
            report.add(
                ValidationSeverity.ERROR,
                "jobs",
                f"--jobs must be at least 1, got {opts.jobs}",
            )
        if opts.progress_interval <= 0:
            report.add(
                ValidationSeverity.ERROR,
                "progress-interval",
                "--progress-interval must be positive",
            )
        if opts.max_attempts < 1:
            report.add(
                ValidationSeverity.ERROR,
                "retries",
                "--retries must allow at least one attempt",
            )

        for kind, include, exclude in (
            ("table", opts.include_tables, opts.exclude_tables),
            ("schema", opts.include_schemas, opts.exclude_schemas),
        ):
            for pattern in sorted(set(include) & set(exclude)):
                report.add(
                    ValidationSeverity.WARNING,
                    "include-exclude-overlap",
                    f"{kind.capitalize()} pattern {pattern!r} is both included and excluded; exclusion wins",
                )

    def validate(self, request: CopyRequest) -> ValidatedRequest:
        """Validate a request.

        Raises:
            ValidationError: With every fatal violation found
        """
        report = self.check(request)
        for issue in report.issues:
            logger.debug(f"Validation {issue.severity.value} [{issue.rule}]: {issue.message}")

        if report.has_errors:
            raise ValidationError(report.errors)

        fallback = any(i.rule in ("fast-filters", "fast-phases") for i in report.issues)
        return ValidatedRequest(
            request=request,
            warnings=tuple(report.warnings),
            template_fallback=fallback,
        )


def validate_request(request: CopyRequest) -> ValidatedRequest:
    """Validate a request with the default rule set."""
    return OptionValidator().validate(request)
