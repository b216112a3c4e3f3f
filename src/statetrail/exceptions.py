"""
Exceptions for the statetrail migration engine.

Every error raised while migrating legacy state records derives from
MigrationError. Each subclass declares, as class attributes, how the
orchestrator and batch writer react to it: its error code, severity and
recoverability.

Exception Hierarchy:
    MigrationError (base)
    +-- MigrationStateError
    |   +-- InvalidPhaseTransitionError
    +-- LookupBuildError
    +-- PageReadError
    +-- BatchWriteError
    +-- TransientStoreError
    |   +-- StoreTimeoutError
    +-- ValidationError

Propagation policy:
    - LookupBuildError and any unexpected error escaping the page loop halt
      the run (the orchestrator ends in FAILED).
    - PageReadError and BatchWriteError are recovered locally and surface
      only in statistics and per-batch failure lists.
    - TransientStoreError and StoreTimeoutError are retried by ErrorHandler
      with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """
    How loudly an error is reported.

    The member names match the ``logging`` level names.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        return int(getattr(logging, self.name))

    @property
    def should_alert(self) -> bool:
        """Whether the alert callback fires for this severity."""
        return self.log_level >= logging.ERROR


class ErrorRecoverability(Enum):
    """
    What the run does after an error.

    Attributes:
        RECOVERABLE: The unit of work is recorded as failed; the run goes on.
        TRANSIENT: The store call is retried with backoff.
        FATAL: The run stops.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        return self is ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff policy for store calls.

    The delay before retry ``n`` (0-indexed) is
    ``base_delay_ms * exponential_base ** n`` plus up to ``jitter_factor``
    of itself in random jitter, never more than ``max_delay_ms``.

    Example:
        >>> RetryConfig(base_delay_ms=100, jitter_factor=0.0).get_delay_ms(2)
        400.0
    """

    max_attempts: int = 3
    base_delay_ms: float = 100.0
    max_delay_ms: float = 30000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        problems = []
        if self.max_attempts < 1:
            problems.append(f"max_attempts must be at least 1 (got {self.max_attempts})")
        if self.base_delay_ms < 0:
            problems.append(f"base_delay_ms cannot be negative (got {self.base_delay_ms})")
        if self.max_delay_ms < self.base_delay_ms:
            problems.append(
                f"max_delay_ms {self.max_delay_ms} is below base_delay_ms {self.base_delay_ms}"
            )
        if self.exponential_base < 1.0:
            problems.append(f"exponential_base must be at least 1.0 (got {self.exponential_base})")
        if not 0.0 <= self.jitter_factor <= 1.0:
            problems.append(f"jitter_factor must lie in [0, 1] (got {self.jitter_factor})")
        if problems:
            raise ValueError("Invalid retry policy: " + "; ".join(problems))

    def get_delay_ms(self, attempt: int) -> float:
        """Milliseconds to wait after the given failed attempt (0-indexed)."""
        delay = self.base_delay_ms * self.exponential_base**attempt
        delay *= 1.0 + self.jitter_factor * random.random()  # nosec B311 - retry jitter
        return min(delay, self.max_delay_ms)


DEFAULT_RETRY_CONFIG = RetryConfig(max_attempts=3, base_delay_ms=1000.0)


@dataclass(frozen=True)
class ErrorClassification:
    """Snapshot of how one error type is handled, for logs and alerts."""

    error_code: str
    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "suggested_action": self.suggested_action,
        }


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Carries the orchestrator phase in which it occurred and the underlying
    cause, so a caller can tell where a run died and why.

    Attributes:
        message: Human-readable error description.
        phase: Orchestrator phase name (e.g. "building_lookups", "paging").
        cause: The underlying exception, if any.
    """

    error_code: ClassVar[str] = "MIGRATION_ERROR"
    severity: ClassVar[ErrorSeverity] = ErrorSeverity.ERROR
    recoverability: ClassVar[ErrorRecoverability] = ErrorRecoverability.FATAL
    suggested_action: ClassVar[str] = "Review the migration log and rerun once the cause is fixed"

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.phase = phase
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = self.message
        if self.phase:
            text += f" phase={self.phase}"
        if self.cause is not None:
            text += f" cause={type(self.cause).__name__}: {self.cause}"
        return text

    @property
    def recoverable(self) -> bool:
        """Whether the run can continue past this error."""
        return self.recoverability is not ErrorRecoverability.FATAL

    @classmethod
    def classification(cls) -> ErrorClassification:
        return ErrorClassification(
            error_code=cls.error_code,
            severity=cls.severity,
            recoverability=cls.recoverability,
            suggested_action=cls.suggested_action,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "phase": self.phase,
            "cause": None if self.cause is None else str(self.cause),
            **self.classification().to_dict(),
        }


class MigrationStateError(MigrationError):
    """Raised when a migrator is asked to do something its phase forbids."""

    error_code = "MIGRATION_STATE_ERROR"
    suggested_action = "Create a new StateMigrator for every run"


class InvalidPhaseTransitionError(MigrationStateError):
    """Raised when the orchestrator would move to a phase it cannot reach."""

    def __init__(self, current_phase: str, target_phase: str) -> None:
        self.current_phase = current_phase
        self.target_phase = target_phase
        super().__init__(
            f"Cannot move from phase {current_phase} to {target_phase}",
            phase=current_phase,
        )


class LookupBuildError(MigrationError):
    """
    Raised when an identifier or status lookup table cannot be built.

    Fatal when ``fail_on_lookup_error`` is set: the run is aborted before
    any page is processed.

    Attributes:
        kind: The lookup that failed ("actor", "order", "canonical_states").
    """

    error_code = "LOOKUP_BUILD_ERROR"
    severity = ErrorSeverity.CRITICAL
    suggested_action = (
        "Check target connectivity and that profiles, orders and order_states "
        "are populated, then rerun"
    )

    def __init__(
        self,
        kind: str,
        error: str,
        *,
        phase: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        super().__init__(f"Failed to build {kind} lookup: {error}", phase=phase, cause=cause)


class PageReadError(MigrationError):
    """
    Raised when a page of legacy records cannot be read.

    The page is skipped and the run moves on to the next offset.
    """

    error_code = "PAGE_READ_ERROR"
    recoverability = ErrorRecoverability.RECOVERABLE
    suggested_action = "Rerun the migration to pick up the skipped offset range"

    def __init__(
        self,
        offset: int,
        limit: int,
        error: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.offset = offset
        self.limit = limit
        super().__init__(
            f"Failed to read page at offset {offset} (limit {limit}): {error}",
            phase="paging",
            cause=cause,
        )


class BatchWriteError(MigrationError):
    """
    Raised when a bulk write to one target table fails as a whole.

    The rows are recorded as failed and the run continues.
    """

    error_code = "BATCH_WRITE_ERROR"
    recoverability = ErrorRecoverability.RECOVERABLE
    suggested_action = "Inspect the batch failure list and replay the failed rows"

    def __init__(
        self,
        target: str,
        row_count: int,
        error: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.target = target
        self.row_count = row_count
        super().__init__(
            f"Bulk write of {row_count} rows to {target} failed: {error}",
            phase="paging",
            cause=cause,
        )


class TransientStoreError(MigrationError):
    """Raised by stores for failures that may succeed on retry, such as a dropped connection."""

    error_code = "TRANSIENT_STORE_ERROR"
    severity = ErrorSeverity.WARNING
    recoverability = ErrorRecoverability.TRANSIENT
    suggested_action = "Check database connectivity; the call is retried automatically"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)


class StoreTimeoutError(TransientStoreError):
    """Raised when a single store call runs longer than ``query_timeout_seconds``."""

    error_code = "STORE_TIMEOUT"
    suggested_action = "Check database load or raise query_timeout_seconds"

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Store call '{operation}' timed out after {timeout_seconds:.1f}s")


class ValidationError(MigrationError):
    """
    Raised when a post-migration validation query cannot be executed.

    The validator records it in its report instead of raising it; output
    already written is never unwound.
    """

    error_code = "VALIDATION_ERROR"
    severity = ErrorSeverity.WARNING
    recoverability = ErrorRecoverability.RECOVERABLE
    suggested_action = "Rerun validation once the target store is reachable"

    def __init__(
        self,
        check_name: str,
        error: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.check_name = check_name
        super().__init__(
            f"Validation check '{check_name}' failed: {error}",
            phase="validating",
            cause=cause,
        )


# Non-migration errors that still deserve a retry
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError)

_UNKNOWN = ErrorClassification(
    error_code="UNKNOWN_ERROR",
    severity=ErrorSeverity.ERROR,
    recoverability=ErrorRecoverability.FATAL,
    suggested_action="Unexpected error, see the traceback in the log",
)


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception.

    MigrationErrors carry their own classification. Connection-level
    builtins count as transient store errors; anything else is fatal.
    """
    if isinstance(exc, MigrationError):
        return exc.classification()
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return TransientStoreError.classification()
    return _UNKNOWN


def is_transient(exc: BaseException) -> bool:
    """Whether ErrorHandler would retry this exception."""
    return classify_exception(exc).recoverability.should_retry


class ErrorHandler:
    """
    Runs store calls, retrying transient failures with backoff.

    Every failure is logged at its classified severity. Failures severe
    enough to alert are also passed to ``alert_callback``; a failing
    callback is logged and ignored.

    Example:
        >>> handler = ErrorHandler()
        >>> outcomes = await handler.execute_with_retry(
        ...     lambda: target.insert_direct_records(rows),
        ...     "insert_direct_records",
        ...     retry_config=RetryConfig(max_attempts=3),
        ... )
    """

    def __init__(
        self,
        alert_callback: Callable[[BaseException, ErrorClassification], None] | None = None,
    ) -> None:
        self.alert_callback = alert_callback

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        *,
        retry_config: RetryConfig | None = None,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or retrying stops making sense.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt.
            operation_name: Name used in log records.
            retry_config: Backoff policy, DEFAULT_RETRY_CONFIG when omitted.
            on_retry: Called as ``(attempt, error, delay_ms)`` before each sleep.

        Raises:
            The operation's error when it is not transient or the attempts
            are used up.
        """
        config = retry_config or DEFAULT_RETRY_CONFIG

        for attempt in range(config.max_attempts):
            try:
                result = await operation()
            except Exception as e:
                classification = classify_exception(e)
                self._report(e, classification, operation_name)

                remaining = config.max_attempts - attempt - 1
                if not classification.recoverability.should_retry or remaining == 0:
                    if classification.recoverability.should_retry:
                        logger.error(
                            "Giving up on '%s' after %d attempts: %s",
                            operation_name,
                            config.max_attempts,
                            e,
                        )
                    raise

                delay_ms = config.get_delay_ms(attempt)
                logger.warning(
                    "Retrying '%s' in %.0fms (%d attempts left)",
                    operation_name,
                    delay_ms,
                    remaining,
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay_ms)
                await asyncio.sleep(delay_ms / 1000.0)
            else:
                if attempt:
                    logger.info("'%s' succeeded on attempt %d", operation_name, attempt + 1)
                return result

        raise AssertionError("unreachable: max_attempts is at least 1")

    def _report(
        self,
        error: BaseException,
        classification: ErrorClassification,
        operation_name: str,
    ) -> None:
        logger.log(
            classification.severity.log_level,
            "'%s' failed with %s: %s",
            operation_name,
            classification.error_code,
            error,
        )
        if self.alert_callback is not None and classification.severity.should_alert:
            try:
                self.alert_callback(error, classification)
            except Exception:
                logger.exception("Alert callback failed for '%s'", operation_name)


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "DEFAULT_RETRY_CONFIG",
    "TRANSIENT_EXCEPTIONS",
    "MigrationError",
    "MigrationStateError",
    "InvalidPhaseTransitionError",
    "LookupBuildError",
    "PageReadError",
    "BatchWriteError",
    "TransientStoreError",
    "StoreTimeoutError",
    "ValidationError",
    "ErrorHandler",
    "classify_exception",
    "is_transient",
]
