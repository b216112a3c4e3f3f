"""
BatchWriter - Writes one page of payloads to both targets.

The two targets are written concurrently and independently: a failure on
one never rolls back or blocks the other. Row-level rejections come back
as WriteFailure entries. A bulk write that fails as a whole with a
transient error is retried with exponential backoff; rows that already
have an outcome are never resubmitted, and the unique ``legacy_state_id``
on both target tables keeps a replay from duplicating a written row.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from statetrail.exceptions import BatchWriteError, ErrorHandler, RetryConfig
from statetrail.migration._timeout import bounded
from statetrail.models import (
    TARGET_DIRECT,
    TARGET_HISTORY,
    BatchResult,
    TargetWriteResult,
    WriteFailure,
)
from statetrail.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_RECORD_COUNT,
    ATTR_RETRY_COUNT,
    ATTR_ROWS_FAILED,
    ATTR_ROWS_WRITTEN,
    ATTR_TARGET_TABLE,
    Tracer,
    create_tracer,
)
from statetrail.records import DirectStateRecord, StateHistoryRecord
from statetrail.stores.interface import RowOutcome, TargetStore

logger = logging.getLogger(__name__)

Payload = DirectStateRecord | StateHistoryRecord
InsertFn = Callable[[Sequence[Payload]], Awaitable[list[RowOutcome]]]


class BatchWriter:
    """
    Writes direct and history payloads for one page.

    Example:
        >>> writer = BatchWriter(target, retry_config=config.retry_config)
        >>> result = await writer.write_batch(direct, history, batch_number=1)
        >>> len(result.failures)
        0
    """

    def __init__(
        self,
        target_store: TargetStore,
        *,
        retry_config: RetryConfig | None = None,
        query_timeout_seconds: float = 60.0,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the writer.

        Args:
            target_store: Store receiving the payloads.
            retry_config: Retry policy for transient bulk failures
                (defaults to a single attempt).
            query_timeout_seconds: Timeout for each bulk insert.
            error_handler: Handler running the retries (one is created if omitted).
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._target = target_store
        self._retry_config = retry_config or RetryConfig(max_attempts=1)
        self._query_timeout_seconds = query_timeout_seconds
        self._error_handler = error_handler or ErrorHandler()

    async def write_batch(
        self,
        direct: Sequence[DirectStateRecord],
        history: Sequence[StateHistoryRecord],
        batch_number: int = 0,
    ) -> BatchResult:
        """
        Write one page to both targets.

        Args:
            direct: Payloads for ``instruction_states``.
            history: Payloads for ``order_state_history``.
            batch_number: Page number, recorded on failures.

        Returns:
            BatchResult with per-target written and failed payloads.
        """
        with self._tracer.span(
            "statetrail.writer.write_batch",
            {ATTR_BATCH_NUMBER: batch_number},
        ):
            start = time.perf_counter()
            direct_result, history_result = await asyncio.gather(
                self._write_target(
                    TARGET_DIRECT,
                    self._target.insert_direct_records,
                    direct,
                    batch_number,
                ),
                self._write_target(
                    TARGET_HISTORY,
                    self._target.insert_history_records,
                    history,
                    batch_number,
                ),
            )
            return BatchResult(
                batch_number=batch_number,
                direct=direct_result,
                history=history_result,
                processing_time_ms=(time.perf_counter() - start) * 1000,
            )

    async def _write_target(
        self,
        target: str,
        insert: InsertFn,
        records: Sequence[Payload],
        batch_number: int,
    ) -> TargetWriteResult:
        result = TargetWriteResult(target=target)
        if not records:
            return result

        pending: list[Payload] = list(records)

        with self._tracer.span(
            "statetrail.writer.write_target",
            {
                ATTR_TARGET_TABLE: target,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_RECORD_COUNT: len(records),
            },
        ) as span:

            async def attempt() -> None:
                nonlocal pending
                result.attempts += 1
                outcomes = await bounded(
                    insert(pending),
                    f"insert into {target}",
                    self._query_timeout_seconds,
                )
                for outcome in outcomes:
                    if outcome.success:
                        result.written.append(outcome.payload)
                    else:
                        result.failed.append(
                            WriteFailure(
                                target=target,
                                payload=outcome.payload,
                                error=outcome.error or "row rejected",
                                attempts=result.attempts,
                                batch_number=batch_number,
                            )
                        )
                pending = []

            try:
                await self._error_handler.execute_with_retry(
                    attempt,
                    f"insert into {target} (batch {batch_number})",
                    retry_config=self._retry_config,
                )
            except Exception as e:
                error = BatchWriteError(target, len(pending), str(e), cause=e)
                logger.error("%s", error)
                result.failed.extend(
                    WriteFailure(
                        target=target,
                        payload=payload,
                        error=str(e),
                        attempts=result.attempts,
                        batch_number=batch_number,
                    )
                    for payload in pending
                )

            if span is not None:
                span.set_attribute(ATTR_ROWS_WRITTEN, len(result.written))
                span.set_attribute(ATTR_ROWS_FAILED, len(result.failed))
                span.set_attribute(ATTR_RETRY_COUNT, max(result.attempts - 1, 0))

            if result.failed:
                logger.warning(
                    "Batch %d: %d/%d rows not written to %s",
                    batch_number,
                    len(result.failed),
                    len(records),
                    target,
                )
            return result


__all__ = ["BatchWriter"]
