"""
BatchReader - Pages through the legacy state records.

Pages are read by offset in primary-key order, so reading the same
(offset, limit) twice returns the same records as long as the legacy store
is not modified.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator

from statetrail.exceptions import PageReadError
from statetrail.migration._timeout import bounded
from statetrail.observability import (
    ATTR_BATCH_SIZE,
    ATTR_OFFSET,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from statetrail.records import LegacyStateRecord
from statetrail.stores.interface import LegacyStateSource

logger = logging.getLogger(__name__)


class BatchReader:
    """
    Reads legacy records one page at a time.

    Example:
        >>> reader = BatchReader(source)
        >>> total = await reader.count_total()
        >>> for batch_number, offset in reader.pages(total, 100):
        ...     records = await reader.read_page(offset, 100)
    """

    def __init__(
        self,
        source: LegacyStateSource,
        *,
        query_timeout_seconds: float = 60.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the reader.

        Args:
            source: The legacy store.
            query_timeout_seconds: Timeout for each read.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._source = source
        self._query_timeout_seconds = query_timeout_seconds

    async def count_total(self) -> int:
        """Count the legacy records."""
        with self._tracer.span("statetrail.reader.count_total"):
            return await bounded(
                self._source.count_records(),
                "count_records",
                self._query_timeout_seconds,
            )

    async def read_page(self, offset: int, limit: int) -> list[LegacyStateRecord]:
        """
        Read one page.

        Args:
            offset: Number of records to skip (>= 0).
            limit: Page size (>= 1).

        Returns:
            Records of the page in primary-key order; empty past the end.

        Raises:
            ValueError: If offset or limit is out of range.
            PageReadError: If the store call fails or times out.
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        with self._tracer.span(
            "statetrail.reader.read_page",
            {ATTR_OFFSET: offset, ATTR_BATCH_SIZE: limit},
        ) as span:
            try:
                records = await bounded(
                    self._source.read_page(offset, limit),
                    "read_page",
                    self._query_timeout_seconds,
                )
            except Exception as e:
                raise PageReadError(offset, limit, str(e), cause=e) from e

            if span is not None:
                span.set_attribute(ATTR_RECORD_COUNT, len(records))

            logger.debug("Read %d records at offset %d", len(records), offset)
            return records

    @staticmethod
    def pages(total: int, batch_size: int) -> Iterator[tuple[int, int]]:
        """
        Enumerate the pages covering ``total`` records.

        Args:
            total: Number of records.
            batch_size: Page size.

        Yields:
            (batch_number, offset) pairs; batch numbers start at 1.
        """
        for index in range(math.ceil(total / batch_size)):
            yield index + 1, index * batch_size


__all__ = ["BatchReader"]
