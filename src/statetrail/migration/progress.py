"""
Progress reporting for migration runs.
"""

import logging

from statetrail.models import PageProgress


class LoggingProgressReporter:
    """
    Progress callback that logs one line per page.

    Example:
        >>> migrator = StateMigrator(
        ...     source, target, progress_callback=LoggingProgressReporter()
        ... )
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._level = level

    def __call__(self, progress: PageProgress) -> None:
        if progress.page_failed:
            self._logger.log(
                self._level,
                "Batch %d/%d at offset %d skipped: page read failed",
                progress.batch_number,
                progress.total_batches,
                progress.offset,
            )
            return

        self._logger.log(
            self._level,
            "Batch %d/%d: %d/%d records (%.1f%%) | instruction_states %d written, %d failed"
            " | order_state_history %d written, %d failed",
            progress.batch_number,
            progress.total_batches,
            progress.records_processed,
            progress.records_total,
            progress.progress_percent,
            progress.direct_written,
            progress.direct_failed,
            progress.history_written,
            progress.history_failed,
        )


__all__ = ["LoggingProgressReporter"]
