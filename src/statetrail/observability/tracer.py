"""
Tracer protocol and implementations.

Every pipeline component takes a ``tracer`` argument and opens spans
through it. Nothing outside this module imports OpenTelemetry.

Implementations:
    - OpenTelemetryTracer: spans on the globally configured provider
    - NullTracer: tracing switched off, spans yield None
    - MockTracer: records spans and the attributes set on them, for tests

Components guard ``set_attribute`` calls with ``if span is not None`` so
the same code runs under every implementation.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("statetrail.reader.read_page", {"statetrail.page.offset": 0}) as span:
    ...     records = await source.read_page(0, 100)
    ...     if span is not None:
    ...         span.set_attribute("statetrail.record.count", len(records))
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator, Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

Attributes = Mapping[str, Any]


def _clean(attributes: Attributes | None) -> dict[str, Any]:
    # OpenTelemetry rejects None attribute values
    if not attributes:
        return {}
    return {key: value for key, value in attributes.items() if value is not None}


@runtime_checkable
class Tracer(Protocol):
    """Creates spans around store calls and pipeline steps."""

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[Any]:
        """
        Open a span for the duration of a ``with`` block.

        Args:
            name: Span name, ``statetrail.<component>.<operation>``.
            attributes: Initial attributes; None values are dropped.

        Returns:
            Context manager yielding an object with ``set_attribute``,
            or None when tracing is disabled.
        """
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans are actually produced."""
        ...


class NullTracer:
    """Tracer used when tracing is disabled."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the OpenTelemetry API.

    Spans go to whatever TracerProvider the application configured; with
    none configured the API's no-op provider is used. Exceptions leaving a
    span are recorded on it and mark it as errored.

    Args:
        tracer_name: Instrumentation scope name (typically __name__)
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[Span]:
        return self._tracer.start_as_current_span(
            name,
            attributes=_clean(attributes),
            record_exception=True,
            set_status_on_exception=True,
        )

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """
    A span captured by MockTracer.

    Attributes:
        name: Span name.
        attributes: Attributes passed when the span was opened, plus any
            set while it was open.
        error: Exception that left the span, if any.
    """

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    def set_attribute(self, key: str, value: Any) -> None:
        if value is not None:
            self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests that keeps every span in opening order.

    Example:
        >>> tracer = MockTracer()
        >>> writer = BatchWriter(target, tracer=tracer)
        >>> await writer.write_batch(direct, history, batch_number=1)
        >>> tracer.find("statetrail.writer.write_target")[0].attributes["statetrail.rows.written"]
        100
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> Generator[RecordedSpan, None, None]:
        recorded = RecordedSpan(name=name, attributes=_clean(attributes))
        self.spans.append(recorded)
        try:
            yield recorded
        except BaseException as e:
            recorded.error = e
            raise

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        """Names of the recorded spans, in opening order."""
        return [span.name for span in self.spans]

    def find(self, name: str) -> list[RecordedSpan]:
        """Recorded spans with the given name."""
        return [span for span in self.spans if span.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a component uses when none is injected.

    Args:
        name: Instrumentation scope name (typically __name__)
        enable_tracing: False to get a NullTracer

    Returns:
        OpenTelemetryTracer if enabled, NullTracer otherwise

    Example:
        >>> self._tracer = tracer or create_tracer(__name__, enable_tracing)
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "MockTracer",
    "create_tracer",
]
