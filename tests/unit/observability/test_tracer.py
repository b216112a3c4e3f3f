"""
Unit tests for the Tracer protocol and implementations.

Tests cover:
- Tracer protocol definition
- NullTracer no-op behavior
- OpenTelemetryTracer wrapping
- MockTracer span and attribute recording
- create_tracer factory
"""

import pytest

from statetrail.observability import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)


class TestTracerProtocol:
    """Tests for the Tracer protocol."""

    def test_implementations_satisfy_protocol(self):
        """Test every implementation is a Tracer."""
        assert isinstance(NullTracer(), Tracer)
        assert isinstance(MockTracer(), Tracer)
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)


class TestNullTracer:
    """Tests for NullTracer."""

    def test_span_yields_none(self):
        """Test span does nothing and yields None."""
        with NullTracer().span("op", {"k": "v"}) as span:
            assert span is None

    def test_disabled(self):
        """Test enabled is False."""
        assert NullTracer().enabled is False


class TestOpenTelemetryTracer:
    """Tests for OpenTelemetryTracer."""

    def test_span_accepts_attributes(self):
        """Test a span can be opened with the API's default provider."""
        tracer = OpenTelemetryTracer(__name__)
        with tracer.span("statetrail.test", {"statetrail.page.offset": 0}) as span:
            assert span is not None
            span.set_attribute("statetrail.record.count", 3)

    def test_none_attributes_dropped(self):
        """Test None-valued attributes do not reach OpenTelemetry."""
        with OpenTelemetryTracer(__name__).span("statetrail.test", {"statetrail.lookup.kind": None}):
            pass

    def test_enabled(self):
        """Test enabled is True."""
        assert OpenTelemetryTracer(__name__).enabled is True


class TestMockTracer:
    """Tests for MockTracer."""

    def test_records_spans(self):
        """Test names and attributes are recorded in order."""
        tracer = MockTracer()
        with tracer.span("first", {"a": 1}):
            pass
        with tracer.span("second"):
            pass

        assert tracer.span_names == ["first", "second"]
        assert tracer.spans[0].attributes == {"a": 1}
        assert tracer.spans[1].attributes == {}

    def test_yields_recording_span(self):
        """Test attributes set inside the span are kept and None is dropped."""
        tracer = MockTracer()
        with tracer.span("op", {"a": 1, "b": None}) as span:
            span.set_attribute("rows", 3)
            span.set_attribute("missing", None)

        assert tracer.find("op")[0].attributes == {"a": 1, "rows": 3}

    def test_records_error(self):
        """Test an exception leaving the span is recorded and re-raised."""
        tracer = MockTracer()
        with pytest.raises(RuntimeError), tracer.span("op"):
            raise RuntimeError("failed")

        assert isinstance(tracer.spans[0].error, RuntimeError)

    def test_clear(self):
        """Test clear forgets recorded spans."""
        tracer = MockTracer()
        with tracer.span("op"):
            pass
        tracer.clear()
        assert tracer.spans == []


class TestCreateTracer:
    """Tests for the create_tracer factory."""

    def test_enabled_returns_opentelemetry_tracer(self):
        """Test tracing enabled."""
        assert isinstance(create_tracer(__name__, True), OpenTelemetryTracer)

    def test_disabled_returns_null_tracer(self):
        """Test tracing disabled."""
        assert isinstance(create_tracer(__name__, False), NullTracer)
