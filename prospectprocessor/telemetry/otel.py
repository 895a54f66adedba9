"""OpenTelemetry span helpers for pipeline cycles and lookups."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

TRACER_NAME = "prospectprocessor"


def _span_set_attributes(span: Any, attributes: Optional[Dict[str, Any]]) -> None:
    if span is None or attributes is None:
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


@contextmanager
def start_span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
    """Start a span on the package tracer.

    Without a configured SDK the API hands back a non-recording span, so callers
    can set attributes unconditionally.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        _span_set_attributes(span, attributes)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
