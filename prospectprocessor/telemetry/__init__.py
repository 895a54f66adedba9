"""Telemetry helpers."""

from .otel import start_span

__all__ = ["start_span"]
