"""Observability helpers."""

from observatory.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_collection,
    record_parser_failure,
    record_usage_snapshot,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_collection",
    "record_parser_failure",
    "record_usage_snapshot",
]
