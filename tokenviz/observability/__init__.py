"""Observability helpers."""

from tokenviz.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_ingestion,
    record_parse_failures,
    record_token_totals,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_ingestion",
    "record_parse_failures",
    "record_token_totals",
]
