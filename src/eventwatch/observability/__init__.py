"""
Observability utilities for eventwatch.

Tracing is composition based: components accept an optional ``tracer`` and
otherwise build one with :func:`create_tracer`. When OpenTelemetry is not
installed every component falls back to :class:`NullTracer`.

Example:
    >>> from eventwatch.observability import create_tracer
    >>>
    >>> class MyStore:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...
    ...     def save(self, location: str) -> None:
    ...         with self._tracer.span("my_store.save", {"location": location}):
    ...             pass
"""

from eventwatch.observability.attributes import (
    ATTR_ACTION_COUNT,
    ATTR_ACTION_NAME,
    ATTR_ADDRESSING_MODE,
    ATTR_BATCH_SIZE,
    ATTR_ERROR_TYPE,
    ATTR_FILTER_EXPRESSION,
    ATTR_RECORD_ID,
    ATTR_RECORD_SEQUENCE,
    ATTR_SOURCE_IDENTIFIER,
    ATTR_STORE_LOCATION,
    ATTR_STORE_OPERATION,
    ATTR_SUBSCRIPTION_TAG,
)
from eventwatch.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from eventwatch.observability.tracing import OTEL_AVAILABLE, get_tracer

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_ACTION_COUNT",
    "ATTR_ACTION_NAME",
    "ATTR_ADDRESSING_MODE",
    "ATTR_BATCH_SIZE",
    "ATTR_ERROR_TYPE",
    "ATTR_FILTER_EXPRESSION",
    "ATTR_RECORD_ID",
    "ATTR_RECORD_SEQUENCE",
    "ATTR_SOURCE_IDENTIFIER",
    "ATTR_STORE_LOCATION",
    "ATTR_STORE_OPERATION",
    "ATTR_SUBSCRIPTION_TAG",
]
