"""
Standard span attributes for eventwatch.

Example:
    >>> from eventwatch.observability.attributes import ATTR_SOURCE_IDENTIFIER
    >>>
    >>> with tracer.span(
    ...     "eventwatch.chain.dispatch",
    ...     {ATTR_SOURCE_IDENTIFIER: query.source_identifier},
    ... ):
    ...     pass
"""

# =============================================================================
# Query / source attributes
# =============================================================================

ATTR_SOURCE_IDENTIFIER = "eventwatch.source.identifier"
"""Log name or file path being watched (string)."""

ATTR_ADDRESSING_MODE = "eventwatch.source.addressing_mode"
"""How the source identifier is interpreted ("by_name" or "by_file_path")."""

ATTR_FILTER_EXPRESSION = "eventwatch.query.filter"
"""Filter expression of the watched query (string)."""

# =============================================================================
# Record attributes
# =============================================================================

ATTR_RECORD_ID = "eventwatch.record.id"
"""Identifier of the delivered record (string)."""

ATTR_RECORD_SEQUENCE = "eventwatch.record.sequence"
"""Record sequence number within its source (integer)."""

# =============================================================================
# Position store attributes
# =============================================================================

ATTR_STORE_LOCATION = "eventwatch.store.location"
"""Resolved position store location (string)."""

ATTR_STORE_OPERATION = "eventwatch.store.operation"
"""Store operation ("save", "load", "delete")."""

ATTR_BATCH_SIZE = "eventwatch.store.batch_size"
"""Number of pairs in a batch store operation (integer)."""

# =============================================================================
# Subscription attributes
# =============================================================================

ATTR_SUBSCRIPTION_TAG = "eventwatch.subscription.tag"
"""Tag the subscription was registered under (string)."""

ATTR_ACTION_COUNT = "eventwatch.chain.action_count"
"""Number of actions in a callback chain, persistence included (integer)."""

ATTR_ACTION_NAME = "eventwatch.chain.action_name"
"""Name of the chain action being invoked (string)."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails (OTEL semantic)."""
