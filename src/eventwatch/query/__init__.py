"""
Queries and filter expressions.

Example:
    >>> from eventwatch.query import new_query, AddressingMode
    >>>
    >>> query = new_query("/var/log/export/app.evtx", "*", AddressingMode.BY_FILE_PATH)
"""

from eventwatch.query.definition import AddressingMode, Query, new_query
from eventwatch.query.filter import (
    MATCH_ALL,
    Clause,
    EventFilter,
    FilterStats,
    FilterSyntaxError,
    parse_filter,
)

__all__ = [
    "AddressingMode",
    "Query",
    "new_query",
    "MATCH_ALL",
    "Clause",
    "EventFilter",
    "FilterStats",
    "FilterSyntaxError",
    "parse_filter",
]
