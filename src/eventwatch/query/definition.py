"""
Query definition.

A Query names the source to watch, how the name is interpreted and which of
its records to deliver. Queries are immutable and carry a stable ``key`` that
position tokens record, so a token can only seed a watcher for the query it
was produced for.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import NoReturn

from eventwatch.exceptions import QueryError
from eventwatch.positions.location import is_relative_marked
from eventwatch.query.filter import MATCH_ALL, EventFilter, FilterSyntaxError, parse_filter


class AddressingMode(Enum):
    """How a query's source identifier is interpreted."""

    BY_NAME = "by_name"
    """The identifier is a log or channel name."""

    BY_FILE_PATH = "by_file_path"
    """The identifier is a path to an exported log file."""


@dataclass(frozen=True)
class Query:
    """
    Filtering criteria for one watched source.

    Attributes:
        source_identifier: Log name or log file path
        filter_expression: Filter selecting records ("*" selects all)
        addressing_mode: How source_identifier is interpreted

    Raises:
        QueryError: If any field is invalid. The error echoes all three
            inputs.
    """

    source_identifier: str
    filter_expression: str = MATCH_ALL
    addressing_mode: AddressingMode = AddressingMode.BY_NAME

    def __post_init__(self) -> None:
        if not isinstance(self.addressing_mode, AddressingMode):
            try:
                mode = AddressingMode(self.addressing_mode)
            except ValueError:
                self._reject(
                    f"addressing mode must be one of {[m.value for m in AddressingMode]}"
                )
            object.__setattr__(self, "addressing_mode", mode)

        if not isinstance(self.source_identifier, str) or not self.source_identifier.strip():
            self._reject("source identifier must be a non-empty string")

        if self.addressing_mode is AddressingMode.BY_FILE_PATH:
            identifier = self.source_identifier
            if not (os.path.isabs(identifier) or is_relative_marked(identifier)):
                self._reject(
                    "file path sources must be absolute or start with a "
                    "relative-path marker such as './'"
                )

        if not isinstance(self.filter_expression, str):
            self._reject("filter expression must be a string")
        try:
            parse_filter(self.filter_expression)
        except FilterSyntaxError as e:
            raise QueryError(
                self.source_identifier,
                self.filter_expression,
                self.addressing_mode,
                f"filter expression does not parse: {e}",
            ) from e

    def _reject(self, reason: str) -> NoReturn:
        raise QueryError(
            self.source_identifier,
            self.filter_expression,
            self.addressing_mode,
            reason,
        )

    @property
    def key(self) -> str:
        """Stable identity of this query, recorded in position tokens."""
        return (
            f"{self.addressing_mode.value}:{self.source_identifier}"
            f"|{self.filter_expression.strip()}"
        )

    def compile_filter(self) -> EventFilter:
        """Compile a fresh EventFilter (with its own statistics) for this query."""
        return parse_filter(self.filter_expression)

    def __str__(self) -> str:
        return f"Query({self.key})"


def new_query(
    source_identifier: str,
    filter_expression: str = MATCH_ALL,
    addressing_mode: AddressingMode | str = AddressingMode.BY_NAME,
) -> Query:
    """
    Build a validated query.

    Args:
        source_identifier: Log name (BY_NAME) or log file path (BY_FILE_PATH)
        filter_expression: Record filter, "*" for every record
        addressing_mode: How to interpret source_identifier

    Returns:
        Immutable Query

    Raises:
        QueryError: If the identifier is empty, a file path is neither
            absolute nor relative-marked, or the filter does not parse

    Example:
        >>> query = new_query("Application", "payload.level = error")
        >>> query.key
        'by_name:Application|payload.level = error'
    """
    return Query(
        source_identifier=source_identifier,
        filter_expression=filter_expression,
        addressing_mode=addressing_mode,  # type: ignore[arg-type]
    )


__all__ = ["AddressingMode", "Query", "new_query"]
