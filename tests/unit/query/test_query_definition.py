"""
Unit tests for Query and new_query().
"""

import pytest

from eventwatch.exceptions import QueryError
from eventwatch.query.definition import AddressingMode, Query, new_query
from eventwatch.query.filter import EventFilter


class TestNewQuery:
    """Tests for building valid queries."""

    def test_defaults(self):
        """Test the default filter and addressing mode."""
        query = new_query("Application")

        assert query.source_identifier == "Application"
        assert query.filter_expression == "*"
        assert query.addressing_mode is AddressingMode.BY_NAME

    def test_mode_from_string(self):
        """Test that the addressing mode may be given by value."""
        query = new_query("/var/log/app.evtx", "*", "by_file_path")

        assert query.addressing_mode is AddressingMode.BY_FILE_PATH

    @pytest.mark.parametrize("path", ["/var/log/app.evtx", "./exports/app.evtx", "../app.evtx"])
    def test_file_path_sources(self, path: str):
        """Test absolute and relative-marked file path sources."""
        query = new_query(path, addressing_mode=AddressingMode.BY_FILE_PATH)

        assert query.source_identifier == path

    def test_query_is_frozen(self):
        query = new_query("Application")

        with pytest.raises(AttributeError):
            query.source_identifier = "System"  # type: ignore[misc]

    def test_queries_are_hashable_values(self):
        assert new_query("Application") == new_query("Application")
        assert len({new_query("Application"), new_query("Application")}) == 1

    def test_compile_filter(self):
        """Test that each compile returns a fresh filter with its own stats."""
        query = new_query("Application", "payload.level = error")

        first = query.compile_filter()
        second = query.compile_filter()

        assert isinstance(first, EventFilter)
        assert first is not second
        assert first.stats is not second.stats


class TestQueryKey:
    """Tests for the stable query key."""

    def test_key_includes_every_field(self):
        query = new_query("Application", "payload.level = error")

        assert query.key == "by_name:Application|payload.level = error"

    def test_key_differs_by_filter(self):
        assert new_query("Application").key != new_query("Application", "id = x").key

    def test_key_differs_by_mode(self):
        by_name = new_query("./app.evtx")
        by_path = new_query("./app.evtx", addressing_mode=AddressingMode.BY_FILE_PATH)

        assert by_name.key != by_path.key

    def test_key_ignores_surrounding_whitespace(self):
        assert new_query("Application", " * ").key == new_query("Application", "*").key


class TestQueryErrors:
    """Tests for rejected queries."""

    @pytest.mark.parametrize("identifier", ["", "   ", None, 17])
    def test_empty_or_non_string_identifier(self, identifier: object):
        with pytest.raises(QueryError) as exc_info:
            new_query(identifier)  # type: ignore[arg-type]

        assert exc_info.value.source_identifier == identifier

    def test_unmarked_relative_file_path(self):
        """Test that file path sources must be absolute or relative-marked."""
        with pytest.raises(QueryError) as exc_info:
            new_query("exports/app.evtx", addressing_mode=AddressingMode.BY_FILE_PATH)

        assert "relative-path marker" in exc_info.value.reason

    def test_bad_filter_echoes_inputs(self):
        """Test that the error echoes identifier, filter and mode."""
        with pytest.raises(QueryError) as exc_info:
            new_query("Application", "level = error")

        error = exc_info.value
        assert error.source_identifier == "Application"
        assert error.filter_expression == "level = error"
        assert error.addressing_mode is AddressingMode.BY_NAME
        assert "'Application'" in str(error)
        assert "'level = error'" in str(error)
        assert "'by_name'" in str(error)
        assert error.__cause__ is not None

    def test_unknown_mode(self):
        with pytest.raises(QueryError):
            new_query("Application", "*", "by_magic")

    def test_non_string_filter(self):
        with pytest.raises(QueryError):
            Query("Application", filter_expression=None)  # type: ignore[arg-type]
