"""
Unit tests for EventRecord.
"""

from collections.abc import Callable
from datetime import UTC

import pytest
from pydantic import ValidationError

from eventwatch.events.record import EventRecord
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query


class TestEventRecord:
    """Tests for EventRecord construction."""

    def test_defaults(self):
        """Test generated id and UTC timestamp."""
        record = EventRecord(record_sequence=1, source_identifier="Application")

        assert record.id
        assert record.time_created.tzinfo == UTC
        assert record.payload == {}
        assert record.machine_origin == ""

    def test_ids_are_unique(self):
        first = EventRecord(record_sequence=1, source_identifier="Application")
        second = EventRecord(record_sequence=1, source_identifier="Application")

        assert first.id != second.id

    def test_record_is_frozen(self, make_record: Callable[..., EventRecord]):
        record = make_record(1)

        with pytest.raises(ValidationError):
            record.record_sequence = 2  # type: ignore[misc]

    @pytest.mark.parametrize(
        "fields",
        [
            {"record_sequence": -1, "source_identifier": "Application"},
            {"record_sequence": 1, "source_identifier": ""},
        ],
    )
    def test_invalid_fields(self, fields: dict):
        with pytest.raises(ValidationError):
            EventRecord(**fields)

    def test_str(self, make_record: Callable[..., EventRecord]):
        record = make_record(9, id="abc")

        assert str(record) == "EventRecord(Application#9, id=abc)"


class TestPositionFor:
    """Tests for deriving a record's position token."""

    def test_yields_token_for_record(self, make_record: Callable[..., EventRecord], query: Query):
        record = make_record(12, id="rec-12")

        token = record.position_for(query)

        assert isinstance(token, PositionToken)
        assert token.source_identifier == "Application"
        assert token.query_key == query.key
        assert token.record_sequence == 12
        assert token.record_id == "rec-12"
        assert token.time_created == record.time_created

    def test_same_record_same_token(self, make_record: Callable[..., EventRecord], query: Query):
        record = make_record(3)

        assert record.position_for(query) == record.position_for(query)

    def test_token_bound_to_query(
        self,
        make_record: Callable[..., EventRecord],
        query: Query,
        other_query: Query,
    ):
        record = make_record(3)

        assert record.position_for(query).query_key != record.position_for(other_query).query_key


class TestFieldValue:
    """Tests for filter field resolution."""

    def test_record_fields(self, make_record: Callable[..., EventRecord]):
        record = make_record(5, id="r5", machine_origin="db-02")

        assert record.field_value("id") == "r5"
        assert record.field_value("record_sequence") == 5
        assert record.field_value("machine_origin") == "db-02"

    def test_nested_payload(self, make_record: Callable[..., EventRecord]):
        record = make_record(1, payload={"a": {"b": {"c": 3}}})

        assert record.field_value("payload.a.b.c") == 3
        assert record.field_value("payload.a.x") is None
        assert record.field_value("payload.a.b.c.d") is None

    def test_unknown_path(self, make_record: Callable[..., EventRecord]):
        assert make_record(1).field_value("severity") is None
