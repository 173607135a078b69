"""
Unit tests for the position store contract using InMemoryPositionStore.

Tests cover:
- save/load round trip and overwrite semantics
- Missing locations
- Type tag checking
- Location resolution through the store
- Batch save/load with per-pair results
- Tracing spans
"""

from pathlib import Path
from typing import ClassVar

import pytest

from eventwatch.exceptions import (
    ArityMismatchError,
    BatchOperationError,
    InvalidLocationError,
    TypeMismatchError,
)
from eventwatch.observability import MockTracer
from eventwatch.positions.store import InMemoryPositionStore, PositionStore
from eventwatch.positions.token import PositionToken


class OtherToken(PositionToken):
    TYPE_TAG: ClassVar[str] = "tests.OtherToken/1"


def make_token(sequence: int) -> PositionToken:
    return PositionToken(
        source_identifier="Application",
        query_key="by_name:Application|*",
        record_sequence=sequence,
    )


class TestSaveLoad:
    """Tests for single-token save and load."""

    def test_implements_protocol(self, memory_store: InMemoryPositionStore):
        """Test that the store satisfies the PositionStore protocol."""
        assert isinstance(memory_store, PositionStore)

    def test_round_trip(self, memory_store: InMemoryPositionStore):
        """Test that a saved token loads back equal."""
        token = make_token(5)

        memory_store.save(token, "./app.pos")

        assert memory_store.load("./app.pos") == token

    def test_save_returns_resolved_path(self, memory_store: InMemoryPositionStore, workdir: Path):
        """Test that save reports the absolute path it wrote."""
        assert memory_store.save(make_token(1), "./app.pos") == workdir / "app.pos"

    def test_idempotent_save(self, memory_store: InMemoryPositionStore):
        """Test that saving the same token twice keeps a single entry."""
        token = make_token(5)

        memory_store.save(token, "./app.pos")
        memory_store.save(token, "./app.pos")

        assert memory_store.load("./app.pos") == token
        assert len(memory_store.locations) == 1

    def test_stale_overwrite(self, memory_store: InMemoryPositionStore):
        """Test that the last saved token wins, even if it is older."""
        memory_store.save(make_token(10), "./app.pos")
        memory_store.save(make_token(3), "./app.pos")

        assert memory_store.load("./app.pos").record_sequence == 3

    def test_missing_location_returns_none(self, memory_store: InMemoryPositionStore):
        """Test that a location never written means 'no prior position'."""
        assert memory_store.load("./never-written.pos") is None

    def test_load_with_wrong_expected_type(self, memory_store: InMemoryPositionStore):
        """Test that loading a PositionToken as another type fails."""
        memory_store.save(make_token(1), "./app.pos")

        with pytest.raises(TypeMismatchError):
            memory_store.load("./app.pos", OtherToken)

    def test_load_foreign_object(self, memory_store: InMemoryPositionStore):
        """Test that a location holding another object type fails on load."""
        memory_store.save(OtherToken(source_identifier="A", query_key="k", record_sequence=1), "./x.pos")

        with pytest.raises(TypeMismatchError):
            memory_store.load("./x.pos")

    def test_load_corrupt_bytes(self, memory_store: InMemoryPositionStore):
        """Test that raw non-token bytes fail with TypeMismatchError."""
        memory_store.put_raw("./app.pos", b"garbage")

        with pytest.raises(TypeMismatchError):
            memory_store.load("./app.pos")

    def test_save_rejects_non_token(self, memory_store: InMemoryPositionStore):
        """Test that only position tokens can be saved."""
        with pytest.raises(TypeMismatchError):
            memory_store.save({"record_sequence": 1}, "./app.pos")  # type: ignore[arg-type]

        assert memory_store.locations == []

    def test_delete(self, memory_store: InMemoryPositionStore):
        """Test deleting a stored token."""
        memory_store.save(make_token(1), "./app.pos")

        assert memory_store.delete("./app.pos") is True
        assert memory_store.delete("./app.pos") is False
        assert memory_store.load("./app.pos") is None


class TestLocations:
    """Tests for location resolution through the store."""

    def test_bare_relative_location_rejected(self, memory_store: InMemoryPositionStore):
        """Test that an unmarked relative location is rejected."""
        with pytest.raises(InvalidLocationError):
            memory_store.save(make_token(1), "app.pos")

    def test_same_file_through_different_spellings(
        self, memory_store: InMemoryPositionStore, workdir: Path
    ):
        """Test that './a.pos' and its absolute path address the same token."""
        memory_store.save(make_token(4), "./a.pos")

        assert memory_store.load(str(workdir / "a.pos")).record_sequence == 4

    def test_per_call_working_dir(self, memory_store: InMemoryPositionStore, tmp_path: Path):
        """Test that a per-call working_dir overrides the store's."""
        other = tmp_path / "other"

        path = memory_store.save(make_token(1), "./a.pos", working_dir=other)

        assert path == other / "a.pos"
        assert memory_store.load("./a.pos") is None
        assert memory_store.load("./a.pos", working_dir=other) is not None

    def test_process_cwd_used_only_without_working_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that the process working directory is read at call time."""
        store = InMemoryPositionStore(enable_tracing=False)
        monkeypatch.chdir(tmp_path)

        assert store.resolve("./a.pos") == tmp_path / "a.pos"


class TestBatch:
    """Tests for save_many() and load_many()."""

    def test_arity_mismatch_touches_nothing(self, memory_store: InMemoryPositionStore):
        """Test that mismatched lengths fail before any location is written."""
        with pytest.raises(ArityMismatchError) as exc_info:
            memory_store.save_many([make_token(1), make_token(2)], ["./a.pos"])

        assert exc_info.value.objects_count == 2
        assert exc_info.value.locations_count == 1
        assert memory_store.save_count == 0
        assert memory_store.locations == []

    def test_save_many_and_load_many(self, memory_store: InMemoryPositionStore):
        """Test a successful batch round trip."""
        tokens = [make_token(1), make_token(2), make_token(3)]
        locations = ["./a.pos", "./b.pos", "./c.pos"]

        saved = memory_store.save_many(tokens, locations)
        loaded = memory_store.load_many(locations)

        assert saved.succeeded == 3
        assert loaded.values == tokens

    def test_failed_pair_does_not_abort_batch(self, memory_store: InMemoryPositionStore):
        """Test per-pair error reporting."""
        result = memory_store.save_many(
            [make_token(1), make_token(2), make_token(3)],
            ["./a.pos", "not-marked.pos", "./c.pos"],
        )

        assert result.succeeded == 2
        assert result.failed == 1
        assert [item.ok for item in result.items] == [True, False, True]
        assert isinstance(result.items[1].error, InvalidLocationError)
        assert memory_store.load("./c.pos").record_sequence == 3

    def test_load_many_reports_missing_as_none(self, memory_store: InMemoryPositionStore):
        """Test that missing locations load as None, not as errors."""
        memory_store.save(make_token(1), "./a.pos")

        result = memory_store.load_many(["./a.pos", "./missing.pos"])

        assert result.failed == 0
        assert result.values[1] is None

    def test_load_many_expected_types_arity(self, memory_store: InMemoryPositionStore):
        """Test that expected_types must match locations in length."""
        with pytest.raises(ArityMismatchError):
            memory_store.load_many(["./a.pos", "./b.pos"], [PositionToken])

    def test_raise_for_errors(self, memory_store: InMemoryPositionStore):
        """Test that raise_for_errors lists every failed pair."""
        result = memory_store.save_many([make_token(1), "nope"], ["bad", "./b.pos"])

        with pytest.raises(BatchOperationError) as exc_info:
            result.raise_for_errors()

        assert len(exc_info.value.errors) == 2
        assert exc_info.value.total == 2
        assert "InvalidLocationError" in str(exc_info.value)
        assert "TypeMismatchError" in str(exc_info.value)


class TestTracing:
    """Tests for store tracing spans."""

    def test_save_and_load_spans(self, workdir: Path):
        """Test that save and load emit spans with the location."""
        tracer = MockTracer()
        store = InMemoryPositionStore(working_dir=workdir, tracer=tracer)

        store.save(make_token(1), "./a.pos")
        store.load("./a.pos")

        assert tracer.span_names == ["eventwatch.store.save", "eventwatch.store.load"]
        assert tracer.spans[0][1]["eventwatch.store.location"] == str(workdir / "a.pos")
