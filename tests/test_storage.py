"""
Tests for the record store.

Tests cover:
- Single-flight schema initialization
- Board ordering and tie-breaking
- Insert, partial content update and arrangement update rules
- StoreUnavailable when the database is not configured or unreachable
"""

import threading
from types import SimpleNamespace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from guestbook.errors import ContentRequired, NotFound, NothingToUpdate, StoreUnavailable
from guestbook.storage import (
    SchemaGate,
    count_messages,
    ensure_schema,
    get_engine,
    get_max_order_index,
    insert_message,
    list_messages,
    schema_gate,
    update_message_arrangement,
    update_message_content,
)


class TestSchemaGate:
    """Test the lazy, shared schema initialization."""

    def test_concurrent_callers_share_one_initialization(self):
        """Callers arriving while initialization runs wait for it instead of re-running it."""
        calls = []
        started = threading.Event()
        release = threading.Event()

        def initializer():
            calls.append(1)
            started.set()
            release.wait(timeout=5)

        gate = SchemaGate(initializer)
        threads = [threading.Thread(target=gate.ensure) for _ in range(8)]
        for t in threads:
            t.start()

        assert started.wait(timeout=5)
        release.set()
        for t in threads:
            t.join(timeout=5)

        assert len(calls) == 1
        assert gate.ready

    def test_completed_initialization_is_not_repeated(self):
        calls = []
        gate = SchemaGate(lambda: calls.append(1))

        gate.ensure()
        gate.ensure()
        gate.ensure()

        assert len(calls) == 1

    def test_failed_initialization_is_retried(self):
        """A failure is reported to the caller and the next call tries again."""
        attempts = []

        def initializer():
            attempts.append(1)
            if len(attempts) == 1:
                raise StoreUnavailable("database down")

        gate = SchemaGate(initializer)

        with pytest.raises(StoreUnavailable):
            gate.ensure()
        assert not gate.ready

        gate.ensure()
        assert gate.ready
        assert len(attempts) == 2

    def test_reset_allows_reinitialization(self):
        calls = []
        gate = SchemaGate(lambda: calls.append(1))

        gate.ensure()
        gate.reset()
        gate.ensure()

        assert len(calls) == 2


class TestListOrdering:
    """Test list() ordering guarantees."""

    def test_empty_store(self, db):
        assert list_messages(db) == []
        assert count_messages(db) == 0
        assert get_max_order_index(db) is None

    def test_sorted_by_order_index(self, db):
        insert_message(db, "c", "third", order_index=2)
        insert_message(db, "a", "first", order_index=0)
        insert_message(db, "b", "second", order_index=1)

        assert [m.title for m in list_messages(db)] == ["a", "b", "c"]

    def test_ties_broken_by_newest_first(self, db):
        older = insert_message(db, "older", "x", order_index=0)
        newer = insert_message(db, "newer", "y", order_index=0)

        older.created_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        db.commit()

        assert [m.id for m in list_messages(db)] == [newer.id, older.id]

    def test_identical_timestamps_fall_back_to_id(self, db):
        first = insert_message(db, "first", "x", order_index=0)
        second = insert_message(db, "second", "y", order_index=0)

        stamp = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        first.created_at = stamp
        second.created_at = stamp
        db.commit()

        assert [m.id for m in list_messages(db)] == [second.id, first.id]

    def test_order_is_stable_across_reads(self, db):
        for i in range(5):
            insert_message(db, f"t{i}", "body", order_index=i % 2)

        first_read = [m.id for m in list_messages(db)]
        second_read = [m.id for m in list_messages(db)]

        assert first_read == second_read


class TestInsert:
    """Test insert() behavior."""

    def test_assigns_id_and_timestamps(self, db):
        message = insert_message(db, "title", "content", order_index=3, pos_x=10, pos_y=20)

        assert message.id is not None
        assert message.created_at is not None
        assert message.updated_at == message.created_at
        assert (message.order_index, message.pos_x, message.pos_y) == (3, 10, 20)

    def test_ids_are_unique(self, db):
        ids = {insert_message(db, "t", f"c{i}").id for i in range(3)}

        assert len(ids) == 3

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, db, content):
        with pytest.raises(ContentRequired):
            insert_message(db, "title", content)

        assert count_messages(db) == 0


class TestUpdateContent:
    """Test updateContent() partial update rules."""

    def test_content_only(self, db):
        message = insert_message(db, "keep me", "old", order_index=4, pos_x=5, pos_y=6)
        before = message.updated_at

        updated = update_message_content(db, message.id, content="new")

        assert updated.content == "new"
        assert updated.title == "keep me"
        assert (updated.order_index, updated.pos_x, updated.pos_y) == (4, 5, 6)
        assert updated.updated_at >= before

    def test_title_only(self, db):
        message = insert_message(db, "old title", "body")

        updated = update_message_content(db, message.id, title="new title")

        assert updated.title == "new title"
        assert updated.content == "body"

    def test_blank_content_rejected_and_unchanged(self, db):
        message = insert_message(db, "t", "original")

        with pytest.raises(ContentRequired):
            update_message_content(db, message.id, content="   ")

        db.expire_all()
        assert list_messages(db)[0].content == "original"

    def test_nothing_to_update(self, db):
        message = insert_message(db, "t", "c")

        with pytest.raises(NothingToUpdate):
            update_message_content(db, message.id)

    def test_unknown_id(self, db):
        with pytest.raises(NotFound) as exc_info:
            update_message_content(db, 999, content="x")

        assert exc_info.value.message_id == 999


class TestUpdateArrangement:
    """Test updateArrangement() rules."""

    def test_only_arrangement_fields_change(self, db):
        message = insert_message(db, "title", "content", order_index=0)

        updated = update_message_arrangement(db, message.id, order_index=7)

        assert updated.order_index == 7
        assert updated.title == "title"
        assert updated.content == "content"

    def test_position_update(self, db):
        message = insert_message(db, "t", "c", pos_x=32, pos_y=32)

        updated = update_message_arrangement(db, message.id, pos_x=-40, pos_y=5000)

        assert (updated.pos_x, updated.pos_y) == (-40, 5000)
        assert updated.order_index == message.order_index

    def test_unknown_id(self, db):
        with pytest.raises(NotFound):
            update_message_arrangement(db, 12345, order_index=0)

    def test_requires_a_field(self, db):
        message = insert_message(db, "t", "c")

        with pytest.raises(NothingToUpdate):
            update_message_arrangement(db, message.id)


class TestStoreUnavailable:
    """Test behavior when the database is missing or unreachable."""

    def test_missing_database_url(self, monkeypatch):
        monkeypatch.setattr(
            "guestbook.storage.get_settings", lambda: SimpleNamespace(DATABASE_URL=None)
        )
        get_engine.cache_clear()
        try:
            with pytest.raises(StoreUnavailable):
                get_engine()
        finally:
            get_engine.cache_clear()

    def test_operational_error_becomes_store_unavailable(self, db):
        """A failing query is rolled back and reported as StoreUnavailable."""

        class FailingSession:
            rolled_back = False

            def query(self, *args, **kwargs):
                raise OperationalError("SELECT", {}, Exception("disk I/O error"))

            def rollback(self):
                self.rolled_back = True

        session = FailingSession()
        with pytest.raises(StoreUnavailable) as exc_info:
            list_messages(session)

        assert session.rolled_back
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_unreachable_database_fails_schema_creation(self, fresh_store, monkeypatch, tmp_path):
        """A database file that cannot be opened fails the schema gate, which retries later."""
        db_dir = tmp_path / "not" / "created"
        monkeypatch.setattr(
            "guestbook.storage.get_settings",
            lambda: SimpleNamespace(DATABASE_URL=f"sqlite:///{db_dir / 'guestbook.db'}"),
        )
        get_engine.cache_clear()
        schema_gate.reset()
        try:
            with pytest.raises(StoreUnavailable):
                ensure_schema()
            assert not schema_gate.ready

            db_dir.mkdir(parents=True)
            ensure_schema()
            assert schema_gate.ready
        finally:
            get_engine().dispose()
            get_engine.cache_clear()
            schema_gate.reset()
