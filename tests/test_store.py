"""Tests for the pymongo collection adapter."""

import logging
from unittest.mock import MagicMock, patch

import pytest
from pymongo import CursorType

from typed_documents.store import (
    Collection,
    DeleteFlags,
    IndexFlags,
    InsertFlags,
    PyMongoCollection,
    QueryFlags,
    UpdateFlags,
    connect,
)


@pytest.fixture
def raw():
    mock = MagicMock()
    mock.name = "users"
    return mock


@pytest.fixture
def adapter(raw):
    return PyMongoCollection(raw)


class TestProtocol:
    """Tests for the collection protocol."""

    def test_adapter_is_a_collection(self, adapter):
        """Test the adapter satisfies the protocol."""
        assert isinstance(adapter, Collection)
        assert adapter.name == "users"

    def test_fake_is_a_collection(self, collection):
        """Test the in-memory test collection satisfies the protocol too."""
        assert isinstance(collection, Collection)


class TestPyMongoCollection:
    """Tests for the translation to pymongo calls."""

    def test_find_one(self, adapter, raw):
        """Test find_one is passed through."""
        raw.find_one.return_value = {"a": 1}
        assert adapter.find_one({"a": 1}) == {"a": 1}
        raw.find_one.assert_called_once_with({"a": 1})

    def test_find(self, adapter, raw):
        """Test find options."""
        adapter.find(None, QueryFlags.NO_CURSOR_TIMEOUT | QueryFlags.PARTIAL, skip=3, batch_size=10)
        raw.find.assert_called_once_with(
            {},
            skip=3,
            batch_size=10,
            cursor_type=CursorType.NON_TAILABLE,
            no_cursor_timeout=True,
            allow_partial_results=True,
        )

    def test_find_tailable(self, adapter, raw):
        """Test tailable cursors."""
        adapter.find({}, QueryFlags.TAILABLE_CURSOR | QueryFlags.AWAIT_DATA)
        assert raw.find.call_args.kwargs["cursor_type"] == CursorType.TAILABLE_AWAIT

    def test_insert(self, adapter, raw):
        """Test single and bulk inserts."""
        adapter.insert({"a": 1})
        raw.insert_one.assert_called_once_with({"a": 1})
        adapter.insert([{"a": 1}, {"a": 2}], InsertFlags.CONTINUE_ON_ERROR)
        raw.insert_many.assert_called_once_with([{"a": 1}, {"a": 2}], ordered=False)

    def test_update_replacement(self, adapter, raw):
        """Test whole documents replace the match."""
        adapter.update({"_id": 1}, {"a": 2}, UpdateFlags.UPSERT)
        raw.replace_one.assert_called_once_with({"_id": 1}, {"a": 2}, upsert=True)

    def test_update_operators(self, adapter, raw):
        """Test operator documents update one or many."""
        adapter.update({}, {"$set": {"a": 2}})
        raw.update_one.assert_called_once_with({}, {"$set": {"a": 2}}, upsert=False)
        adapter.update({}, {"$set": {"a": 3}}, UpdateFlags.MULTI_UPDATE)
        raw.update_many.assert_called_once_with({}, {"$set": {"a": 3}}, upsert=False)

    def test_remove(self, adapter, raw):
        """Test single and multiple removes."""
        adapter.remove({"a": 1}, DeleteFlags.SINGLE_REMOVE)
        raw.delete_one.assert_called_once_with({"a": 1})
        adapter.remove()
        raw.delete_many.assert_called_once_with({})

    def test_ensure_index(self, adapter, raw):
        """Test index flags become create_index options."""
        adapter.ensure_index(
            [("created", 1)],
            IndexFlags.UNIQUE | IndexFlags.SPARSE | IndexFlags.BACKGROUND | IndexFlags.EXPIRE_AFTER_SECONDS,
            60,
        )
        raw.create_index.assert_called_once_with(
            [("created", 1)], background=True, sparse=True, unique=True, expireAfterSeconds=60
        )

    def test_ensure_index_drop_duplicates(self, adapter, raw, caplog):
        """Test dropDups is ignored with a warning."""
        with caplog.at_level(logging.WARNING, logger="typed_documents.store"):
            adapter.ensure_index([("a", 1)], IndexFlags.DROP_DUPLICATES)
        assert "dropDups" in caplog.text
        raw.create_index.assert_called_once_with([("a", 1)])

    def test_count_drop_aggregate(self, adapter, raw):
        """Test the remaining verbs."""
        raw.count_documents.return_value = 4
        assert adapter.count() == 4
        raw.count_documents.assert_called_once_with({})
        adapter.drop()
        raw.drop.assert_called_once_with()
        adapter.aggregate(({"$limit": 1},), allowDiskUse=True)
        raw.aggregate.assert_called_once_with([{"$limit": 1}], allowDiskUse=True)

    def test_raw(self, adapter, raw):
        """Test the wrapped collection is reachable."""
        assert adapter.raw is raw


class TestConnect:
    """Tests for connect."""

    def test_connect(self):
        """Test connect opens a client and picks the collection."""
        with patch("typed_documents.store.MongoClient") as client_class:
            adapter = connect("mongodb://localhost", "app", "users", tz_aware=True)
        client_class.assert_called_once_with("mongodb://localhost", tz_aware=True)
        client_class.return_value.__getitem__.assert_called_once_with("app")
        assert adapter.raw is client_class.return_value["app"]["users"]
