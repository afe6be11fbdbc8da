"""In-memory stand-in for a document collection."""

import copy
import re
from collections.abc import Mapping

import pytest
from bson.objectid import ObjectId

from typed_documents.store import DeleteFlags, UpdateFlags


def _compare(value, op, operand):
    if value is None:
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        return value <= operand
    except TypeError:
        return False


def _equals(value, expected):
    if value == expected:
        return True
    return isinstance(value, list) and expected in value


def _matches_condition(value, condition):
    if not (isinstance(condition, Mapping) and condition and all(k.startswith("$") for k in condition)):
        return _equals(value, condition)

    for op, operand in condition.items():
        if op == "$ne":
            if _equals(value, operand):
                return False
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            if not _compare(value, op, operand):
                return False
        elif op == "$in":
            if not any(_equals(value, o) for o in operand):
                return False
        elif op == "$nin":
            if any(_equals(value, o) for o in operand):
                return False
        elif op == "$exists":
            if operand != (value is not _MISSING):
                return False
        elif op == "$size":
            if not isinstance(value, list) or len(value) != operand:
                return False
        elif op == "$all":
            if not isinstance(value, list) or any(o not in value for o in operand):
                return False
        elif op == "$mod":
            if not isinstance(value, int) or value % operand[0] != operand[1]:
                return False
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            if not isinstance(value, str) or not re.search(operand, value, flags):
                return False
        elif op == "$options":
            continue
        else:
            raise NotImplementedError(op)
    return True


_MISSING = object()


def matches(document, filter):
    """Evaluate the subset of filter operators the tests use."""
    for key, condition in (filter or {}).items():
        if key == "$and":
            if not all(matches(document, f) for f in condition):
                return False
        elif key == "$or":
            if not any(matches(document, f) for f in condition):
                return False
        elif key == "$nor":
            if any(matches(document, f) for f in condition):
                return False
        else:
            value = document.get(key, _MISSING)
            if isinstance(condition, Mapping) and "$exists" in condition:
                if not _matches_condition(value, condition):
                    return False
            elif value is _MISSING:
                if condition is not None:
                    return False
            elif not _matches_condition(value, condition):
                return False
    return True


class FakeCursor:
    """Cursor over a snapshot of matching documents."""

    def __init__(self, documents):
        self._documents = documents
        self._order = []
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        if isinstance(key_or_list, str):
            key_or_list = [(key_or_list, direction or 1)]
        self._order = list(key_or_list)
        return self

    def limit(self, limit):
        self._limit = limit
        return self

    def skip(self, skip):
        self._skip = skip
        return self

    def __iter__(self):
        docs = list(self._documents)
        for key, direction in reversed(self._order):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        docs = docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        return iter(copy.deepcopy(docs))


class FakeCollection:
    """Collection keeping its documents in a list."""

    def __init__(self, name="records"):
        self._name = name
        self.documents = []
        self.indexes = []
        self.pipelines = []
        self.aggregate_results = []
        self.dropped = False

    @property
    def name(self):
        return self._name

    def _matching(self, filter):
        return [d for d in self.documents if matches(d, filter)]

    def find_one(self, filter):
        found = self._matching(filter)
        return copy.deepcopy(found[0]) if found else None

    def find(self, filter=None, flags=0, skip=0, batch_size=0):
        return FakeCursor(self._matching(filter)).skip(skip)

    def insert(self, documents, flags=0):
        if isinstance(documents, Mapping):
            documents = [documents]
        for doc in documents:
            # Like pymongo, assign missing ids in place
            doc.setdefault("_id", ObjectId())
            self.documents.append(copy.deepcopy(dict(doc)))

    def update(self, filter, update, flags=UpdateFlags.NONE):
        found = self._matching(filter)
        if not (flags & UpdateFlags.MULTI_UPDATE):
            found = found[:1]
        is_operator = all(k.startswith("$") for k in update)

        if not found:
            if flags & UpdateFlags.UPSERT:
                base = {k: v for k, v in filter.items() if not k.startswith("$") and not isinstance(v, Mapping)}
                if is_operator:
                    base.update(copy.deepcopy(update.get("$set", {})))
                else:
                    base.update(copy.deepcopy(dict(update)))
                self.insert(base)
            return

        for doc in found:
            if is_operator:
                for op, fields in update.items():
                    if op == "$set":
                        doc.update(copy.deepcopy(dict(fields)))
                    elif op == "$inc":
                        for k, v in fields.items():
                            doc[k] = doc.get(k, 0) + v
                    else:
                        raise NotImplementedError(op)
            else:
                object_id = doc["_id"]
                doc.clear()
                doc["_id"] = object_id
                doc.update(copy.deepcopy({k: v for k, v in update.items() if k != "_id"}))

    def remove(self, filter=None, flags=DeleteFlags.NONE):
        found = self._matching(filter)
        if flags & DeleteFlags.SINGLE_REMOVE:
            found = found[:1]
        for doc in found:
            self.documents.remove(doc)

    def ensure_index(self, fields, flags=0, expire_after_seconds=0):
        self.indexes.append((list(fields), flags, expire_after_seconds))

    def count(self, filter=None):
        return len(self._matching(filter))

    def drop(self):
        self.documents.clear()
        self.dropped = True

    def aggregate(self, pipeline, **options):
        self.pipelines.append(list(pipeline))
        return iter(copy.deepcopy(self.aggregate_results))


@pytest.fixture
def collection():
    return FakeCollection()
