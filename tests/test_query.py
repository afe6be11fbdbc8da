"""Tests for the query expression builder."""

import enum
from dataclasses import dataclass, field
from typing import Annotated, Optional

import pytest
from bson.objectid import ObjectId

from typed_documents.annotations import binary_type, schema_ignore, schema_name
from typed_documents.document import DocumentType
from typed_documents.query import (
    FieldQuery,
    IntegerFieldQuery,
    Query,
    SequenceFieldQuery,
    TextFieldQuery,
    and_,
    nor,
    not_,
    or_,
    query,
)


class Role(enum.Enum):
    USER = 1
    ADMIN = 2


@dataclass
class Account:
    username: str = ""
    age: int = 0
    active: bool = False
    balance: float = 0.0
    role: Role = Role.USER
    tags: list[str] = field(default_factory=list)
    nickname: Optional[str] = None
    created: Annotated[int, schema_name("date-created")] = 0
    session: Annotated[int, schema_ignore] = 0
    avatar: Annotated[bytes, binary_type()] = b""
    owner: Optional[ObjectId] = None


@dataclass
class Other:
    name: str = ""


@dataclass
class Setting:
    set: str = ""
    document: int = 0


class TestFieldAccessors:
    """Tests for the per-field accessors."""

    @pytest.mark.parametrize(
        "name, cls",
        [
            ("username", TextFieldQuery),
            ("nickname", TextFieldQuery),
            ("age", IntegerFieldQuery),
            ("created", IntegerFieldQuery),
            ("tags", SequenceFieldQuery),
            ("active", FieldQuery),
            ("balance", FieldQuery),
            ("avatar", FieldQuery),
            ("owner", FieldQuery),
        ],
    )
    def test_accessor_kind(self, name, cls):
        """Test each field gets the operators that fit its type."""
        assert type(getattr(query(Account), name)) is cls

    def test_unknown_field(self):
        """Test unknown and ignored fields have no accessor."""
        with pytest.raises(AttributeError):
            query(Account).missing
        with pytest.raises(AttributeError):
            query(Account).session

    def test_operators_not_offered(self):
        """Test operators that do not fit the field type are missing."""
        with pytest.raises(AttributeError):
            query(Account).age.regex("1")
        with pytest.raises(AttributeError):
            query(Account).username.of_length(3)
        with pytest.raises(AttributeError):
            query(Account).tags.bits_all_set(1)

    def test_member_named_fields(self):
        """Test fields shadowed by query members are reached with field()."""
        q = query(Setting).field("set")("on").field("document").gt(1)
        assert q.document == {"set": "on", "document": {"$gt": 1}}

    def test_document_name(self):
        """Test renamed fields are queried under their stored key."""
        assert query(Account).created.name == "date-created"
        assert query(Account).created.gt(5).document == {"date-created": {"$gt": 5}}


class TestOperators:
    """Tests for the operators."""

    def test_equals(self):
        """Test calling a field is shorthand for equals."""
        assert query(Account).active(True).document == {"active": True}
        assert query(Account).username.equals("a").document == {"username": "a"}
        assert query(Account).username.eq("a").document == {"username": "a"}
        assert query(Account).username.equal("a").document == {"username": "a"}

    def test_operands_encoded(self):
        """Test operands go through the rule table."""
        assert query(Account).role(Role.ADMIN).document == {"role": 2}
        assert query(Account).role.one_of(Role.USER, Role.ADMIN).document == {"role": {"$in": [1, 2]}}

    @pytest.mark.parametrize(
        "method, op",
        [
            ("ne", "$ne"),
            ("not_equals", "$ne"),
            ("not_equal", "$ne"),
            ("gt", "$gt"),
            ("greater_than", "$gt"),
            ("gte", "$gte"),
            ("greater_than_or_equal", "$gte"),
            ("lt", "$lt"),
            ("less_than", "$lt"),
            ("lte", "$lte"),
            ("less_than_or_equal", "$lte"),
        ],
    )
    def test_comparisons(self, method, op):
        """Test comparison operators and their aliases."""
        q = getattr(query(Account).age, method)(18)
        assert q.document == {"age": {op: 18}}

    def test_membership(self):
        """Test $in and $nin in both spellings."""
        assert query(Account).age.one_of(1, 2).document == {"age": {"$in": [1, 2]}}
        assert query(Account).age.in_array([1, 2]).document == {"age": {"$in": [1, 2]}}
        assert query(Account).age.none_of(1, 2).document == {"age": {"$nin": [1, 2]}}
        assert query(Account).age.not_one_of(3).document == {"age": {"$nin": [3]}}
        assert query(Account).age.not_in_array([4]).document == {"age": {"$nin": [4]}}

    def test_exists_and_type(self):
        """Test $exists and $type."""
        assert query(Account).nickname.exists().document == {"nickname": {"$exists": True}}
        assert query(Account).nickname.exists(False).document == {"nickname": {"$exists": False}}
        assert query(Account).age.type_of(DocumentType.INT).document == {"age": {"$type": 16}}
        expected = {"age": {"$type": [16, 18]}}
        assert query(Account).age.type_of_any(DocumentType.INT, DocumentType.LONG).document == expected
        assert query(Account).age.type_of_any([DocumentType.INT, DocumentType.LONG]).document == expected

    def test_sequence_operators(self):
        """Test array operators."""
        assert query(Account).tags.contains_all(["a", "b"]).document == {"tags": {"$all": ["a", "b"]}}
        assert query(Account).tags.all(["a"]).document == {"tags": {"$all": ["a"]}}
        assert query(Account).tags.of_length(2).document == {"tags": {"$size": 2}}
        assert query(Account).tags.size(0).document == {"tags": {"$size": 0}}

    def test_integer_operators(self):
        """Test bit and modulo operators."""
        assert query(Account).age.bits_all_clear(6).document == {"age": {"$bitsAllClear": 6}}
        assert query(Account).age.bits_all_set([1, 5]).document == {"age": {"$bitsAllSet": [1, 5]}}
        assert query(Account).age.bits_any_clear(1).document == {"age": {"$bitsAnyClear": 1}}
        assert query(Account).age.bits_any_set(1).document == {"age": {"$bitsAnySet": 1}}
        assert query(Account).age.remainder(4, 0).document == {"age": {"$mod": [4, 0]}}

    def test_regex(self):
        """Test $regex with and without options."""
        assert query(Account).username.regex("^a").document == {"username": {"$regex": "^a"}}
        assert query(Account).username.regex("^a", "i").document == {
            "username": {"$regex": "^a", "$options": "i"}
        }

    def test_chaining(self):
        """Test operators on different fields accumulate."""
        q = query(Account).username("alice").age.gte(18)
        assert Query.to_bson(q) == {"username": "alice", "age": {"$gte": 18}}

    def test_last_write_wins(self):
        """Test a second operator on the same field replaces the first."""
        q = query(Account).age.gt(5).age.lt(10)
        assert q.document == {"age": {"$lt": 10}}


class TestCombinators:
    """Tests for combining queries."""

    def test_and_keeps_order(self):
        """Test and_ lists its operands in argument order."""
        q = and_(query(Account).age.gt(1), query(Account).username("b"))
        assert q.document == {"$and": [{"age": {"$gt": 1}}, {"username": "b"}]}
        assert q.record_type is Account

    def test_or_and_nor(self):
        """Test or_ and nor."""
        a = query(Account).age(1)
        b = query(Account).age(2)
        assert or_(a, b).document == {"$or": [{"age": 1}, {"age": 2}]}
        assert nor(a, b).document == {"$nor": [{"age": 1}, {"age": 2}]}

    def test_not_takes_a_sequence(self):
        """Test not_ takes one sequence, unlike the variadic combinators."""
        q = not_([query(Account).age(1)])
        assert q.document == {"$not": [{"age": 1}]}

    def test_combined_owns_its_document(self):
        """Test changing an operand later leaves the combined query alone."""
        age = query(Account).age(1)
        combined = and_(age, query(Account).username("x"))
        age.age(99)
        assert combined.document == {"$and": [{"age": 1}, {"username": "x"}]}

    def test_constructor_copies(self):
        """Test a query does not share the document it was built from."""
        source = {"age": {"$gt": 1}}
        q = Query(Account, source)
        source["age"]["$gt"] = 5
        assert q.document == {"age": {"$gt": 1}}

    def test_nesting(self):
        """Test combined queries can be combined again and refined."""
        inner = or_(query(Account).age(1), query(Account).age(2))
        q = and_(inner, query(Account).active(True)).username("x")
        assert q.document == {
            "$and": [{"$or": [{"age": 1}, {"age": 2}]}, {"active": True}],
            "username": "x",
        }

    def test_mixed_record_types(self):
        """Test queries on different record types cannot be combined."""
        with pytest.raises(TypeError):
            and_(query(Account).age(1), query(Other).name("x"))

    def test_empty(self):
        """Test combinators need at least one query."""
        with pytest.raises(ValueError):
            or_()

    def test_equality(self):
        """Test queries compare by record type and document."""
        assert query(Account).age(1) == Query(Account, {"age": 1})
        assert query(Account).age(1) != query(Account).age(2)
