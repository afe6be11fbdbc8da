"""Tagged variant values.

A variant holds exactly one of a closed set of alternative payload types and
is stored together with the label of the alternative it holds::

    Shape = SchemaVariant[Circle, Square, "box"]

    s = Shape(Circle(r=2))
    s.type                  # "Circle"
    s.Circle.r              # 2
    Shape.to_bson(s)        # {"type": "Circle", "value": {"r": 2}}
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from typed_documents import rules
from typed_documents.errors import StructuralError, VariantLabelError

TYPE_KEY = "type"
VALUE_KEY = "value"

_variants: dict[tuple[Any, ...], type[SchemaVariant]] = {}


def _parse_alternatives(params: tuple[Any, ...]) -> tuple[tuple[str, type], ...]:
    """Turn ``(Foo, Bar, "bar")`` into ``(("Foo", Foo), ("bar", Bar))``."""
    alternatives: list[tuple[str, type]] = []
    i = 0
    while i < len(params):
        tp = params[i]
        if isinstance(tp, str):
            raise VariantLabelError(f"Label '{tp}' does not follow a payload type")
        label = getattr(tp, "__name__", None) or repr(tp)
        if i + 1 < len(params) and isinstance(params[i + 1], str):
            label = params[i + 1]
            i += 2
        else:
            i += 1
        alternatives.append((label, tp))

    labels = [label for label, _ in alternatives]
    types = [tp for _, tp in alternatives]
    for label in labels:
        if labels.count(label) > 1:
            raise VariantLabelError(f"Duplicate variant label '{label}'")
    for tp in types:
        if types.count(tp) > 1:
            raise VariantLabelError(f"Duplicate variant type '{tp!r}'")
    return tuple(alternatives)


class SchemaVariant:
    """Base class of all variant types; subscript it to declare one."""

    __slots__ = ("_label", "_value")

    _alternatives: ClassVar[tuple[tuple[str, type], ...]] = ()

    def __class_getitem__(cls, params: Any) -> type[SchemaVariant]:
        if not isinstance(params, tuple):
            params = (params,)
        variant = _variants.get(params)
        if variant is None:
            alternatives = _parse_alternatives(params)
            name = "SchemaVariant[" + ", ".join(label for label, _ in alternatives) + "]"
            variant = type(name, (cls,), {"__slots__": (), "_alternatives": alternatives})
            _variants[params] = variant
        return variant

    def __init__(self, value: Any = None) -> None:
        if not self._alternatives:
            raise VariantLabelError("SchemaVariant must be subscripted with its alternatives")
        self._label: str | None = None
        self._value: Any = None
        if value is not None:
            self.value = value

    @classmethod
    def labels(cls) -> list[str]:
        return [label for label, _ in cls._alternatives]

    @classmethod
    def _label_of(cls, tp: type) -> str:
        for label, alternative in cls._alternatives:
            if alternative is tp:
                return label
        raise VariantLabelError(f"{tp!r} is not an alternative of {cls.__name__}")

    @classmethod
    def _type_of(cls, label: str) -> type:
        for name, alternative in cls._alternatives:
            if name == label:
                return alternative
        raise VariantLabelError(f"'{label}' is not a label of {cls.__name__}")

    @property
    def type(self) -> str | None:
        """Label of the held alternative, or None when empty."""
        return self._label

    @property
    def empty(self) -> bool:
        return self._label is None

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, value: Any) -> None:
        # Replaces whatever alternative was held before
        if value is None:
            self._label = None
            self._value = None
            return
        for label, tp in self._alternatives:
            if type(value) is tp:
                break
        else:
            for label, tp in self._alternatives:
                if isinstance(tp, type) and isinstance(value, tp):
                    break
            else:
                raise VariantLabelError(
                    f"{type(value).__name__} is not an alternative of {type(self).__name__}"
                )
        self._label = label
        self._value = value

    def is_type(self, tp: type) -> bool:
        """Check whether the variant currently holds the alternative ``tp``."""
        return self._label is not None and self._label == self._label_of(tp)

    def get(self, tp: type) -> Any:
        """Return the payload, which must be of alternative ``tp``."""
        return self[self._label_of(tp)]

    def __getitem__(self, label: str) -> Any:
        self._type_of(label)
        if self._label != label:
            raise VariantLabelError(
                f"{type(self).__name__} holds '{self._label}', not '{label}'"
            )
        return self._value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name not in self.labels():
            raise AttributeError(name)
        return self[name]

    @staticmethod
    def to_bson(variant: SchemaVariant) -> dict[str, Any] | None:
        if variant._label is None:
            return None
        return {TYPE_KEY: variant._label, VALUE_KEY: rules.encode(variant._value)}

    @classmethod
    def from_bson(cls, doc: Any) -> SchemaVariant:
        if doc is None:
            return cls()
        if not isinstance(doc, Mapping):
            raise StructuralError(f"Expected an object for {cls.__name__}, got {type(doc).__name__}")
        label = doc.get(TYPE_KEY)
        if not isinstance(label, str):
            raise StructuralError(f"{cls.__name__} document needs a string '{TYPE_KEY}'")
        if VALUE_KEY not in doc:
            raise StructuralError(f"{cls.__name__} document needs a '{VALUE_KEY}'")
        for name, tp in cls._alternatives:
            if name == label:
                variant = cls()
                variant._label = name
                variant._value = rules.decode(doc[VALUE_KEY], tp)
                return variant
        raise StructuralError(f"Unknown {cls.__name__} label '{label}'")

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._label == other._label and self._value == other._value  # type: ignore[attr-defined]

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._label is None:
            return f"{type(self).__name__}()"
        return f"{type(self).__name__}({self._value!r})"
