"""
Collection Attribute Kinds
==========================

Closed set of attribute kinds a collection schema can contain. Source
metadata is parsed into one dataclass per kind; each kind knows the REST
body used to recreate it. Unknown kinds raise UnsupportedAttributeError
instead of silently falling through.

Source metadata is not always clean: integer constraints may come back as
sentinel strings ("null", "", huge floats). Constraints that cannot be
coerced to a finite number are dropped rather than failing the attribute.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Type

from ..errors import UnsupportedAttributeError

DEFAULT_STRING_SIZE = 255


def sanitize_int(value: Any) -> Optional[int]:
    """
    Coerce a value to a finite integer, or None if it cannot be.

    Examples:
        >>> sanitize_int("42")
        42
        >>> sanitize_int(3.9)
        3
        >>> sanitize_int("null") is None
        True
        >>> sanitize_int(True) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("null", "undefined"):
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            value = float(text)
        except ValueError:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    return None


def sanitize_float(value: Any) -> Optional[float]:
    """Coerce a value to a finite float, or None if it cannot be."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("null", "undefined"):
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    return None


@dataclass
class Attribute:
    """Common fields of all attribute kinds."""
    kind: ClassVar[str] = ""

    key: str
    required: bool = False
    array: bool = False
    default: Any = None

    @property
    def is_relationship(self) -> bool:
        return False

    def params(self) -> Dict[str, Any]:
        """REST body for the create call."""
        body = {"key": self.key, "required": self.required, "array": self.array}
        # Required attributes cannot carry a default
        if self.default is not None and not self.required:
            body["default"] = self.default
        return body

    @classmethod
    def from_source(cls, raw: Mapping[str, Any]) -> "Attribute":
        return cls(
            key=raw["key"],
            required=bool(raw.get("required", False)),
            array=bool(raw.get("array", False)),
            default=raw.get("default"),
        )


@dataclass
class StringAttribute(Attribute):
    kind: ClassVar[str] = "string"

    size: int = DEFAULT_STRING_SIZE
    encrypt: bool = False

    def params(self) -> Dict[str, Any]:
        body = super().params()
        body["size"] = self.size
        if self.encrypt:
            body["encrypt"] = True
        return body

    @classmethod
    def from_source(cls, raw):
        base = Attribute.from_source(raw)
        size = sanitize_int(raw.get("size"))
        return cls(
            key=base.key, required=base.required, array=base.array, default=base.default,
            size=size if size and size > 0 else DEFAULT_STRING_SIZE,
            encrypt=bool(raw.get("encrypt", False)),
        )


@dataclass
class IntegerAttribute(Attribute):
    kind: ClassVar[str] = "integer"

    min: Optional[int] = None
    max: Optional[int] = None

    def params(self) -> Dict[str, Any]:
        body = super().params()
        if self.min is not None:
            body["min"] = self.min
        if self.max is not None:
            body["max"] = self.max
        return body

    def without_constraints(self) -> "IntegerAttribute":
        """Copy with min, max and default removed (retry shape)."""
        return dataclasses.replace(self, min=None, max=None, default=None)

    @classmethod
    def from_source(cls, raw):
        return cls(
            key=raw["key"],
            required=bool(raw.get("required", False)),
            array=bool(raw.get("array", False)),
            default=sanitize_int(raw.get("default")),
            min=sanitize_int(raw.get("min")),
            max=sanitize_int(raw.get("max")),
        )


@dataclass
class FloatAttribute(Attribute):
    kind: ClassVar[str] = "float"

    min: Optional[float] = None
    max: Optional[float] = None

    def params(self) -> Dict[str, Any]:
        body = super().params()
        if self.min is not None:
            body["min"] = self.min
        if self.max is not None:
            body["max"] = self.max
        return body

    @classmethod
    def from_source(cls, raw):
        return cls(
            key=raw["key"],
            required=bool(raw.get("required", False)),
            array=bool(raw.get("array", False)),
            default=sanitize_float(raw.get("default")),
            min=sanitize_float(raw.get("min")),
            max=sanitize_float(raw.get("max")),
        )


@dataclass
class BooleanAttribute(Attribute):
    kind: ClassVar[str] = "boolean"

    @classmethod
    def from_source(cls, raw):
        default = raw.get("default")
        return cls(
            key=raw["key"],
            required=bool(raw.get("required", False)),
            array=bool(raw.get("array", False)),
            default=default if isinstance(default, bool) else None,
        )


@dataclass
class EmailAttribute(Attribute):
    kind: ClassVar[str] = "email"


@dataclass
class UrlAttribute(Attribute):
    kind: ClassVar[str] = "url"


@dataclass
class IpAttribute(Attribute):
    kind: ClassVar[str] = "ip"


@dataclass
class DatetimeAttribute(Attribute):
    kind: ClassVar[str] = "datetime"


@dataclass
class EnumAttribute(Attribute):
    kind: ClassVar[str] = "enum"

    elements: List[str] = field(default_factory=list)

    def params(self) -> Dict[str, Any]:
        body = super().params()
        body["elements"] = list(self.elements)
        return body

    @classmethod
    def from_source(cls, raw):
        base = Attribute.from_source(raw)
        return cls(
            key=base.key, required=base.required, array=base.array, default=base.default,
            elements=list(raw.get("elements") or []),
        )


@dataclass
class RelationshipAttribute(Attribute):
    kind: ClassVar[str] = "relationship"

    related_collection: str = ""
    relation_type: str = "oneToOne"
    two_way: bool = False
    two_way_key: Optional[str] = None
    on_delete: str = "restrict"

    @property
    def is_relationship(self) -> bool:
        return True

    def params(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "relatedCollectionId": self.related_collection,
            "type": self.relation_type,
            "twoWay": self.two_way,
            "key": self.key,
            "onDelete": self.on_delete,
        }
        if self.two_way_key:
            body["twoWayKey"] = self.two_way_key
        return body

    def retarget(self, collection_ids: Mapping[str, str]) -> "RelationshipAttribute":
        """Point the relation at the renamed target collection, if it was renamed."""
        target = collection_ids.get(self.related_collection, self.related_collection)
        return dataclasses.replace(self, related_collection=target)

    @classmethod
    def from_source(cls, raw):
        return cls(
            key=raw["key"],
            related_collection=raw.get("relatedCollection") or raw.get("relatedCollectionId") or "",
            relation_type=raw.get("relationType") or "oneToOne",
            two_way=bool(raw.get("twoWay", False)),
            two_way_key=raw.get("twoWayKey"),
            on_delete=raw.get("onDelete") or "restrict",
        )


ATTRIBUTE_KINDS: Dict[str, Type[Attribute]] = {
    cls.kind: cls
    for cls in (
        StringAttribute, IntegerAttribute, FloatAttribute, BooleanAttribute,
        EmailAttribute, UrlAttribute, IpAttribute, DatetimeAttribute,
        EnumAttribute, RelationshipAttribute,
    )
}


def effective_kind(raw: Mapping[str, Any]) -> str:
    """String attributes with a format (email, url, ip, enum) use the format as kind."""
    kind = raw.get("type") or ""
    if kind == "string" and raw.get("format"):
        return raw["format"]
    return kind


def parse_attribute(raw: Mapping[str, Any]) -> Attribute:
    """
    Parse a source attribute payload into its typed kind.

    Raises:
        UnsupportedAttributeError: If the type/format is not a known kind
    """
    kind = effective_kind(raw)
    attribute_cls = ATTRIBUTE_KINDS.get(kind)
    if attribute_cls is None:
        raise UnsupportedAttributeError(
            f"Unsupported attribute kind '{kind}' for '{raw.get('key')}'"
        )
    return attribute_cls.from_source(raw)
