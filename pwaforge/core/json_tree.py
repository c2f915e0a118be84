"""Tagged JSON value tree for untrusted model output.

``json.loads`` gives back whatever Python types the text happens to
contain.  Model output is not trusted to have any particular shape, so it
is converted into explicit variants and read through projections that
return ``None`` on a shape mismatch instead of raising.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class JsonNull:
    def to_python(self) -> None:
        return None


@dataclass(frozen=True)
class JsonBool:
    value: bool

    def to_python(self) -> bool:
        return self.value


@dataclass(frozen=True)
class JsonNumber:
    value: int | float

    def to_python(self) -> int | float:
        return self.value


@dataclass(frozen=True)
class JsonString:
    value: str

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True)
class JsonArray:
    items: tuple["JsonValue", ...] = ()

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True)
class JsonObject:
    members: dict[str, "JsonValue"] = field(default_factory=dict)

    def to_python(self) -> dict[str, Any]:
        return {k: v.to_python() for k, v in self.members.items()}

    def get(self, key: str) -> "JsonValue | None":
        return self.members.get(key)


JsonValue = Union[JsonNull, JsonBool, JsonNumber, JsonString, JsonArray, JsonObject]


def from_python(obj: Any) -> JsonValue:
    """Convert the output of ``json.loads`` into a tree.

    Raises
    ------
    TypeError
        If *obj* contains a type JSON cannot represent.
    """
    if obj is None:
        return JsonNull()
    # bool before int: bool is an int subclass
    if isinstance(obj, bool):
        return JsonBool(obj)
    if isinstance(obj, (int, float)):
        return JsonNumber(obj)
    if isinstance(obj, str):
        return JsonString(obj)
    if isinstance(obj, (list, tuple)):
        return JsonArray(tuple(from_python(item) for item in obj))
    if isinstance(obj, dict):
        return JsonObject({str(k): from_python(v) for k, v in obj.items()})
    raise TypeError(f"Not a JSON value: {type(obj).__name__}")


def parse_json(text: str) -> JsonValue | None:
    """Parse *text* into a tree, or ``None`` if it is not well-formed JSON."""
    try:
        return from_python(json.loads(text))
    except (ValueError, RecursionError):
        return None


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def as_object(value: JsonValue | None) -> JsonObject | None:
    return value if isinstance(value, JsonObject) else None


def as_string(value: JsonValue | None) -> str | None:
    return value.value if isinstance(value, JsonString) else None


def as_text(value: JsonValue) -> str:
    """Render any value as file content.

    Strings are returned as-is, null as the empty string, containers as
    indented JSON and scalars as their JSON text.
    """
    if isinstance(value, JsonString):
        return value.value
    if isinstance(value, JsonNull):
        return ""
    if isinstance(value, (JsonObject, JsonArray)):
        return json.dumps(value.to_python(), indent=2, ensure_ascii=False)
    return json.dumps(value.to_python())
