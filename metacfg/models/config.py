"""Immutable configuration entities.

A ``Config`` owns a free-form attribute map and an ordered list of root
``Property`` nodes; each property may nest further properties to any depth.
Identity (``id``) is 0 until the entity has been persisted.
"""

import json
import time
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from metacfg.models.enums import PropertyType


def now_millis() -> int:
    return int(time.time() * 1000)


def _find(properties: Sequence["Property"], paths: Sequence[str]) -> Optional["Property"]:
    current: Optional[Property] = None
    level = properties
    for name in paths:
        current = next((p for p in level if p.name == name), None)
        if current is None:
            return None
        level = current.properties
    return current


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(default=0, ge=0)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    updated: int = Field(default_factory=now_millis)
    attributes: dict[str, str] = Field(default_factory=dict)
    properties: list["Property"] = Field(default_factory=list)

    def get_attribute(self, key: str) -> Optional[str]:
        return self.attributes.get(key)

    def get_property(self, *paths: str) -> Optional["Property"]:
        """Walk nested properties by name, e.g. ``get_property("db", "pool", "size")``."""
        if not paths:
            return None
        return _find(self.properties, paths)

    def evolve(self, **changes: Any):
        """
        Return a validated copy with ``changes`` applied.

        Unless ``updated`` is given explicitly the copy carries a timestamp
        strictly newer than this instance, so a repository will accept it
        as an update.
        """
        changes.setdefault("updated", max(now_millis(), self.updated + 1))
        return type(self)(**{**dict(self), **changes})


class Property(_Node):
    caption: Optional[str] = None
    type: PropertyType = PropertyType.STRING
    value: str = ""

    @model_validator(mode="after")
    def check_value(self) -> "Property":
        try:
            _decode(self.type, self.value)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"value {self.value!r} is not a valid {self.type.value}"
            ) from exc
        return self

    @classmethod
    def of(cls, name: str, value: Any, **fields: Any) -> "Property":
        """Build a property whose type is inferred from a Python value."""
        if isinstance(value, bool):
            kind, raw = PropertyType.BOOL, "true" if value else "false"
        elif isinstance(value, int):
            kind, raw = PropertyType.LONG, str(value)
        elif isinstance(value, float):
            kind, raw = PropertyType.DOUBLE, repr(value)
        elif isinstance(value, str):
            kind, raw = PropertyType.STRING, value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            kind, raw = PropertyType.STRING_ARRAY, json.dumps(list(value))
        else:
            raise TypeError(f"unsupported property value type: {type(value).__name__}")
        return cls(name=name, type=kind, value=raw, **fields)

    # ── typed accessors ───────────────────────────────────────────────────────

    def _typed(self, expected: PropertyType) -> Any:
        if self.type is not expected:
            raise TypeError(f"property {self.name!r} is {self.type.value}, not {expected.value}")
        return _decode(self.type, self.value)

    def as_bool(self) -> bool:
        return self._typed(PropertyType.BOOL)

    def as_long(self) -> int:
        return self._typed(PropertyType.LONG)

    def as_double(self) -> float:
        return self._typed(PropertyType.DOUBLE)

    def as_array(self) -> list[str]:
        return self._typed(PropertyType.STRING_ARRAY)


class Config(_Node):
    version: int = Field(default=0, ge=0)


def _decode(kind: PropertyType, raw: str) -> Any:
    if kind is PropertyType.BOOL:
        if raw not in ("true", "false"):
            raise ValueError(raw)
        return raw == "true"
    if kind is PropertyType.LONG:
        return int(raw)
    if kind is PropertyType.DOUBLE:
        return float(raw)
    if kind is PropertyType.STRING_ARRAY:
        values = json.loads(raw)
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ValueError(raw)
        return values
    return raw


Property.model_rebuild()
Config.model_rebuild()
