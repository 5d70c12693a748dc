"""Typed values exchanged between the model, the registry and action handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ParameterType = Literal["string", "integer", "number", "boolean", "array"]


@dataclass(frozen=True)
class ActionParameter:
    """One named argument of an action; doubles as its JSON Schema property."""

    name: str
    type: ParameterType
    description: str
    required: bool = False
    enum: tuple[str, ...] | None = None

    def schema(self) -> dict[str, Any]:
        prop: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            prop["enum"] = list(self.enum)
        if self.type == "array":
            prop["items"] = {"type": "string"}
        return prop

    def check(self, value: Any) -> str | None:
        """Return an error message if ``value`` does not fit, else None."""
        # bool is an int subclass; keep it out of the numeric types.
        if self.type == "string":
            ok = isinstance(value, str)
        elif self.type == "integer":
            ok = isinstance(value, int) and not isinstance(value, bool)
            if not ok and isinstance(value, float) and value.is_integer():
                ok = True
        elif self.type == "number":
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif self.type == "boolean":
            ok = isinstance(value, bool)
        else:
            ok = isinstance(value, list)
        if not ok:
            return f"{self.name} should be {self.type}, got {type(value).__name__}"
        if self.enum and value not in self.enum:
            return f"{self.name} must be one of {', '.join(self.enum)}"
        return None


@dataclass(frozen=True)
class ActionRequest:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
    data: dict[str, Any] | None = None

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> ActionResult:
        return cls(True, message, data)

    @classmethod
    def fail(cls, message: str) -> ActionResult:
        return cls(False, message)
