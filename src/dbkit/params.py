"""Parameter type tokens for statement binding.

Bind operations accept either a ``ParamType`` member or one of the string tokens:

    ==================  ============
    Token(s)            ParamType
    ==================  ============
    "int", "integer"    INT
    "bool", "boolean"   BOOL
    "lob", "blob"       LOB
    "null"              NULL
    "str" / anything    STR
    ==================  ============

The type is resolved once at the call boundary; a ``None`` value always binds as NULL.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ParamType(Enum):
    """Closed set of bind types."""

    INT = "int"
    BOOL = "bool"
    LOB = "lob"
    NULL = "null"
    STR = "str"

    @classmethod
    def resolve(cls, token: ParamType | str | None, value: Any = ...) -> ParamType:
        """Resolve a type token, forcing NULL for ``None`` values.

        Args:
            token: ParamType member or string token (unrecognized tokens mean STR)
            value: Value being bound; omit when resolving a column type

        Returns:
            The resolved ParamType
        """
        if value is None:
            return cls.NULL
        if isinstance(token, ParamType):
            return token
        if token is None:
            return cls.STR
        return _TOKENS.get(str(token).lower(), cls.STR)


_TOKENS: dict[str, ParamType] = {
    "int": ParamType.INT,
    "integer": ParamType.INT,
    "bool": ParamType.BOOL,
    "boolean": ParamType.BOOL,
    "lob": ParamType.LOB,
    "blob": ParamType.LOB,
    "null": ParamType.NULL,
    "str": ParamType.STR,
    "string": ParamType.STR,
}


def coerce_value(value: Any, param_type: ParamType) -> Any:
    """Convert a Python value to the representation implied by ``param_type``.

    Raises:
        ValueError: If the value cannot be represented (e.g. ``int("abc")``)
    """
    if value is None or param_type is ParamType.NULL:
        return None
    if param_type is ParamType.INT:
        return int(value)
    if param_type is ParamType.BOOL:
        if isinstance(value, str):
            return value.strip().lower() not in ("", "0", "false", "no", "off")
        return bool(value)
    if param_type is ParamType.LOB:
        if isinstance(value, str):
            return value.encode("utf-8")
        if hasattr(value, "read"):
            return value.read()
        return bytes(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


__all__ = ["ParamType", "coerce_value"]
