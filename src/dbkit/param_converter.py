"""Placeholder discovery and conversion to DB-API paramstyles.

Statements are written with one of two portable placeholder forms:

    - ``?`` (positional) - bound by 1-based position
    - ``:name`` (named) - bound by ``"name"`` or ``":name"``

Before execution the SQL is rewritten to the paramstyle of the driver behind the
backend handle (``qmark``, ``named``, ``format``, ``pyformat``). Quoted literals,
quoted identifiers, ``--`` comments and PostgreSQL ``::`` casts are left untouched.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .exceptions import ConfigurationError

# Alternation order matters: literals and comments swallow anything that looks like
# a placeholder inside them, "::" must win over ":name".
TOKEN_PATTERN = re.compile(
    r"""
    '(?:[^']|'')*'              # string literal
    | "(?:[^"]|"")*"            # quoted identifier
    | --[^\n]*                  # line comment
    | ::                        # cast operator
    | :(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<qmark>\?)
    """,
    re.VERBOSE,
)

POSITIONAL_STYLES = ("qmark", "format", "numeric")
NAMED_STYLES = ("named", "pyformat")


@dataclass(frozen=True)
class Placeholders:
    """Placeholders found in a SQL statement.

    Attributes:
        style: "qmark" (positional), "named" or "none"
        names: Named placeholders in order of first appearance
        count: Number of positional placeholders
    """

    style: str
    names: tuple[str, ...] = ()
    count: int = 0

    def normalize_key(self, parameter: int | str) -> int | str | None:
        """Map a caller's parameter identifier to the placeholder key.

        Returns:
            1-based position, bare name, or None when no such placeholder exists
        """
        if self.style == "qmark":
            if isinstance(parameter, int) and not isinstance(parameter, bool):
                return parameter if 1 <= parameter <= self.count else None
            return None
        if self.style == "named" and isinstance(parameter, str):
            name = parameter[1:] if parameter.startswith(":") else parameter
            return name if name in self.names else None
        return None


class ParamConverter:
    """Rewrites portable placeholders for a DB-API driver.

    Example:
        converter = ParamConverter(positional="format", named="pyformat")
        converter.convert("SELECT * FROM users WHERE id = ?")
        # Result: "SELECT * FROM users WHERE id = %s"
    """

    def __init__(self, positional: str = "qmark", named: str = "named"):
        """Initialize converter for a driver.

        Args:
            positional: Driver paramstyle used for ``?`` placeholders
            named: Driver paramstyle used for ``:name`` placeholders
        """
        if positional not in POSITIONAL_STYLES:
            raise ValueError(f"Unsupported positional paramstyle: {positional}")
        if named not in NAMED_STYLES:
            raise ValueError(f"Unsupported named paramstyle: {named}")
        self.positional = positional
        self.named = named

    def parse(self, sql: str) -> Placeholders:
        """Detect the placeholders used in ``sql``.

        Raises:
            ConfigurationError: If positional and named placeholders are mixed
        """
        names: list[str] = []
        count = 0
        for match in TOKEN_PATTERN.finditer(sql):
            if match.group("qmark"):
                count += 1
            elif match.group("name"):
                name = match.group("name")
                if name not in names:
                    names.append(name)

        if count and names:
            raise ConfigurationError(
                "Positional (?) and named (:name) placeholders cannot be mixed "
                "in the same statement."
            )
        if count:
            return Placeholders(style="qmark", count=count)
        if names:
            return Placeholders(style="named", names=tuple(names))
        return Placeholders(style="none")

    def convert(self, sql: str) -> str:
        """Rewrite ``sql`` placeholders into the driver's paramstyle."""
        placeholders = self.parse(sql)
        if placeholders.style == "none":
            return sql

        target = self.positional if placeholders.style == "qmark" else self.named
        escape_percent = target in ("format", "pyformat")
        counter = [0]

        def replace(match: re.Match[str]) -> str:
            token = match.group(0)
            if match.group("qmark"):
                counter[0] += 1
                return self._positional_marker(counter[0])
            if match.group("name"):
                return self._named_marker(match.group("name"))
            if escape_percent:
                return token.replace("%", "%%")
            return token

        converted: list[str] = []
        last = 0
        for match in TOKEN_PATTERN.finditer(sql):
            between = sql[last : match.start()]
            converted.append(between.replace("%", "%%") if escape_percent else between)
            converted.append(replace(match))
            last = match.end()
        tail = sql[last:]
        converted.append(tail.replace("%", "%%") if escape_percent else tail)
        return "".join(converted)

    def convert_params(
        self, placeholders: Placeholders, bound: Mapping[int | str, Any]
    ) -> tuple[Any, ...] | dict[str, Any] | None:
        """Assemble bound values in the shape the driver expects.

        Args:
            placeholders: Result of ``parse`` for the statement
            bound: Values keyed by normalized placeholder key

        Returns:
            Tuple (positional), dict (named) or None (no placeholders)

        Raises:
            KeyError: Naming the first placeholder without a bound value
        """
        if placeholders.style == "qmark":
            return tuple(bound[position] for position in range(1, placeholders.count + 1))
        if placeholders.style == "named":
            return {name: bound[name] for name in placeholders.names}
        return None

    def _positional_marker(self, position: int) -> str:
        if self.positional == "format":
            return "%s"
        if self.positional == "numeric":
            return f":{position}"
        return "?"

    def _named_marker(self, name: str) -> str:
        if self.named == "pyformat":
            return f"%({name})s"
        return f":{name}"


__all__ = ["ParamConverter", "Placeholders", "TOKEN_PATTERN"]
