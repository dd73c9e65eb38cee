# iampilot: least-privilege IAM policy generation
# Copyright (C) 2026 iampilot contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Lexical argument extraction for JavaScript/TypeScript call sites.

Splits argument lists and object literals on top-level commas, ignoring
commas nested inside strings, template literals, brackets, braces and
parens, and classifies each value as Resolved (a literal) or Unresolved.
"""

from __future__ import annotations

import bisect
import re
from typing import Optional

from iampilot.models.calls import ParameterValue

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}
_QUOTES = {'"', "'", "`"}

_NUMBER = re.compile(r"^-?(?:0[xX][0-9a-fA-F_]+|0[bB][01_]+|0[oO][0-7_]+|(?:\d[\d_]*)?\.?\d[\d_]*(?:[eE][+-]?\d+)?)n?$")
_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}


class LexError(ValueError):
    def __init__(self, message: str, offset: int) -> None:
        super().__init__(message)
        self.offset = offset


def skip_string(text: str, start: int) -> int:
    """Return the index just past the string or template literal opening at ``start``."""
    quote = text[start]
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if quote == "`" and ch == "$" and i + 1 < n and text[i + 1] == "{":
            i = find_closing(text, i + 1) + 1
            continue
        if ch == "\n" and quote != "`":
            raise LexError("unterminated string literal", start)
        i += 1
    raise LexError("unterminated string literal", start)


def find_closing(text: str, start: int) -> int:
    """Return the index of the bracket closing the one at ``start``."""
    stack = [_OPENERS[text[start]]]
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _QUOTES:
            i = skip_string(text, i)
            continue
        if ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in _CLOSERS:
            if ch != stack[-1]:
                raise LexError(f"mismatched '{ch}'", i)
            stack.pop()
            if not stack:
                return i
        i += 1
    raise LexError(f"unclosed '{text[start]}'", start)


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` where it is not nested in strings or brackets."""
    parts: list[str] = []
    depth = 0
    current_start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _QUOTES:
            i = skip_string(text, i)
            continue
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
        elif ch == separator and depth == 0:
            parts.append(text[current_start:i])
            current_start = i + 1
        i += 1
    parts.append(text[current_start:])
    return [p.strip() for p in parts if p.strip()]


def find_property_separator(prop: str) -> Optional[int]:
    """Index of the ``:`` separating key from value, or None for shorthand."""
    depth = 0
    i = 0
    n = len(prop)
    while i < n:
        ch = prop[i]
        if ch in _QUOTES:
            i = skip_string(prop, i)
            continue
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
        elif ch == ":" and depth == 0:
            return i
        i += 1
    return None


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    if "\\" not in body:
        return body
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _is_whole_string(text: str) -> bool:
    if len(text) < 2 or text[0] not in _QUOTES:
        return False
    try:
        return skip_string(text, 0) == len(text)
    except LexError:
        return False


def normalize_property_key(key: str) -> Optional[str]:
    """Plain name of an object key; None for computed keys like ``[name]``."""
    key = key.strip()
    if key.startswith("["):
        return None
    if _is_whole_string(key) and key[0] != "`":
        return _unquote(key)
    return key


def _has_substitution(template: str) -> bool:
    i = 0
    while i < len(template) - 1:
        if template[i] == "\\":
            i += 2
            continue
        if template[i] == "$" and template[i + 1] == "{":
            return True
        i += 1
    return False


def classify_value(text: str) -> ParameterValue:
    value = text.strip()
    if _is_whole_string(value):
        if value[0] == "`" and _has_substitution(value):
            return ParameterValue.unresolved(value)
        return ParameterValue.resolved(_unquote(value))
    if value in ("true", "false", "null"):
        return ParameterValue.resolved(value)
    if _NUMBER.match(value):
        return ParameterValue.resolved(value)
    return ParameterValue.unresolved(value)


def parse_object_literal(text: str) -> dict[str, ParameterValue]:
    """Parse ``{ key: value, ... }`` into parameters.

    Shorthand properties map to Unresolved values, spreads and computed keys
    are skipped.
    """
    body = text.strip()
    if not (body.startswith("{") and body.endswith("}")):
        return {}
    params: dict[str, ParameterValue] = {}
    for prop in split_top_level(body[1:-1]):
        if prop.startswith("..."):
            continue
        sep = find_property_separator(prop)
        if sep is None:
            name = prop.split("(", 1)[0].strip()
            if _IDENTIFIER.match(name):
                params[name] = ParameterValue.unresolved(prop)
            continue
        key = normalize_property_key(prop[:sep])
        if key is None:
            continue
        params[key] = classify_value(prop[sep + 1 :])
    return params


def parse_arguments(text: str) -> list[str]:
    """Split the text between a call's parens into argument expressions."""
    return split_top_level(text)


class LineIndex:
    """Maps character offsets to 1-based lines and 0-based columns."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        for m in re.finditer("\n", text):
            self._starts.append(m.end())

    def position(self, offset: int) -> tuple[int, int]:
        line = bisect.bisect_right(self._starts, offset) - 1
        return line + 1, offset - self._starts[line]
