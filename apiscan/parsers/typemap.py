"""Source type to OpenAPI type mapping shared by every language backend."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

from ..models import TypeKind
from .text import split_top_level

TypeMapping = Tuple[str, str]

DEFAULT_MAPPING: TypeMapping = ("object", "")
VOID_MAPPING: TypeMapping = ("", "")

_PAIRS = {"<": ">", "[": "]", "(": ")"}
_TIME_FORMATS = {"date-time", "date", "time"}
_NAMED_TYPE = re.compile(r"^[A-Za-z_\\][\w.:\\]*(?:\s*[<\[(].*[>\])])?$")


@dataclass(frozen=True)
class FieldShape:
    """Structural classification of a raw field type."""

    kind: TypeKind
    element_type: str = ""
    key_type: str = ""
    optional: bool = False


class TypeTable:
    """Immutable per-language description of how source types map to OpenAPI.

    Every language shares the same algorithm: trim, strip one nullability
    marker, unwrap known wrapper generics, then try the primitive table and the
    sequence and map container shapes before falling back to ``object``.
    """

    def __init__(
        self,
        primitives: Mapping[str, TypeMapping],
        *,
        nullable_suffixes: Sequence[str] = (),
        nullable_prefixes: Sequence[str] = (),
        optional_wrappers: Sequence[str] = (),
        union_nulls: Sequence[str] = (),
        wrappers: Sequence[str] = (),
        sequence_prefixes: Sequence[str] = (),
        sequence_suffixes: Sequence[str] = (),
        map_prefixes: Sequence[str] = (),
        strip_prefixes: Sequence[str] = (),
        strip_suffixes: Sequence[str] = (),
        bracket_literals: bool = False,
    ) -> None:
        self.primitives = dict(primitives)
        self.nullable_suffixes = tuple(nullable_suffixes)
        self.nullable_prefixes = tuple(nullable_prefixes)
        self.optional_wrappers = tuple(optional_wrappers)
        self.union_nulls = frozenset(union_nulls)
        self.wrappers = tuple(wrappers)
        self.sequence_prefixes = tuple(sequence_prefixes)
        self.sequence_suffixes = tuple(sequence_suffixes)
        self.map_prefixes = tuple(map_prefixes)
        self.strip_prefixes = tuple(strip_prefixes)
        self.strip_suffixes = tuple(strip_suffixes)
        self.bracket_literals = bracket_literals

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def map_type(self, raw: str) -> TypeMapping:
        """Return the ``(type, format)`` pair for a source type string."""
        text = self.clean(raw)
        if not text:
            return DEFAULT_MAPPING
        if text in self.primitives:
            return self.primitives[text]
        text, _ = self.strip_optional(text)
        if text in self.primitives:
            return self.primitives[text]
        for prefix in self.wrappers:
            if text.startswith(prefix):
                inner = _first_argument(self.unwrap(text, prefix))
                return self.map_type(inner) if inner else DEFAULT_MAPPING
        if self.sequence_element(text) is not None:
            return ("array", "")
        if self.map_parts(text) is not None:
            return ("object", "")
        return DEFAULT_MAPPING

    def classify(self, raw: str) -> FieldShape:
        """Classify a field type into a :class:`FieldShape`."""
        text = self.clean(raw)
        if not text:
            return FieldShape(TypeKind.UNKNOWN)
        if text in self.primitives:
            _, fmt = self.primitives[text]
            kind = TypeKind.TIME if fmt in _TIME_FORMATS else TypeKind.PRIMITIVE
            return FieldShape(kind)
        if self.strip_optional(text)[1]:
            return FieldShape(TypeKind.OPTIONAL, optional=True)
        element = self.sequence_element(text)
        if element is not None:
            return FieldShape(TypeKind.SEQUENCE, element_type=element)
        parts = self.map_parts(text)
        if parts is not None:
            return FieldShape(TypeKind.MAP, key_type=parts[0], element_type=parts[1])
        if _NAMED_TYPE.match(text):
            return FieldShape(TypeKind.AGGREGATE)
        return FieldShape(TypeKind.UNKNOWN)

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def clean(self, raw: str) -> str:
        text = (raw or "").strip()
        changed = True
        while changed and text:
            changed = False
            for prefix in self.strip_prefixes:
                if text.startswith(prefix) and len(text) > len(prefix):
                    text = text[len(prefix) :].strip()
                    changed = True
            for suffix in self.strip_suffixes:
                if text.endswith(suffix) and len(text) > len(suffix):
                    text = text[: -len(suffix)].strip()
                    changed = True
            if len(text) > 2 and text[0] == "(" and _closing_index(text, 0) == len(text) - 1:
                text = text[1:-1].strip()
                changed = True
        return text

    def strip_optional(self, text: str) -> Tuple[str, bool]:
        """Remove a single nullability marker, reporting whether one was present."""
        for suffix in self.nullable_suffixes:
            if text.endswith(suffix) and len(text) > len(suffix):
                return text[: -len(suffix)].strip(), True
        for prefix in self.nullable_prefixes:
            if text.startswith(prefix) and len(text) > len(prefix):
                return text[len(prefix) :].strip(), True
        for prefix in self.optional_wrappers:
            if text.startswith(prefix):
                inner = self.unwrap(text, prefix)
                if inner:
                    return inner, True
        if self.union_nulls and "|" in text:
            members = split_top_level(text, "|")
            kept = [member for member in members if member not in self.union_nulls]
            if len(kept) < len(members) and kept:
                return " | ".join(kept), True
        return text, False

    def unwrap(self, text: str, prefix: str) -> str:
        """Return the inner type of ``prefix...``: leftmost opener to rightmost closer."""
        opener = prefix[-1:]
        closer = _PAIRS.get(opener)
        if closer is None:
            return self.clean(text[len(prefix) :])
        end = text.rfind(closer)
        if end < len(prefix):
            return ""
        return self.clean(text[len(prefix) : end])

    def sequence_element(self, text: str) -> Optional[str]:
        for suffix in self.sequence_suffixes:
            if text.endswith(suffix) and len(text) > len(suffix):
                return text[: -len(suffix)].strip()
        for prefix in self.sequence_prefixes:
            if text.startswith(prefix):
                return _first_argument(self.unwrap(text, prefix))
        if self.bracket_literals and text.startswith("[") and text.endswith("]"):
            inner = text[1:-1].strip()
            if len(split_top_level(inner, ":")) < 2:
                return inner
        return None

    def map_parts(self, text: str) -> Optional[Tuple[str, str]]:
        for prefix in self.map_prefixes:
            if text.startswith(prefix):
                return _split_pair(self.unwrap(text, prefix))
        if self.bracket_literals and text.startswith("[") and text.endswith("]"):
            parts = split_top_level(text[1:-1], ":")
            if len(parts) == 2:
                return parts[0], parts[1]
        return None


def _closing_index(text: str, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(text)):
        if text[index] == "(":
            depth += 1
        elif text[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _first_argument(inner: str) -> str:
    """Keep the first type argument: ``Result<T, E>`` unwraps to ``T``."""
    parts = split_top_level(inner)
    return parts[0] if parts else inner


def _split_pair(inner: str) -> Tuple[str, str]:
    parts = split_top_level(inner)
    if len(parts) >= 2:
        return parts[0], parts[-1]
    words = inner.split(None, 1)
    if len(words) == 2:
        return words[0], words[1]
    return "", inner


def format_table(mapping: Mapping[TypeMapping, Sequence[str]]) -> dict[str, TypeMapping]:
    """Invert ``{(type, format): [names...]}`` into a name lookup table."""
    table: dict[str, TypeMapping] = {}
    for result, names in mapping.items():
        for name in names:
            table[name] = result
    return table


__all__ = [
    "DEFAULT_MAPPING",
    "FieldShape",
    "TypeMapping",
    "TypeTable",
    "VOID_MAPPING",
    "format_table",
]
