"""Base classes for language backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..logging import get_logger
from ..models import Annotation, FieldDecl, SourceUnit, decode_content
from .typemap import FieldShape, TypeMapping, TypeTable

logger = get_logger("parsers")


class Backend(ABC):
    """Contract shared by every language backend: parse a file, map its types."""

    language: str = ""
    extensions: Sequence[str] = ()
    types: TypeTable

    @abstractmethod
    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        """Turn raw file content into a :class:`SourceUnit`."""

    def map_type(self, raw: str) -> TypeMapping:
        """Map a source type string to an OpenAPI ``(type, format)`` pair."""
        return self.types.map_type(raw)

    def classify(self, raw: str) -> FieldShape:
        return self.types.classify(raw)

    def make_field(
        self,
        name: str,
        type_: str,
        line: int,
        *,
        default: Optional[str] = None,
        optional: bool = False,
        alias: Optional[str] = None,
        annotations: Optional[List[Annotation]] = None,
    ) -> FieldDecl:
        shape = self.classify(type_)
        return FieldDecl(
            name=name,
            type=type_.strip(),
            kind=shape.kind,
            element_type=shape.element_type,
            key_type=shape.key_type,
            optional=optional or shape.optional,
            default=default,
            line=line,
            alias=alias,
            annotations=list(annotations or []),
        )


class RegexBackend(Backend):
    """Backend built on pre-compiled pattern tables.

    Scanning never raises: constructs that do not match simply produce no
    facts, so a malformed file yields a partially filled (or empty) unit.
    """

    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        text = decode_content(content)
        unit = SourceUnit(path=filename, language=self.language, content=text)
        try:
            self.scan(text, unit)
        except Exception as exc:  # pragma: no cover
            logger.warning("Scanning %s stopped early: %s", filename, exc)
        return unit

    @abstractmethod
    def scan(self, text: str, unit: SourceUnit) -> None:
        """Populate ``unit`` with the facts found in ``text``."""


class StructuralBackend(Backend):
    """Backend driven by a real grammar; raises ``ParseError`` on unusable input."""


__all__ = ["Backend", "RegexBackend", "StructuralBackend"]
