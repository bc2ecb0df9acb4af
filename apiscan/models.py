"""Core data models shared across apiscan components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TypeKind(str, Enum):
    """Coarse classification of a declared field type."""

    PRIMITIVE = "primitive"
    AGGREGATE = "aggregate"
    SEQUENCE = "sequence"
    MAP = "map"
    OPTIONAL = "optional"
    TIME = "time"
    UNKNOWN = "unknown"


def unquote(value: str) -> str:
    """Strip one layer of matching string quotes from a literal."""
    text = value.strip()
    if text.startswith(("@\"", "r\"", "f\"", "b\"")):
        text = text[1:]
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'`":
        return text[1:-1]
    if len(text) >= 2 and text[0] == ":" and text[1:].isidentifier():
        return text[1:]
    return text


def is_string_literal(value: str) -> bool:
    text = value.strip()
    if text.startswith(("@\"", "r\"", "f\"", "b\"")):
        text = text[1:]
    return len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'`"


@dataclass
class Annotation:
    """Decorator, attribute, annotation or macro call attached to a declaration."""

    name: str
    args: List[str] = field(default_factory=list)
    kwargs: Dict[str, str] = field(default_factory=dict)
    line: int = 0

    def string_arg(self, *keys: str) -> Optional[str]:
        """Return the first string literal argument, looking at ``keys`` first."""
        for key in keys:
            value = self.kwargs.get(key)
            if value is not None and is_string_literal(value):
                return unquote(value)
        for value in self.args:
            if is_string_literal(value):
                return unquote(value)
        return None

    def has(self, *names: str) -> bool:
        return self.name in names


@dataclass
class Param:
    """A function or method parameter."""

    name: str
    type: str = ""
    required: bool = True
    default: Optional[str] = None
    annotations: List[Annotation] = field(default_factory=list)


@dataclass
class FieldDecl:
    """A field, property or record component of a TypeDecl."""

    name: str
    type: str
    kind: TypeKind = TypeKind.UNKNOWN
    element_type: str = ""
    key_type: str = ""
    optional: bool = False
    default: Optional[str] = None
    line: int = 0
    alias: Optional[str] = None
    annotations: List[Annotation] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.kind not in (TypeKind.SEQUENCE, TypeKind.MAP):
            self.element_type = ""
        if self.kind is not TypeKind.MAP:
            self.key_type = ""

    @property
    def wire_name(self) -> str:
        return self.alias or self.name


@dataclass
class MethodDecl:
    """A free function or a method of a TypeDecl."""

    name: str
    params: List[Param] = field(default_factory=list)
    return_type: str = ""
    is_async: bool = False
    visibility: str = ""
    annotations: List[Annotation] = field(default_factory=list)
    line: int = 0
    owner: Optional[str] = None

    def annotation(self, *names: str) -> Optional[Annotation]:
        for annotation in self.annotations:
            if annotation.name in names:
                return annotation
        return None


@dataclass
class TypeDecl:
    """A named aggregate: class, struct, record, data class or case class."""

    name: str
    namespace: Optional[str] = None
    bases: List[str] = field(default_factory=list)
    fields: List[FieldDecl] = field(default_factory=list)
    methods: List[MethodDecl] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)
    line: int = 0
    kind: str = "class"

    def annotation(self, *names: str) -> Optional[Annotation]:
        for annotation in self.annotations:
            if annotation.name in names:
                return annotation
        return None


@dataclass
class RouteFact:
    """A route declaration in framework-native syntax."""

    method: str
    path: str
    handler: str = ""
    owner: Optional[str] = None
    prefix: str = ""
    line: int = 0
    framework: str = ""


@dataclass
class ResourceFact:
    """A resource macro that implies a family of CRUD routes."""

    path: str
    controller: str
    only: List[str] = field(default_factory=list)
    except_: List[str] = field(default_factory=list)
    is_api: bool = False
    line: int = 0
    framework: str = ""
    prefix: str = ""
    singular: bool = False


@dataclass
class SourceUnit:
    """One parsed file together with the facts extracted from it.

    Units produced by structural backends hold a syntax tree. The unit owns it
    exclusively; call :meth:`close` (or use the unit as a context manager) once
    the facts have been consumed.
    """

    path: str
    language: str
    content: str = ""
    tree: Any = None
    types: List[TypeDecl] = field(default_factory=list)
    functions: List[MethodDecl] = field(default_factory=list)
    routes: List[RouteFact] = field(default_factory=list)
    resources: List[ResourceFact] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)

    def close(self) -> None:
        """Release the syntax tree held by this unit."""
        self.tree = None

    def __enter__(self) -> "SourceUnit":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def fact_count(self) -> int:
        return len(self.types) + len(self.functions) + len(self.routes) + len(self.resources)

    @property
    def is_empty(self) -> bool:
        return self.fact_count == 0

    def find_type(self, name: str) -> Optional[TypeDecl]:
        for decl in self.types:
            if decl.name == name:
                return decl
        return None

    def find_handler(self, name: str, owner: Optional[str] = None) -> Optional[MethodDecl]:
        """Resolve a handler name to a function or method declared in this file."""
        if owner:
            decl = self.find_type(owner)
            if decl is not None:
                for method in decl.methods:
                    if method.name == name:
                        return method
        for function in self.functions:
            if function.name == name:
                return function
        for decl in self.types:
            for method in decl.methods:
                if method.name == name:
                    return method
        return None


@dataclass
class SourceFile:
    """Input tuple handed to the engine by the repository scanner."""

    path: str
    language: str
    content: bytes

    def text(self) -> str:
        return decode_content(self.content)


def decode_content(content: bytes | str) -> str:
    if isinstance(content, str):
        return content
    return content.decode("utf-8", errors="ignore")


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------


@dataclass
class Schema:
    """OpenAPI-shaped schema description."""

    title: Optional[str] = None
    type: str = ""
    format: str = ""
    properties: Dict[str, "Schema"] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)
    items: Optional["Schema"] = None
    additional_properties: Optional["Schema"] = None
    nullable: bool = False
    ref: Optional[str] = None
    description: Optional[str] = None
    enum: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        if self.ref:
            return {"$ref": self.ref}
        data: Dict[str, Any] = {}
        if self.title:
            data["title"] = self.title
        if self.type:
            data["type"] = self.type
        if self.format:
            data["format"] = self.format
        if self.description:
            data["description"] = self.description
        if self.properties:
            data["properties"] = {
                name: schema.to_dict() for name, schema in self.properties.items()
            }
        if self.required:
            data["required"] = list(self.required)
        if self.items is not None:
            data["items"] = self.items.to_dict()
        if self.additional_properties is not None:
            data["additionalProperties"] = self.additional_properties.to_dict()
        if self.nullable:
            data["nullable"] = True
        if self.enum:
            data["enum"] = list(self.enum)
        return data


@dataclass
class Parameter:
    """A path, query or header parameter of a route."""

    name: str
    in_: str = "path"
    required: bool = True
    schema: Schema = field(default_factory=lambda: Schema(type="string"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "in": self.in_,
            "required": self.required,
            "schema": self.schema.to_dict(),
        }


@dataclass
class Route:
    """A fully normalized HTTP operation."""

    method: str
    path: str
    handler: str = ""
    operation_id: str = ""
    tags: List[str] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    source_file: str = ""
    source_line: int = 0
    request_body: Optional[Schema] = None
    response: Optional[Schema] = None
    deprecated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "method": self.method,
            "path": self.path,
            "handler": self.handler,
            "operationId": self.operation_id,
            "tags": list(self.tags),
            "parameters": [param.to_dict() for param in self.parameters],
            "sourceFile": self.source_file,
            "sourceLine": self.source_line,
        }
        if self.request_body is not None:
            data["requestBody"] = self.request_body.to_dict()
        if self.response is not None:
            data["response"] = self.response.to_dict()
        if self.deprecated:
            data["deprecated"] = True
        return data


__all__ = [
    "Annotation",
    "FieldDecl",
    "MethodDecl",
    "Param",
    "Parameter",
    "ResourceFact",
    "Route",
    "RouteFact",
    "Schema",
    "SourceFile",
    "SourceUnit",
    "TypeDecl",
    "TypeKind",
    "decode_content",
    "is_string_literal",
    "unquote",
]
