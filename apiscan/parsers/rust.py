"""Rust backend on the tree-sitter grammar: serde structs, actix/rocket/axum routes."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from ..models import Annotation, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, decode_content, unquote
from ..paths import join_paths
from .text import parse_arguments
from .treesitter import TreeSitterBackend, descendants, first_child, node_line, node_text, preceding_siblings
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table


class RustTypeTable(TypeTable):
    """Type table that also drops reference sigils and lifetimes (``&'a mut T``)."""

    _REFERENCE = re.compile(r"^&\s*(?:'\w+\s+)?(?:mut\s+)?")

    def clean(self, raw: str) -> str:
        return super().clean(self._REFERENCE.sub("", (raw or "").strip()))


TYPES = RustTypeTable(
    format_table(
        {
            ("string", ""): ["String", "str", "Cow<str>", "Cow<'static, str>", "Box<str>", "Arc<str>"],
            ("integer", ""): ["i8", "i16", "u8", "u16", "isize", "usize"],
            ("integer", "int32"): ["i32", "u32"],
            ("integer", "int64"): ["i64", "u64", "i128", "u128"],
            ("number", "float"): ["f32"],
            ("number", "double"): ["f64", "Decimal", "rust_decimal::Decimal"],
            ("boolean", ""): ["bool"],
            ("string", "binary"): ["Vec<u8>", "Bytes", "bytes::Bytes", "[u8]"],
            ("string", "date-time"): [
                "DateTime<Utc>", "chrono::DateTime<Utc>", "DateTime<chrono::Utc>", "chrono::DateTime<chrono::Utc>",
                "NaiveDateTime", "chrono::NaiveDateTime", "OffsetDateTime", "time::OffsetDateTime",
                "SystemTime", "PrimitiveDateTime",
            ],
            ("string", "date"): ["NaiveDate", "chrono::NaiveDate", "Date", "time::Date"],
            ("string", "uuid"): ["Uuid", "uuid::Uuid"],
            DEFAULT_MAPPING: ["Value", "serde_json::Value", "serde_json::Map<String, Value>"],
            VOID_MAPPING: ["()", "StatusCode", "HttpResponse", "impl Responder", "impl IntoResponse", "Status"],
        }
    ),
    optional_wrappers=("Option<", "std::option::Option<"),
    wrappers=(
        "Box<", "Arc<", "Rc<", "Json<", "web::Json<", "axum::Json<", "actix_web::web::Json<", "Result<",
        "anyhow::Result<", "std::result::Result<", "Data<", "web::Data<",
    ),
    sequence_prefixes=("Vec<", "VecDeque<", "HashSet<", "BTreeSet<", "[", "&["),
    map_prefixes=("HashMap<", "BTreeMap<", "std::collections::HashMap<", "IndexMap<"),
    strip_prefixes=("std::collections::", "crate::", "self::", "super::", "dyn "),
)

_USE_ROOT = re.compile(r"^(?:::)?(\w+)")
_ATTRIBUTE = re.compile(r"^#!?\[\s*(?P<name>[\w:]+)\s*(?:\((?P<args>.*)\)|=\s*(?P<value>.*))?\s*\]$", re.DOTALL)
_ROUTE_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")
_METHOD_OPTION = re.compile(r"\bmethod\s*=\s*\"(\w+)\"")
_BINDING_NAME = re.compile(r"\b([a-z_][a-z0-9_]*)\b")


class RustBackend(TreeSitterBackend):
    """Extracts serde structs, functions and actix/rocket/axum routes."""

    language = "rust"
    extensions = (".rs",)
    grammar = "rust"
    types = TYPES

    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        text = decode_content(content)
        source = text.encode("utf-8")
        tree = self.parse_tree(filename, source)
        unit = SourceUnit(path=filename, language=self.language, content=text, tree=tree)
        self._walk(tree.root_node, source, unit)
        framework = _framework_from_imports(unit.imports)
        for function in unit.functions:
            unit.routes.extend(_attribute_routes(function, framework))
        for decl in unit.types:
            for method in decl.methods:
                unit.routes.extend(_attribute_routes(method, framework))
        self._router_calls(tree.root_node, source, unit)
        return unit

    def _walk(self, node, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        for child in node.named_children:
            kind = child.type
            if kind == "use_declaration":
                argument = child.child_by_field_name("argument")
                root = _USE_ROOT.match(node_text(argument, source)) if argument is not None else None
                if root:
                    unit.imports.append(root.group(1))
            elif kind in ("struct_item", "enum_item"):
                unit.types.append(self._type_decl(child, source))
            elif kind == "function_item":
                unit.functions.append(self._function(child, source, None))
            elif kind == "impl_item":
                self._impl(child, source, unit)
            elif kind == "mod_item":
                body = child.child_by_field_name("body")
                if body is not None:
                    self._walk(body, source, unit)

    def _type_decl(self, node, source: bytes) -> TypeDecl:  # type: ignore[no-untyped-def]
        attributes = _attributes(node, source)
        decl = TypeDecl(
            name=node_text(node.child_by_field_name("name"), source),
            annotations=attributes,
            line=node_line(node),
            kind="struct" if node.type == "struct_item" else "enum",
        )
        for attribute in attributes:
            if attribute.name == "derive":
                decl.bases.extend(attribute.args)
        body = node.child_by_field_name("body")
        if node.type != "struct_item" or body is None or body.type != "field_declaration_list":
            return decl
        rename_all = _serde_option(attributes, "rename_all")
        for member in body.named_children:
            if member.type != "field_declaration":
                continue
            field_attributes = _attributes(member, source)
            serde = [item for item in field_attributes if item.name == "serde"]
            if any("skip" in item.args or "skip_serializing" in item.args for item in serde):
                continue
            name = node_text(member.child_by_field_name("name"), source)
            if name.startswith("r#"):
                name = name[2:]
            alias = _serde_option(field_attributes, "rename")
            if alias is None and rename_all:
                converted = _rename(name, rename_all)
                alias = converted if converted != name else None
            flatten = any("flatten" in item.args for item in serde)
            decl.fields.append(
                self.make_field(
                    name,
                    node_text(member.child_by_field_name("type"), source),
                    node_line(member),
                    optional=any("default" in item.args or "default" in item.kwargs for item in serde),
                    alias=alias,
                    annotations=field_attributes + ([Annotation(name="flatten")] if flatten else []),
                )
            )
        return decl

    def _impl(self, node, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        owner = node_text(node.child_by_field_name("type"), source).split("<")[0]
        body = node.child_by_field_name("body")
        if body is None:
            return
        decl = unit.find_type(owner)
        for child in body.named_children:
            if child.type != "function_item":
                continue
            method = self._function(child, source, owner)
            if decl is not None:
                decl.methods.append(method)
            else:
                unit.functions.append(method)

    def _function(self, node, source: bytes, owner: Optional[str]) -> MethodDecl:  # type: ignore[no-untyped-def]
        modifiers = first_child(node, "function_modifiers")
        return_type = node.child_by_field_name("return_type")
        return MethodDecl(
            name=node_text(node.child_by_field_name("name"), source),
            params=_parameters(node.child_by_field_name("parameters"), source),
            return_type=node_text(return_type, source) if return_type is not None else "",
            is_async=modifiers is not None and "async" in node_text(modifiers, source).split(),
            visibility="public" if first_child(node, "visibility_modifier") is not None else "private",
            annotations=_attributes(node, source),
            line=node_line(node),
            owner=owner,
        )

    def _router_calls(self, root, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        """Builder-style registration: axum ``.route(p, get(h))``, actix ``.route(p, web::get().to(h))``."""
        for call in descendants(root, "call_expression"):
            function = call.child_by_field_name("function")
            if function is None or function.type != "field_expression":
                continue
            if node_text(function.child_by_field_name("field"), source) != "route":
                continue
            args = _arguments(call)
            if len(args) < 2 or args[0].type not in ("string_literal", "raw_string_literal"):
                continue
            prefix = join_paths(_nest_prefix(call, source), _scope_prefix(function, source))
            for method, handler, framework in _method_chain(args[1], source):
                unit.routes.append(
                    RouteFact(
                        method=method,
                        path=unquote(node_text(args[0], source)),
                        handler=handler,
                        prefix="" if prefix == "/" else prefix,
                        line=node_line(call),
                        framework=framework,
                    )
                )


def _attributes(node, source: bytes) -> List[Annotation]:  # type: ignore[no-untyped-def]
    annotations: List[Annotation] = []
    for item in preceding_siblings(node, "attribute_item", "line_comment", "block_comment"):
        if item.type != "attribute_item":
            continue
        match = _ATTRIBUTE.match(node_text(item, source).strip())
        if not match:
            continue
        raw_args = match.group("args") or ""
        args, kwargs = parse_arguments(raw_args, separators=("=",))
        methods = _METHOD_OPTION.findall(raw_args)
        if methods:
            kwargs["method"] = ",".join(methods)
        if match.group("value"):
            args = [match.group("value").strip()]
        annotations.append(Annotation(name=match.group("name"), args=args, kwargs=kwargs, line=node_line(item)))
    return annotations


def _serde_option(attributes: List[Annotation], key: str) -> Optional[str]:
    for attribute in attributes:
        if attribute.name == "serde" and key in attribute.kwargs:
            return unquote(attribute.kwargs[key])
    return None


def _rename(name: str, rule: str) -> str:
    """Apply a serde ``rename_all`` rule to a snake_case field name."""
    words = [word for word in name.split("_") if word]
    if not words:
        return name
    if rule == "camelCase":
        return words[0].lower() + "".join(word.capitalize() for word in words[1:])
    if rule == "PascalCase":
        return "".join(word.capitalize() for word in words)
    if rule == "kebab-case":
        return "-".join(words)
    if rule == "SCREAMING_SNAKE_CASE":
        return "_".join(words).upper()
    if rule == "SCREAMING-KEBAB-CASE":
        return "-".join(words).upper()
    if rule == "lowercase":
        return "".join(words).lower()
    if rule == "UPPERCASE":
        return "".join(words).upper()
    return name


def _parameters(node, source: bytes) -> List[Param]:  # type: ignore[no-untyped-def]
    params: List[Param] = []
    if node is None:
        return params
    for item in node.named_children:
        if item.type != "parameter":
            continue
        pattern_text = node_text(item.child_by_field_name("pattern"), source)
        names = [name for name in _BINDING_NAME.findall(pattern_text) if name not in ("mut", "ref", "web")]
        params.append(
            Param(
                name=names[-1] if names else pattern_text,
                type=node_text(item.child_by_field_name("type"), source),
                annotations=_attributes(item, source),
            )
        )
    return params


def _attribute_routes(method: MethodDecl, framework: str) -> List[RouteFact]:
    routes: List[RouteFact] = []
    for annotation in method.annotations:
        name = annotation.name.rpartition("::")[2]
        path = annotation.string_arg("path")
        if path is None:
            continue
        if name in _ROUTE_METHODS:
            verbs = [name.upper()]
        elif name == "route":
            verbs = [verb.upper() for verb in annotation.kwargs.get("method", "GET").split(",")]
        else:
            continue
        for verb in verbs:
            routes.append(
                RouteFact(
                    method=verb,
                    path=path,
                    handler=method.name,
                    owner=method.owner,
                    line=method.line,
                    framework=framework,
                )
            )
    return routes


def _arguments(call) -> List:  # type: ignore[no-untyped-def]
    arguments = call.child_by_field_name("arguments")
    if arguments is None:
        return []
    return [child for child in arguments.named_children if child.type not in ("line_comment", "block_comment")]


def _callee_name(function, source: bytes) -> str:  # type: ignore[no-untyped-def]
    return node_text(function, source).rpartition("::")[2]


def _handler_name(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    if node is None or node.type == "closure_expression":
        return "lambda"
    return node_text(node, source).rpartition("::")[2].split("<")[0] or "lambda"


def _method_chain(node, source: bytes) -> List[Tuple[str, str, str]]:  # type: ignore[no-untyped-def]
    """Flatten ``get(a).post(b)`` or ``web::get().to(a)`` into ``(method, handler, framework)`` triples."""
    if node is None or node.type != "call_expression":
        return []
    function = node.child_by_field_name("function")
    args = _arguments(node)
    if function is None:
        return []
    if function.type in ("identifier", "scoped_identifier"):
        name = _callee_name(function, source)
        if name in _ROUTE_METHODS and args:
            return [(name.upper(), _handler_name(args[0], source), "axum")]
        return []
    if function.type != "field_expression":
        return []
    field_name = node_text(function.child_by_field_name("field"), source)
    receiver = function.child_by_field_name("value")
    if field_name in _ROUTE_METHODS and args:
        return _method_chain(receiver, source) + [(field_name.upper(), _handler_name(args[0], source), "axum")]
    if field_name == "to" and args and receiver is not None and receiver.type == "call_expression":
        inner = receiver.child_by_field_name("function")
        verb = _callee_name(inner, source) if inner is not None else ""
        if verb in _ROUTE_METHODS:
            return [(verb.upper(), _handler_name(args[0], source), "actix")]
    return []


def _scope_prefix(function, source: bytes) -> str:  # type: ignore[no-untyped-def]
    """Follow the receiver chain of a ``.route`` call down to an actix ``web::scope("/x")``."""
    receiver = function.child_by_field_name("value")
    while receiver is not None and receiver.type == "call_expression":
        callee = receiver.child_by_field_name("function")
        if callee is None:
            break
        if callee.type in ("identifier", "scoped_identifier"):
            args = _arguments(receiver)
            if _callee_name(callee, source) == "scope" and args and args[0].type == "string_literal":
                return unquote(node_text(args[0], source))
            break
        if callee.type != "field_expression":
            break
        receiver = callee.child_by_field_name("value")
    return ""


def _nest_prefix(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    """Collect axum ``.nest("/x", ...)`` prefixes of the calls enclosing ``node``."""
    prefixes: List[str] = []
    current = node.parent
    while current is not None:
        if current.type == "arguments" and current.parent is not None and current.parent.type == "call_expression":
            call = current.parent
            function = call.child_by_field_name("function")
            args = _arguments(call)
            if (
                function is not None
                and function.type == "field_expression"
                and node_text(function.child_by_field_name("field"), source) == "nest"
                and args
                and args[0].type == "string_literal"
            ):
                prefixes.append(unquote(node_text(args[0], source)))
        current = current.parent
    return join_paths(*reversed(prefixes)) if prefixes else ""


def _framework_from_imports(imports: List[str]) -> str:
    for crate in ("rocket", "axum", "actix_web", "warp", "poem"):
        if crate in imports:
            return "actix" if crate == "actix_web" else crate
    return "actix"


__all__ = ["RustBackend", "RustTypeTable", "TYPES"]
