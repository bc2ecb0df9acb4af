"""Go backend on the tree-sitter grammar: tagged structs and gin/echo/fiber/chi/net-http routes."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, decode_content, unquote
from ..paths import join_paths
from .treesitter import TreeSitterBackend, descendants, node_line, node_text
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table


class GoTypeTable(TypeTable):
    """Type table that understands ``map[K]V`` and fixed-size ``[N]T`` arrays."""

    _ARRAY = re.compile(r"^\[\d*\](?P<element>.+)$")

    def sequence_element(self, text: str) -> Optional[str]:
        match = self._ARRAY.match(text)
        if match:
            return match.group("element").strip()
        return super().sequence_element(text)

    def map_parts(self, text: str) -> Optional[Tuple[str, str]]:
        if not text.startswith("map["):
            return super().map_parts(text)
        depth = 0
        for index in range(3, len(text)):
            if text[index] == "[":
                depth += 1
            elif text[index] == "]":
                depth -= 1
                if depth == 0:
                    return text[4:index].strip(), text[index + 1 :].strip()
        return None


TYPES = GoTypeTable(
    format_table(
        {
            ("string", ""): ["string", "sql.NullString", "null.String"],
            ("integer", ""): ["int", "int8", "int16", "uint", "uint8", "uint16", "byte", "rune", "uintptr"],
            ("integer", "int32"): ["int32", "uint32", "sql.NullInt32"],
            ("integer", "int64"): ["int64", "uint64", "time.Duration", "sql.NullInt64", "null.Int"],
            ("number", "float"): ["float32"],
            ("number", "double"): ["float64", "sql.NullFloat64", "null.Float"],
            ("boolean", ""): ["bool", "sql.NullBool", "null.Bool"],
            ("string", "binary"): ["[]byte", "[]uint8"],
            ("string", "date-time"): ["time.Time", "sql.NullTime", "null.Time"],
            ("string", "uuid"): ["uuid.UUID", "uuid.NullUUID"],
            DEFAULT_MAPPING: [
                "interface{}", "any", "json.RawMessage", "map[string]interface{}", "map[string]any", "gin.H",
                "echo.Map", "fiber.Map",
            ],
            VOID_MAPPING: ["error"],
        }
    ),
    nullable_prefixes=("*",),
    sequence_prefixes=("[]",),
)

_TAG_ITEM = re.compile(r"(\w+):\"([^\"]*)\"")
_UPPER_VERBS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
_TITLE_VERBS = tuple(verb.title() for verb in _UPPER_VERBS)
_HANDLE_FUNCS = ("HandleFunc", "Handle", "HandlerFunc")
_CLIENT_OPERANDS = {"http", "client", "resty", "req", "c", "ctx"}
_PATTERN_METHOD = re.compile(r"^(?P<method>[A-Z]+)\s+(?P<path>/.*)$")
_FRAMEWORK_IMPORTS = (
    ("github.com/gin-gonic/gin", "gin"),
    ("github.com/labstack/echo", "echo"),
    ("github.com/gofiber/fiber", "fiber"),
    ("github.com/go-chi/chi", "chi"),
    ("github.com/gorilla/mux", "gorilla"),
)


class GoBackend(TreeSitterBackend):
    """Extracts structs, funcs and router registrations from Go sources."""

    language = "go"
    extensions = (".go",)
    grammar = "go"
    types = TYPES

    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        text = decode_content(content)
        source = text.encode("utf-8")
        tree = self.parse_tree(filename, source)
        unit = SourceUnit(path=filename, language=self.language, content=text, tree=tree)
        methods: List[MethodDecl] = []
        for node in tree.root_node.named_children:
            kind = node.type
            if kind == "import_declaration":
                unit.imports.extend(
                    unquote(node_text(spec.child_by_field_name("path"), source))
                    for spec in descendants(node, "import_spec")
                )
            elif kind == "type_declaration":
                for spec in node.named_children:
                    if spec.type == "type_spec":
                        decl = self._type_spec(spec, source)
                        if decl is not None:
                            unit.types.append(decl)
            elif kind == "function_declaration":
                unit.functions.append(self._function(node, source, None))
            elif kind == "method_declaration":
                methods.append(self._function(node, source, _receiver_type(node, source)))
        for method in methods:
            decl = unit.find_type(method.owner or "")
            if decl is not None:
                decl.methods.append(method)
            else:
                unit.functions.append(method)
        self._routes(tree.root_node, source, unit)
        return unit

    def _type_spec(self, node, source: bytes) -> Optional[TypeDecl]:  # type: ignore[no-untyped-def]
        type_node = node.child_by_field_name("type")
        if type_node is None or type_node.type not in ("struct_type", "interface_type"):
            return None
        decl = TypeDecl(
            name=node_text(node.child_by_field_name("name"), source),
            line=node_line(node),
            kind="struct" if type_node.type == "struct_type" else "interface",
        )
        if type_node.type == "struct_type":
            for body in type_node.named_children:
                if body.type != "field_declaration_list":
                    continue
                for member in body.named_children:
                    if member.type == "field_declaration":
                        decl.fields.extend(self._fields(member, source))
        return decl

    def _fields(self, node, source: bytes) -> List[FieldDecl]:  # type: ignore[no-untyped-def]
        raw_type = node_text(node.child_by_field_name("type"), source)
        tag_node = node.child_by_field_name("tag")
        tags = dict(_TAG_ITEM.findall(node_text(tag_node, source))) if tag_node is not None else {}
        names = [node_text(child, source) for child in node.children_by_field_name("name")]
        annotations = [Annotation(name=key, args=[f'"{value}"'], line=node_line(node)) for key, value in tags.items()]
        if not names:
            names = [raw_type.lstrip("*").rpartition(".")[2]]
            annotations.append(Annotation(name="embedded", line=node_line(node)))
        json_name, _, json_options = tags.get("json", "").partition(",")
        if json_name == "-":
            return []
        rules = tags.get("validate", "") + "," + tags.get("binding", "")
        required = "required" in rules.split(",")
        omitted = "omitempty" in json_options.split(",")
        fields: List[FieldDecl] = []
        for name in names:
            if not name[:1].isupper() and "embedded" not in {item.name for item in annotations}:
                continue
            field_decl = self.make_field(
                name,
                raw_type,
                node_line(node),
                optional=omitted,
                alias=json_name or None,
                annotations=annotations,
            )
            if required:
                field_decl.optional = False
            fields.append(field_decl)
        return fields

    def _function(self, node, source: bytes, owner: Optional[str]) -> MethodDecl:  # type: ignore[no-untyped-def]
        name = node_text(node.child_by_field_name("name"), source)
        result = node.child_by_field_name("result")
        return MethodDecl(
            name=name,
            params=_parameters(node.child_by_field_name("parameters"), source),
            return_type=node_text(result, source) if result is not None else "",
            visibility="public" if name[:1].isupper() else "private",
            line=node_line(node),
            owner=owner,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _routes(self, root, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        groups: Dict[str, Tuple[str, str]] = {}
        for assignment in descendants(root, "short_var_declaration", "assignment_statement", "var_spec"):
            left = assignment.child_by_field_name("left") or assignment.child_by_field_name("name")
            right = assignment.child_by_field_name("right") or assignment.child_by_field_name("value")
            if left is None or right is None:
                continue
            value = right.named_children[0] if right.type == "expression_list" and right.named_children else right
            group = _group_call(value, source)
            if group is not None:
                name = node_text(left.named_children[0] if left.named_children else left, source)
                groups[name] = group
        for call in descendants(root, "call_expression"):
            function = call.child_by_field_name("function")
            if function is None or function.type != "selector_expression":
                continue
            member = node_text(function.child_by_field_name("field"), source)
            if member == "Mount":
                args = _arguments(call)
                if len(args) == 2 and _is_string(args[0]) and args[1].type == "identifier":
                    groups[node_text(args[1], source)] = (
                        node_text(function.child_by_field_name("operand"), source),
                        unquote(node_text(args[0], source)),
                    )
        framework = _framework_from_imports(unit.imports)
        for call in descendants(root, "call_expression"):
            function = call.child_by_field_name("function")
            if function is None or function.type != "selector_expression":
                continue
            member = node_text(function.child_by_field_name("field"), source)
            operand = function.child_by_field_name("operand")
            args = _arguments(call)
            if not args or not _is_string(args[0]):
                continue
            raw_path = unquote(node_text(args[0], source))
            if member in _UPPER_VERBS or member in _TITLE_VERBS:
                if len(args) < 2 or node_text(operand, source) in _CLIENT_OPERANDS:
                    continue
                methods = [member.upper()]
                route_framework = framework
            elif member in _HANDLE_FUNCS:
                if len(args) < 2:
                    continue
                pattern = _PATTERN_METHOD.match(raw_path)
                if pattern:
                    methods, raw_path = [pattern.group("method")], pattern.group("path")
                else:
                    methods = _chained_methods(call, source) or ["GET"]
                route_framework = framework if framework in ("gorilla", "chi") else "net/http"
            else:
                continue
            prefix = join_paths(_route_prefix(call, source), _operand_prefix(operand, groups, source, 0))
            for method in methods:
                unit.routes.append(
                    RouteFact(
                        method=method,
                        path=raw_path,
                        handler=_handler_name(args[-1], source),
                        prefix="" if prefix == "/" else prefix,
                        line=node_line(call),
                        framework=route_framework,
                    )
                )


def _receiver_type(node, source: bytes) -> Optional[str]:  # type: ignore[no-untyped-def]
    receiver = node.child_by_field_name("receiver")
    if receiver is None:
        return None
    for declaration in receiver.named_children:
        type_node = declaration.child_by_field_name("type")
        if type_node is not None:
            return node_text(type_node, source).lstrip("*").split("[")[0]
    return None


def _parameters(node, source: bytes) -> List[Param]:  # type: ignore[no-untyped-def]
    params: List[Param] = []
    if node is None:
        return params
    for declaration in node.named_children:
        if declaration.type not in ("parameter_declaration", "variadic_parameter_declaration"):
            continue
        raw_type = node_text(declaration.child_by_field_name("type"), source)
        names = [node_text(child, source) for child in declaration.children_by_field_name("name")]
        for name in names or [""]:
            params.append(Param(name=name, type=raw_type))
    return params


def _arguments(call) -> List:  # type: ignore[no-untyped-def]
    arguments = call.child_by_field_name("arguments")
    if arguments is None:
        return []
    return [child for child in arguments.named_children if child.type != "comment"]


def _is_string(node) -> bool:  # type: ignore[no-untyped-def]
    return node.type in ("interpreted_string_literal", "raw_string_literal")


def _handler_name(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    if node.type == "func_literal":
        return "lambda"
    if node.type == "call_expression":
        function = node.child_by_field_name("function")
        args = _arguments(node)
        if function is not None and node_text(function, source).endswith("HandlerFunc") and args:
            return _handler_name(args[0], source)
        return _handler_name(function, source) if function is not None else "lambda"
    return node_text(node, source).rpartition(".")[2] or "lambda"


def _group_call(node, source: bytes) -> Optional[Tuple[str, str]]:  # type: ignore[no-untyped-def]
    """Return ``(parent, prefix)`` for ``r.Group("/x")`` or ``r.PathPrefix("/x").Subrouter()``."""
    while node is not None and node.type == "call_expression":
        function = node.child_by_field_name("function")
        if function is None or function.type != "selector_expression":
            return None
        member = node_text(function.child_by_field_name("field"), source)
        operand = function.child_by_field_name("operand")
        args = _arguments(node)
        if member in ("Group", "PathPrefix") and args and _is_string(args[0]):
            return node_text(operand, source), unquote(node_text(args[0], source))
        node = operand
    return None


def _operand_prefix(operand, groups: Dict[str, Tuple[str, str]], source: bytes, depth: int) -> str:  # type: ignore[no-untyped-def]
    if operand is None or depth > 8:
        return ""
    if operand.type == "call_expression":
        group = _group_call(operand, source)
        if group is None:
            return ""
        return join_paths(_name_prefix(group[0], groups, depth + 1), group[1])
    return _name_prefix(node_text(operand, source), groups, depth)


def _name_prefix(name: str, groups: Dict[str, Tuple[str, str]], depth: int) -> str:
    if name not in groups or depth > 8:
        return ""
    parent, prefix = groups[name]
    return join_paths(_name_prefix(parent, groups, depth + 1), prefix)


def _route_prefix(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    """Collect chi ``r.Route("/x", func(r chi.Router) {...})`` prefixes enclosing ``node``."""
    prefixes: List[str] = []
    current = node.parent
    while current is not None:
        if current.type == "func_literal":
            arguments = current.parent
            call = arguments.parent if arguments is not None else None
            if call is not None and call.type == "call_expression":
                function = call.child_by_field_name("function")
                args = _arguments(call)
                if (
                    function is not None
                    and function.type == "selector_expression"
                    and node_text(function.child_by_field_name("field"), source) in ("Route", "Group")
                    and args
                    and _is_string(args[0])
                ):
                    prefixes.append(unquote(node_text(args[0], source)))
        current = current.parent
    return join_paths(*reversed(prefixes)) if prefixes else ""


def _chained_methods(call, source: bytes) -> List[str]:  # type: ignore[no-untyped-def]
    """Gorilla's ``r.HandleFunc(...).Methods("GET", "POST")``."""
    selector = call.parent
    if selector is None or selector.type != "selector_expression":
        return []
    if node_text(selector.child_by_field_name("field"), source) != "Methods":
        return []
    outer = selector.parent
    if outer is None or outer.type != "call_expression":
        return []
    return [unquote(node_text(arg, source)).upper() for arg in _arguments(outer) if _is_string(arg)]


def _framework_from_imports(imports: List[str]) -> str:
    for module in imports:
        for prefix, framework in _FRAMEWORK_IMPORTS:
            if module.startswith(prefix):
                return framework
    return "net/http"


__all__ = ["GoBackend", "GoTypeTable", "TYPES"]
