"""TypeScript/JavaScript backend on the tree-sitter grammar."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, decode_content, unquote
from ..paths import join_paths
from .treesitter import TreeSitterBackend, descendants, first_child, node_line, node_text, preceding_siblings
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["string", "String"],
            ("number", ""): ["number", "Number"],
            ("integer", "int64"): ["bigint", "BigInt"],
            ("boolean", ""): ["boolean", "Boolean"],
            ("string", "date-time"): ["Date"],
            ("string", "binary"): ["Buffer", "Uint8Array", "Blob", "ArrayBuffer", "File"],
            DEFAULT_MAPPING: ["any", "unknown", "object", "Object", "Record<string, any>", "Record<string, unknown>"],
            VOID_MAPPING: ["void", "undefined", "never", "null"],
        }
    ),
    union_nulls=("null", "undefined"),
    wrappers=("Promise<", "Observable<", "Partial<", "Readonly<", "Required<", "Awaited<"),
    sequence_prefixes=("Array<", "ReadonlyArray<", "Set<"),
    sequence_suffixes=("[]",),
    map_prefixes=("Record<", "Map<"),
    strip_prefixes=("readonly ",),
)

_ROUTE_VERBS = ("get", "post", "put", "delete", "patch", "head", "options")
_NEST_VERBS = {"Get", "Post", "Put", "Delete", "Patch", "Head", "Options"}
_CLIENT_OBJECTS = {
    "axios", "http", "https", "fetch", "request", "supertest", "client", "api", "$http", "ky", "got",
    "superagent", "this", "map", "params", "searchParams", "headers", "cache", "store", "localStorage",
    "config", "process", "req", "res", "ctx", "c",
}
_FRAMEWORK_IMPORTS = (
    ("@nestjs/", "nestjs"),
    ("elysia", "elysia"),
    ("@elysiajs/", "elysia"),
    ("fastify", "fastify"),
    ("hono", "hono"),
    ("@koa/router", "koa"),
    ("koa-router", "koa"),
    ("express", "express"),
)
_ZOD_SCALARS = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "date": "Date",
    "bigint": "bigint",
    "any": "any",
    "unknown": "unknown",
    "enum": "string",
    "nativeEnum": "string",
    "literal": "string",
    "uuid": "string",
}
_OPTIONAL_MODIFIERS = ("optional", "nullable", "nullish", "default")
_PATH_OPTION = re.compile(r"\bpath\s*:\s*(['\"`])(?P<path>[^'\"`]*)\1")
_PREFIX_OPTION = re.compile(r"\bprefix\s*:\s*(['\"`])(?P<path>[^'\"`]*)\1")
_FUNCTION_NODES = ("arrow_function", "function_expression", "function")


class TypeScriptBackend(TreeSitterBackend):
    """Extracts interfaces, classes, Zod schemas and Express, NestJS or Elysia routes."""

    language = "typescript"
    extensions = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")
    grammar = "typescript"
    types = TYPES

    def grammar_for(self, filename: str) -> str:
        return "tsx" if filename.endswith((".tsx", ".jsx")) else "typescript"

    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        text = decode_content(content)
        source = text.encode("utf-8")
        tree = self.parse_tree(filename, source)
        unit = SourceUnit(path=filename, language=self.language, content=text, tree=tree)
        for node in tree.root_node.children:
            self._visit(node, source, unit, [])
        self._routes(tree.root_node, source, unit)
        return unit

    def _visit(self, node, source: bytes, unit: SourceUnit, decorators: List) -> None:  # type: ignore[no-untyped-def]
        kind = node.type
        if kind == "import_statement":
            module = node.child_by_field_name("source")
            if module is not None:
                unit.imports.append(unquote(node_text(module, source)))
        elif kind == "export_statement":
            exported = node.child_by_field_name("declaration")
            if exported is not None:
                outer = [child for child in node.children if child.type == "decorator"]
                self._visit(exported, source, unit, outer)
        elif kind == "interface_declaration":
            unit.types.append(self._interface(node, source))
        elif kind == "type_alias_declaration":
            decl = self._type_alias(node, source)
            if decl is not None:
                unit.types.append(decl)
        elif kind in ("class_declaration", "abstract_class_declaration", "class"):
            decl = self._class(node, source, decorators)
            if decl is not None:
                unit.types.append(decl)
                self._nest_routes(decl, unit)
        elif kind == "function_declaration":
            unit.functions.append(self._function(node, source, None))
        elif kind == "lexical_declaration" or kind == "variable_declaration":
            for declarator in node.named_children:
                if declarator.type == "variable_declarator":
                    self._declarator(declarator, source, unit)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _interface(self, node, source: bytes) -> TypeDecl:  # type: ignore[no-untyped-def]
        decl = TypeDecl(
            name=node_text(node.child_by_field_name("name"), source),
            line=node_line(node),
            kind="interface",
        )
        heritage = first_child(node, "extends_type_clause", "extends_clause")
        if heritage is not None:
            decl.bases = [node_text(child, source) for child in heritage.named_children]
        body = node.child_by_field_name("body")
        if body is not None:
            decl.fields.extend(self._signatures(body, source))
        return decl

    def _type_alias(self, node, source: bytes) -> Optional[TypeDecl]:  # type: ignore[no-untyped-def]
        value = node.child_by_field_name("value")
        if value is None or value.type != "object_type":
            return None
        decl = TypeDecl(
            name=node_text(node.child_by_field_name("name"), source),
            line=node_line(node),
            kind="type",
        )
        decl.fields.extend(self._signatures(value, source))
        return decl

    def _signatures(self, body, source: bytes) -> List[FieldDecl]:  # type: ignore[no-untyped-def]
        fields: List[FieldDecl] = []
        for member in body.named_children:
            if member.type != "property_signature":
                continue
            name = unquote(node_text(member.child_by_field_name("name"), source))
            optional = any(child.type == "?" for child in member.children)
            raw_type = _annotation_text(member.child_by_field_name("type"), source)
            fields.append(self.make_field(name, raw_type, node_line(member), optional=optional))
        return fields

    def _class(self, node, source: bytes, outer: List) -> Optional[TypeDecl]:  # type: ignore[no-untyped-def]
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        decorators = list(outer) + [child for child in node.children if child.type == "decorator"]
        decl = TypeDecl(
            name=node_text(name_node, source),
            annotations=[_decorator(item, source) for item in decorators],
            line=node_line(node),
            kind="class",
        )
        heritage = first_child(node, "class_heritage")
        if heritage is not None:
            for clause in heritage.named_children:
                decl.bases.extend(node_text(child, source) for child in clause.named_children)
        body = node.child_by_field_name("body")
        if body is None:
            return decl
        for member in body.named_children:
            if member.type in ("public_field_definition", "field_definition"):
                name_field = member.child_by_field_name("name") or member.child_by_field_name("property")
                if name_field is None or _is_static(member):
                    continue
                value = member.child_by_field_name("value")
                decl.fields.append(
                    self.make_field(
                        unquote(node_text(name_field, source)),
                        _annotation_text(member.child_by_field_name("type"), source),
                        node_line(member),
                        default=node_text(value, source) if value is not None else None,
                        optional=any(child.type == "?" for child in member.children),
                        annotations=[
                            _decorator(child, source) for child in member.children if child.type == "decorator"
                        ],
                    )
                )
            elif member.type == "method_definition":
                method = self._function(member, source, decl.name)
                method.annotations = [
                    _decorator(item, source) for item in preceding_siblings(member, "decorator")
                ]
                decl.methods.append(method)
        return decl

    def _function(self, node, source: bytes, owner: Optional[str]) -> MethodDecl:  # type: ignore[no-untyped-def]
        accessibility = first_child(node, "accessibility_modifier")
        name = node_text(node.child_by_field_name("name"), source)
        visibility = node_text(accessibility, source) if accessibility is not None else "public"
        if name.startswith("#"):
            visibility = "private"
        return MethodDecl(
            name=name,
            params=_parameters(node.child_by_field_name("parameters"), source),
            return_type=_annotation_text(node.child_by_field_name("return_type"), source),
            is_async=any(child.type == "async" for child in node.children),
            visibility=visibility,
            line=node_line(node),
            owner=owner,
        )

    def _declarator(self, node, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        name = node_text(node.child_by_field_name("name"), source)
        value = node.child_by_field_name("value")
        if value is None or not name:
            return
        if value.type in ("arrow_function", "function_expression", "function"):
            method = self._function(value, source, None)
            method.name = name
            unit.functions.append(method)
            return
        schema = _zod_object(value, source)
        if schema is None:
            return
        decl = TypeDecl(name=name, line=node_line(node), kind="zod")
        arguments = schema.child_by_field_name("arguments")
        shape = first_child(arguments, "object") if arguments is not None else None
        if shape is not None:
            for pair in shape.named_children:
                if pair.type != "pair":
                    continue
                raw_type, optional = _zod_type(pair.child_by_field_name("value"), source)
                decl.fields.append(
                    self.make_field(
                        unquote(node_text(pair.child_by_field_name("key"), source)),
                        raw_type,
                        node_line(pair),
                        optional=optional,
                    )
                )
        unit.types.append(decl)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _nest_routes(self, decl: TypeDecl, unit: SourceUnit) -> None:
        controller = next((item for item in decl.annotations if item.name == "Controller"), None)
        if controller is None:
            return
        prefix = controller.string_arg("path") or _object_path(controller.args) or ""
        for method in decl.methods:
            for annotation in method.annotations:
                if annotation.name not in _NEST_VERBS:
                    continue
                unit.routes.append(
                    RouteFact(
                        method=annotation.name.upper(),
                        path=annotation.string_arg("path") or _object_path(annotation.args) or "",
                        handler=method.name,
                        owner=decl.name,
                        prefix=prefix,
                        line=method.line,
                        framework="nestjs",
                    )
                )

    def _elysia_routes(self, root, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        instances: Dict[str, str] = {}
        for declarator in descendants(root, "variable_declarator"):
            name = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            if name is None or value is None:
                continue
            base = _elysia_prefix(_chain_origin(value), source, instances)
            if base is not None:
                instances[node_text(name, source)] = base
        for call in descendants(root, "call_expression"):
            target, member, args = _member_call(call, source)
            if member not in _ROUTE_VERBS or target is None or not args or not _is_string(args[0]):
                continue
            groups, receiver = _elysia_groups(call, source)
            base = _elysia_prefix(_chain_origin(receiver if receiver is not None else target), source, instances)
            if base is None:
                continue
            # A trailing object argument holds hooks and validation schemas.
            handlers = [arg for arg in args[1:] if arg.type != "object"]
            handler = "lambda"
            if handlers and not _is_string(handlers[-1]):
                handler = _handler_name(handlers[-1], source)
            parts = [part for part in [base, *groups] if part]
            unit.routes.append(
                RouteFact(
                    method=member.upper(),
                    path=unquote(node_text(args[0], source)),
                    handler=handler,
                    prefix=join_paths(*parts) if parts else "",
                    line=node_line(call),
                    framework="elysia",
                )
            )

    def _routes(self, root, source: bytes, unit: SourceUnit) -> None:  # type: ignore[no-untyped-def]
        calls = list(descendants(root, "call_expression"))
        mounts: Dict[str, str] = {}
        for call in calls:
            target, member, args = _member_call(call, source)
            if member == "use" and len(args) >= 2 and _is_string(args[0]) and args[-1].type == "identifier":
                mounts[node_text(args[-1], source)] = unquote(node_text(args[0], source))
        framework = _framework_from_imports(unit.imports)
        if framework == "elysia":
            self._elysia_routes(root, source, unit)
            return
        for call in calls:
            target, member, args = _member_call(call, source)
            if member not in _ROUTE_VERBS or target is None:
                continue
            path_node: Optional[object] = None
            router = ""
            if target.type == "call_expression":
                inner_target, inner_member, inner_args = _member_call(target, source)
                if inner_member != "route" or not inner_args or not _is_string(inner_args[0]):
                    continue
                path_node = inner_args[0]
                router = node_text(inner_target, source) if inner_target is not None else ""
                handlers = args
            else:
                router = node_text(target, source)
                if router.rpartition(".")[2] in _CLIENT_OBJECTS or len(args) < 2 or not _is_string(args[0]):
                    continue
                path_node = args[0]
                handlers = args[1:]
            if not handlers:
                continue
            unit.routes.append(
                RouteFact(
                    method=member.upper(),
                    path=unquote(node_text(path_node, source)),
                    handler=_handler_name(handlers[-1], source),
                    prefix=mounts.get(router, ""),
                    line=node_line(call),
                    framework=framework,
                )
            )


def _member_call(call, source: bytes) -> Tuple[Optional[object], str, List]:  # type: ignore[no-untyped-def]
    """Split ``target.member(args)`` into its parts; ``member`` is empty otherwise."""
    function = call.child_by_field_name("function")
    arguments = call.child_by_field_name("arguments")
    args = list(arguments.named_children) if arguments is not None else []
    args = [arg for arg in args if arg.type != "comment"]
    if function is None or function.type != "member_expression":
        return None, "", args
    prop = function.child_by_field_name("property")
    return function.child_by_field_name("object"), node_text(prop, source), args


def _chain_origin(node):  # type: ignore[no-untyped-def]
    """Return the receiver a chain of ``.call()`` links starts from."""
    while node is not None and node.type == "call_expression":
        function = node.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            break
        node = function.child_by_field_name("object")
    return node


def _elysia_prefix(origin, source: bytes, instances: Dict[str, str]) -> Optional[str]:  # type: ignore[no-untyped-def]
    """Return the ``prefix`` option of an Elysia app, or None when ``origin`` is not one."""
    if origin is None:
        return None
    if origin.type == "identifier":
        return instances.get(node_text(origin, source))
    if origin.type != "new_expression" or node_text(origin.child_by_field_name("constructor"), source) != "Elysia":
        return None
    match = _PREFIX_OPTION.search(node_text(origin.child_by_field_name("arguments"), source))
    return match.group("path") if match else ""


def _elysia_groups(call, source: bytes) -> Tuple[List[str], Optional[object]]:  # type: ignore[no-untyped-def]
    """Collect the ``.group()`` prefixes enclosing ``call``, outermost first.

    Also returns the receiver of the outermost group so the caller can resolve
    which app the grouped routes belong to.
    """
    prefixes: List[str] = []
    receiver = None
    node = call.parent
    while node is not None:
        parent = node.parent
        if node.type in _FUNCTION_NODES and parent is not None and parent.type == "arguments":
            target, member, args = _member_call(parent.parent, source)
            if member == "group" and args and _is_string(args[0]):
                prefixes.insert(0, unquote(node_text(args[0], source)))
                receiver = target
        node = parent
    return prefixes, receiver


def _is_string(node) -> bool:  # type: ignore[no-untyped-def]
    return node.type in ("string", "template_string")


def _handler_name(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    if node.type in _FUNCTION_NODES:
        return "lambda"
    if node.type == "call_expression":
        function = node.child_by_field_name("function")
        return _handler_name(function, source) if function is not None else "lambda"
    return node_text(node, source).rpartition(".")[2] or "lambda"


def _annotation_text(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    if node is None:
        return ""
    text = node_text(node, source).strip()
    if node.type == "type_annotation" and text.startswith(":"):
        text = text[1:]
    return " ".join(text.split())


def _is_static(node) -> bool:  # type: ignore[no-untyped-def]
    return any(child.type == "static" for child in node.children)


def _decorator(node, source: bytes) -> Annotation:  # type: ignore[no-untyped-def]
    expression = node.named_children[0] if node.named_children else None
    if expression is not None and expression.type == "call_expression":
        arguments = expression.child_by_field_name("arguments")
        return Annotation(
            name=node_text(expression.child_by_field_name("function"), source),
            args=[node_text(arg, source) for arg in (arguments.named_children if arguments is not None else [])],
            line=node_line(node),
        )
    return Annotation(name=node_text(expression, source), line=node_line(node))


def _parameters(node, source: bytes) -> List[Param]:  # type: ignore[no-untyped-def]
    params: List[Param] = []
    if node is None:
        return params
    for item in node.named_children:
        if item.type not in ("required_parameter", "optional_parameter"):
            if item.type == "identifier":
                params.append(Param(name=node_text(item, source)))
            continue
        pattern = item.child_by_field_name("pattern")
        value = item.child_by_field_name("value")
        params.append(
            Param(
                name=node_text(pattern, source),
                type=_annotation_text(item.child_by_field_name("type"), source),
                required=item.type == "required_parameter" and value is None,
                default=node_text(value, source) if value is not None else None,
                annotations=[_decorator(child, source) for child in item.children if child.type == "decorator"],
            )
        )
    return params


def _object_path(args: List[str]) -> Optional[str]:
    for arg in args:
        match = _PATH_OPTION.search(arg)
        if match:
            return match.group("path")
    return None


def _zod_chain(node, source: bytes) -> Tuple[Optional[object], List[str]]:  # type: ignore[no-untyped-def]
    """Return the base of a validator chain and the chained method names.

    The base is the innermost ``z.x(...)`` call, or the schema identifier a
    chain such as ``AddressSchema.optional()`` starts from.
    """
    modifiers: List[str] = []
    current = node
    while current is not None and current.type == "call_expression":
        function = current.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            break
        target = function.child_by_field_name("object")
        if target is not None and target.type == "identifier" and node_text(target, source) == "z":
            return current, modifiers
        modifiers.append(node_text(function.child_by_field_name("property"), source))
        current = target
    if current is not None and current.type == "identifier" and node_text(current, source) != "z":
        return current, modifiers
    return None, modifiers


def _zod_object(node, source: bytes):  # type: ignore[no-untyped-def]
    base, _ = _zod_chain(node, source)
    if base is not None and node_text(base.child_by_field_name("function"), source) in ("z.object", "z.strictObject"):
        return base
    return None


def _zod_type(node, source: bytes) -> Tuple[str, bool]:  # type: ignore[no-untyped-def]
    """Translate a Zod validator expression into a TypeScript type string."""
    if node is None:
        return "", False
    base, modifiers = _zod_chain(node, source)
    if base is None:
        return "", False
    optional = any(modifier in _OPTIONAL_MODIFIERS for modifier in modifiers)
    if base.type == "identifier":
        name = node_text(base, source)
        name = name[: -len("Schema")] if name.endswith("Schema") and len(name) > 6 else name
        return name + ("[]" if "array" in modifiers else ""), optional
    kind = node_text(base.child_by_field_name("function"), source)[2:]
    arguments = base.child_by_field_name("arguments")
    inner = [arg for arg in (arguments.named_children if arguments is not None else []) if arg.type != "comment"]
    if kind == "array" and inner:
        raw_type = _zod_type(inner[0], source)[0] + "[]"
    elif kind == "record" and inner:
        raw_type = "Record<string, %s>" % _zod_type(inner[-1], source)[0]
    elif kind == "object":
        raw_type = "object"
    else:
        raw_type = _ZOD_SCALARS.get(kind, "any")
    if "array" in modifiers:
        raw_type += "[]"
    return raw_type, optional


def _framework_from_imports(imports: List[str]) -> str:
    for module in imports:
        for prefix, framework in _FRAMEWORK_IMPORTS:
            if module.startswith(prefix):
                return framework
    return "express"


__all__ = ["TypeScriptBackend", "TYPES"]
