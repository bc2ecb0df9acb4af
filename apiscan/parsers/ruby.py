"""Ruby backend: classes and methods, Rails route DSL, Sinatra route blocks."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from ..models import MethodDecl, Param, ResourceFact, RouteFact, SourceUnit, TypeDecl, unquote
from ..paths import join_paths
from .base import RegexBackend
from .text import (
    find_keyword_block,
    line_of,
    list_literal,
    mask_comments,
    mask_literals,
    split_top_level,
    statement_end,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["String", "Symbol", "string", "text", "citext", "symbol"],
            ("integer", ""): ["Integer", "integer"],
            ("integer", "int64"): ["bigint"],
            ("number", ""): ["Float", "float", "Numeric", "BigDecimal", "Decimal", "decimal"],
            ("boolean", ""): ["TrueClass", "FalseClass", "Boolean", "Bool", "boolean"],
            ("string", "date-time"): ["Time", "DateTime", "datetime", "time", "timestamp", "ActiveSupport::TimeWithZone"],
            ("string", "date"): ["Date", "date"],
            ("string", "uuid"): ["uuid", "UUID"],
            ("string", "binary"): ["binary", "ActionDispatch::Http::UploadedFile"],
            DEFAULT_MAPPING: ["Hash", "Object", "json", "jsonb"],
            VOID_MAPPING: ["NilClass", "Nil", "nil"],
        }
    ),
    nullable_suffixes=(".optional", ".maybe"),
    sequence_prefixes=("Array.of(", "Array[", "Array<"),
    map_prefixes=("Hash.map(", "Hash[", "Hash<"),
    strip_prefixes=(
        ":",
        "Types::Strict::",
        "Types::Coercible::",
        "Types::Params::",
        "Types::JSON::",
        "Types::Nominal::",
        "Types::",
    ),
)

_OPENERS = ("do", "def", "class", "module")
_STATEMENT_OPENERS = ("if", "unless", "while", "until", "case", "begin", "for")

_REQUIRE = re.compile(r"^[ \t]*require(?:_relative)?\s*\(?\s*['\"]([^'\"]+)['\"]", re.MULTILINE)
_TYPE = re.compile(
    r"^[ \t]*(?P<kind>class|module)\s+(?P<name>[A-Z]\w*(?:::[A-Z]\w*)*)(?:\s*<\s*(?P<base>[A-Z][\w:.]*))?",
    re.MULTILINE,
)
_DEF = re.compile(
    r"^[ \t]*(?:(?P<vis>private|protected|public)\s+)?def\s+(?P<self>self\.)?(?P<name>[A-Za-z_]\w*[?!=]?)"
    r"(?:\s*\((?P<params>[^)]*)\)|[ \t]+(?P<bare>[^\n;=#]+))?",
    re.MULTILINE,
)
_VISIBILITY = re.compile(r"^[ \t]*(private|protected|public)[ \t]*$", re.MULTILINE)
_ATTR = re.compile(r"^[ \t]*attr_(?:accessor|reader|writer)\s+(?P<names>:\w+(?:\s*,\s*:\w+)*)", re.MULTILINE)
_ATTRIBUTE = re.compile(
    r"^[ \t]*(?P<macro>attribute\??|property|field)\s+:(?P<name>\w+)(?:[ \t]*,[ \t]*(?P<rest>[^\n]+))?",
    re.MULTILINE,
)
_DRAW = re.compile(r"\.routes\.draw(?:\s*\([^)]*\))?\s+do\b")
_STATEMENT = re.compile(
    r"^[ \t]*(?P<kw>namespace|scope|resources|resource|member|collection|controller|constraints|defaults"
    r"|get|post|put|patch|delete|options|head|match|root)\b(?![?!:])[ \t]*(?P<paren>\()?(?P<args>[^\n]*)",
    re.MULTILINE,
)
_BLOCK_OPEN = re.compile(r"(?:^|\s)(?P<brace>do|\{)(?:\s*\|[^|]*\|)?\s*$")
_MODIFIER = re.compile(r"\s(?:if|unless)\s")
_KEYWORD_ARG = re.compile(r"^(?:(?P<a>[A-Za-z_]\w*):(?!:)|:(?P<b>[A-Za-z_]\w*)\s*=>)\s*(?P<value>.+)$", re.DOTALL)

_VERBS = ("get", "post", "put", "patch", "delete", "options", "head")
_PASSTHROUGH = ("constraints", "defaults")


@dataclass(frozen=True)
class _Scope:
    """Routing context accumulated while descending into DSL blocks."""

    framework: str
    prefix: str = ""
    module: str = ""
    controller: Optional[str] = None
    resource_path: Optional[str] = None
    owner: Optional[str] = None


class RubyBackend(RegexBackend):
    """Extracts classes, methods, Rails routes and Sinatra routes from Ruby files."""

    language = "ruby"
    extensions = (".rb", ".rake")
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        plain = mask_comments(text, line_markers=("#",), block=("=begin", "=end"), quotes="\"'")
        unit.imports.extend(_REQUIRE.findall(plain))
        extents: List[Tuple[int, int, str]] = []
        self._scan_types(plain, 0, len(plain), None, unit, extents)
        for match in _DEF.finditer(plain):
            if any(low <= match.start() < high for low, high, _ in extents):
                continue
            unit.functions.append(_method(plain, match, "public", None))
        draws = list(_DRAW.finditer(plain))
        for draw in draws:
            body, body_start = find_keyword_block(plain, draw.end(), _OPENERS, _STATEMENT_OPENERS)
            self._walk(plain, body_start, body_start + len(body), _Scope("rails"), unit)
        if not draws:
            self._walk(plain, 0, len(plain), _Scope("sinatra"), unit, extents)

    # ------------------------------------------------------------------
    # Classes and modules
    # ------------------------------------------------------------------

    def _scan_types(
        self,
        plain: str,
        start: int,
        end: int,
        namespace: Optional[str],
        unit: SourceUnit,
        extents: List[Tuple[int, int, str]],
    ) -> None:
        nested: List[Tuple[int, int]] = []
        for match in _TYPE.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in nested):
                continue
            body, body_start = find_keyword_block(plain, match.end(), _OPENERS, _STATEMENT_OPENERS)
            body_end = body_start + len(body)
            if not body:
                body_end = end
            name = match.group("name")
            nested.append((match.start(), body_end))
            qualified = f"{namespace}::{name}" if namespace else name
            if match.group("kind") == "module":
                self._scan_types(plain, body_start, body_end, qualified, unit, extents)
                continue
            extents.append((match.start(), body_end, name.split("::")[-1]))
            decl = TypeDecl(
                name=name.split("::")[-1],
                namespace=namespace,
                bases=[match.group("base")] if match.group("base") else [],
                line=line_of(plain, match.start()),
                kind="class",
            )
            inner: List[Tuple[int, int, str]] = []
            self._scan_types(plain, body_start, body_end, qualified, unit, inner)
            extents.extend(inner)
            self._scan_members(plain, body_start, body_end, [(low, high) for low, high, _ in inner], decl)
            unit.types.append(decl)

    def _scan_members(
        self, plain: str, start: int, end: int, excluded: List[Tuple[int, int]], decl: TypeDecl
    ) -> None:
        markers = [
            (match.start(), match.group(1))
            for match in _VISIBILITY.finditer(plain, start, end)
            if not any(low <= match.start() < high for low, high in excluded)
        ]
        method_extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _DEF.finditer(plain, start, end):
            if match.start() < cursor or any(low <= match.start() < high for low, high in excluded):
                continue
            visibility = "public"
            for offset, marker in markers:
                if offset < match.start():
                    visibility = marker
            decl.methods.append(_method(plain, match, visibility, decl.name))
            extent_end = _def_end(plain, match)
            method_extents.append((match.start(), extent_end))
            cursor = extent_end
        excluded = excluded + method_extents
        for match in _ATTR.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in excluded):
                continue
            line = line_of(plain, match.start())
            for name in re.findall(r":(\w+)", match.group("names")):
                decl.fields.append(self.make_field(name, "", line))
        for match in _ATTRIBUTE.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in excluded):
                continue
            args, options = _arguments(match.group("rest") or "")
            raw_type = args[0] if args else options.get("type", "")
            default = options.get("default")
            decl.fields.append(
                self.make_field(
                    match.group("name"),
                    raw_type,
                    line_of(plain, match.start()),
                    default=default,
                    optional=default is not None or match.group("macro") == "attribute?",
                    alias=unquote(options["as"]) if "as" in options else None,
                )
            )

    # ------------------------------------------------------------------
    # Route DSL
    # ------------------------------------------------------------------

    def _walk(
        self,
        plain: str,
        start: int,
        end: int,
        scope: _Scope,
        unit: SourceUnit,
        owners: Optional[List[Tuple[int, int, str]]] = None,
    ) -> None:
        cursor = start
        for match in _STATEMENT.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            keyword = match.group("kw")
            args_end = min(statement_end(plain, match.start("args")), end)
            args_text = plain[match.start("args") : args_end]
            block = _BLOCK_OPEN.search(args_text)
            body = ""
            body_start = args_end
            if block is not None:
                body_start = match.start("args") + block.end()
                if block.group("brace") == "{":
                    close = _brace_close(plain, match.start("args") + block.start("brace"))
                    body = plain[body_start:close] if close > 0 else ""
                    cursor = close + 1 if close > 0 else match.end()
                else:
                    body, _ = find_keyword_block(plain, body_start, _OPENERS, _STATEMENT_OPENERS)
                    cursor = body_start + len(body) + len("end")
                args_text = args_text[: block.start()]
            args_text = _strip_modifier(args_text)
            if match.group("paren"):
                args_text = args_text.rstrip()
                if args_text.endswith(")"):
                    args_text = args_text[:-1]
            args, options = _arguments(args_text)
            line = line_of(plain, match.start())
            if scope.framework == "sinatra":
                if owners is not None:
                    scope = replace(scope, owner=_enclosing(owners, match.start()))
                self._sinatra(plain, keyword, args, body, body_start, block is not None, line, scope, unit, owners)
                continue
            if keyword in ("namespace", "scope", "controller") + _PASSTHROUGH:
                inner = _nested_scope(keyword, args, options, scope)
                if body:
                    self._walk(plain, body_start, body_start + len(body), inner, unit)
            elif keyword in ("resources", "resource"):
                for resource in _resources(keyword, args, options, scope, line):
                    unit.resources.append(resource)
                    if body:
                        self._walk(
                            plain, body_start, body_start + len(body), _resource_scope(resource, scope), unit
                        )
            elif keyword in ("member", "collection"):
                if body and scope.resource_path is not None:
                    prefix = scope.resource_path
                    if keyword == "member":
                        prefix = join_paths(prefix, "{id}")
                    self._walk(plain, body_start, body_start + len(body), replace(scope, prefix=prefix), unit)
            else:
                unit.routes.extend(_rails_routes(keyword, args, options, scope, line))

    def _sinatra(
        self,
        plain: str,
        keyword: str,
        args: List[str],
        body: str,
        body_start: int,
        has_block: bool,
        line: int,
        scope: _Scope,
        unit: SourceUnit,
        owners: Optional[List[Tuple[int, int, str]]],
    ) -> None:
        if keyword == "namespace" and args and has_block:
            inner = replace(scope, prefix=join_paths(scope.prefix, unquote(args[0])))
            self._walk(plain, body_start, body_start + len(body), inner, unit, owners)
        elif keyword in _VERBS and args and has_block:
            unit.routes.append(
                RouteFact(
                    method=keyword.upper(),
                    path=unquote(args[0]),
                    handler="lambda",
                    owner=scope.owner,
                    prefix=scope.prefix,
                    line=line,
                    framework="sinatra",
                )
            )


def _method(plain: str, match: re.Match[str], visibility: str, owner: Optional[str]) -> MethodDecl:
    params_text = match.group("params")
    if params_text is None:
        params_text = match.group("bare") or ""
    return MethodDecl(
        name=match.group("name"),
        params=_parse_params(params_text),
        visibility=match.group("vis") or visibility,
        line=line_of(plain, match.start()),
        owner=owner,
    )


def _def_end(plain: str, match: re.Match[str]) -> int:
    line_end = plain.find("\n", match.end())
    if line_end < 0:
        line_end = len(plain)
    if re.match(r"[ \t]*=(?!=)", plain[match.end() : line_end]):
        return line_end
    body, body_start = find_keyword_block(plain, match.end(), _OPENERS, _STATEMENT_OPENERS)
    if not body and body_start == match.end():
        return match.end()
    return body_start + len(body) + len("end")


def _parse_params(text: str) -> List[Param]:
    params: List[Param] = []
    for segment in split_top_level(text):
        raw = segment.lstrip("*&").strip()
        keyword = re.match(r"^(\w+):\s*(.*)$", raw, re.DOTALL)
        if keyword:
            default = keyword.group(2).strip() or None
            params.append(Param(name=keyword.group(1), required=default is None, default=default))
            continue
        name, _, default = raw.partition("=")
        name = name.strip()
        if not name.isidentifier():
            continue
        default_text = default.strip() or None
        params.append(
            Param(name=name, required=default_text is None and not segment.startswith(("*", "&")), default=default_text)
        )
    return params


def _arguments(text: str) -> Tuple[List[str], Dict[str, str]]:
    """Split Ruby call arguments, accepting ``key: v`` and ``:key => v`` options."""
    args: List[str] = []
    options: Dict[str, str] = {}
    for segment in split_top_level(text):
        match = _KEYWORD_ARG.match(segment)
        if match:
            options[match.group("a") or match.group("b")] = match.group("value").strip()
        else:
            args.append(segment)
    return args, options


def _strip_modifier(text: str) -> str:
    """Drop a trailing modifier: ``get "/health", to: "status#health" if ENV["X"]``."""
    match = _MODIFIER.search(mask_literals(text) + " ")
    return text[: match.start()] if match else text


def _brace_close(plain: str, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(plain)):
        if plain[index] == "{":
            depth += 1
        elif plain[index] == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _enclosing(owners: List[Tuple[int, int, str]], index: int) -> Optional[str]:
    best: Optional[Tuple[int, int, str]] = None
    for low, high, name in owners:
        if low <= index < high and (best is None or low >= best[0]):
            best = (low, high, name)
    return best[2] if best else None


def _nested_scope(keyword: str, args: List[str], options: Dict[str, str], scope: _Scope) -> _Scope:
    if keyword == "namespace" and args:
        name = unquote(args[0])
        path = unquote(options["path"]) if "path" in options else name
        return replace(
            scope,
            prefix=join_paths(scope.prefix, path),
            module=_module_join(scope.module, unquote(options.get("module", args[0]))),
        )
    if keyword == "scope":
        path = unquote(args[0]) if args else unquote(options.get("path", "''"))
        module = _module_join(scope.module, unquote(options["module"])) if "module" in options else scope.module
        controller = unquote(options["controller"]) if "controller" in options else scope.controller
        return replace(scope, prefix=join_paths(scope.prefix, path), module=module, controller=controller)
    if keyword == "controller" and args:
        return replace(scope, controller=unquote(args[0]))
    return scope


def _module_join(module: str, name: str) -> str:
    return f"{module}/{name}" if module else name


def _resources(
    keyword: str, args: List[str], options: Dict[str, str], scope: _Scope, line: int
) -> List[ResourceFact]:
    resources: List[ResourceFact] = []
    singular = keyword == "resource"
    for raw in args:
        name = unquote(raw)
        if not name.isidentifier():
            continue
        controller = unquote(options["controller"]) if "controller" in options else (
            _pluralize(name) if singular else name
        )
        module = _module_join(scope.module, unquote(options["module"])) if "module" in options else scope.module
        resources.append(
            ResourceFact(
                path=unquote(options["path"]) if "path" in options else name,
                controller=_module_join(module, controller),
                only=_action_list(options.get("only")),
                except_=_action_list(options.get("except")),
                line=line,
                framework="rails",
                prefix=scope.prefix,
                singular=singular,
            )
        )
    return resources


def _resource_scope(resource: ResourceFact, scope: _Scope) -> _Scope:
    base = join_paths(scope.prefix, resource.path)
    nested = base if resource.singular else join_paths(base, "{%s_id}" % _singularize(resource.path))
    return replace(scope, prefix=nested, controller=resource.controller, resource_path=base)


def _rails_routes(
    keyword: str, args: List[str], options: Dict[str, str], scope: _Scope, line: int
) -> List[RouteFact]:
    if keyword == "root":
        controller, action = _target(unquote(options.get("to") or (args[0] if args else "")), scope)
        if action is None:
            return []
        return [_route("GET", "/", action, controller, scope, line)]
    if not args and "path" not in options:
        return []
    raw_path = args[0] if args else options["path"]
    target = options.get("to")
    if "=>" in raw_path:
        raw_path, _, target = raw_path.partition("=>")
    path = unquote(raw_path.strip())
    if keyword == "match":
        verbs = [item.upper() for item in _action_list(options.get("via"))] or ["GET"]
        if verbs == ["ALL"]:
            verbs = ["GET", "POST", "PUT", "PATCH", "DELETE"]
    else:
        verbs = [keyword.upper()]
    bare = path.strip("/").split("(")[0]
    if target is not None:
        controller, action = _target(unquote(target.strip()), scope)
        if action is None:
            action = re.split(r"[\s(.]", target.strip())[0] or "lambda"
    elif "action" in options:
        controller, action = scope.controller, unquote(options["action"])
    elif scope.controller is not None and "/" not in bare:
        controller, action = scope.controller, bare
    elif "/" in bare:
        controller, _, action = bare.rpartition("/")
        controller = _qualify(controller, scope)
    else:
        return []
    if "controller" in options:
        controller = _qualify(unquote(options["controller"]), scope)
    if "on" in options and scope.resource_path is not None:
        prefix = scope.resource_path
        if unquote(options["on"]) == "member":
            prefix = join_paths(prefix, "{id}")
        scope = replace(scope, prefix=prefix)
    return [_route(verb, path, action, controller, scope, line) for verb in verbs]


def _target(value: str, scope: _Scope) -> Tuple[Optional[str], Optional[str]]:
    """Split ``controller#action``, qualifying the controller with the current module."""
    if "#" not in value:
        return None, None
    controller, _, action = value.partition("#")
    if not controller:
        return scope.controller, action
    return _qualify(controller, scope), action


def _qualify(controller: Optional[str], scope: _Scope) -> Optional[str]:
    if controller is None or not scope.module or controller.startswith(scope.module + "/"):
        return controller
    return _module_join(scope.module, controller)


def _route(
    method: str, path: str, action: str, controller: Optional[str], scope: _Scope, line: int
) -> RouteFact:
    return RouteFact(
        method=method,
        path=path,
        handler=action,
        owner=controller,
        prefix=scope.prefix,
        line=line,
        framework="rails",
    )


def _action_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    text = value.strip()
    if text.startswith(("[", "%i[", "%w[")):
        return [item.lstrip(":") for item in list_literal(text)]
    return [unquote(text)]


def _singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("ses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _pluralize(word: str) -> str:
    if word.endswith("y") and word[-2:-1] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


__all__ = ["RubyBackend", "TYPES"]
