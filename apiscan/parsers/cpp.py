"""C++ backend: classes and structs, Drogon, Crow and Oat++ routing macros."""

from __future__ import annotations

import re
from typing import Dict, List, NamedTuple, Optional, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, unquote
from ..paths import join_paths
from .base import RegexBackend
from .text import find_matching, line_of, mask_comments, split_top_level
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): [
                "std::string", "string", "std::string_view", "std::wstring", "char*", "String",
                "QString", "drogon::string_view",
            ],
            ("integer", ""): [
                "int", "short", "long", "unsigned", "unsigned int", "unsigned short", "size_t", "std::size_t",
                "int8_t", "int16_t", "uint8_t", "uint16_t", "Int8", "Int16", "UInt8", "UInt16",
            ],
            ("integer", "int32"): ["int32_t", "uint32_t", "std::int32_t", "std::uint32_t", "Int32", "UInt32"],
            ("integer", "int64"): [
                "int64_t", "uint64_t", "std::int64_t", "std::uint64_t", "long long", "unsigned long",
                "unsigned long long", "Int64", "UInt64",
            ],
            ("number", "float"): ["float", "Float32"],
            ("number", "double"): ["double", "long double", "Float64"],
            ("boolean", ""): ["bool", "Boolean"],
            ("string", "date-time"): ["std::chrono::system_clock::time_point", "trantor::Date"],
            ("string", "binary"): ["std::vector<uint8_t>", "std::vector<char>", "std::vector<std::byte>"],
            DEFAULT_MAPPING: ["Json::Value", "nlohmann::json", "json", "crow::json::wvalue", "Any"],
            VOID_MAPPING: ["void"],
        }
    ),
    nullable_suffixes=("*",),
    optional_wrappers=("std::optional<", "boost::optional<"),
    wrappers=(
        "std::shared_ptr<", "std::unique_ptr<", "Object<", "std::future<", "drogon::Task<", "Task<",
    ),
    sequence_prefixes=(
        "std::vector<", "std::list<", "std::deque<", "std::set<", "std::unordered_set<", "std::array<",
        "std::span<", "vector<", "Vector<", "List<", "UnorderedSet<",
    ),
    map_prefixes=("std::map<", "std::unordered_map<", "map<", "unordered_map<", "Fields<", "UnorderedFields<"),
    strip_prefixes=("const ", "volatile ", "struct ", "typename ", "oatpp::", "::"),
    strip_suffixes=("&&", "&", "const"),
)

_INCLUDE = re.compile(r"^[ \t]*#\s*include\s*[<\"]([^>\"]+)[>\"]", re.MULTILINE)
_PREPROCESSOR = re.compile(r"^[ \t]*#(?:[^\n]*\\\n)*[^\n]*", re.MULTILINE)
_TYPE_HEAD = re.compile(
    r"^(?:template\s*<.*?>\s*)?(?P<kind>class|struct|union)\s+(?:\w+\s+)*?(?P<name>[A-Za-z_]\w*)\s*"
    r"(?:final\s*)?(?::(?P<bases>.*))?$",
    re.DOTALL,
)
_NAMESPACE_HEAD = re.compile(r"^(?:inline\s+)?namespace\s+(?P<name>[\w:]+)$")
_ACCESS = re.compile(r"^\s*(?P<access>public|private|protected)\s*(?:(?:Q_)?slots\s*)?:(?!:)")
_MACRO = re.compile(
    r"^\s*(?:[A-Z][A-Z0-9_]{2,}\s*\((?:[^()]|\([^()]*\))*\)|[A-Z][A-Z0-9_]{2,}[ \t]*(?=\n))\s*"
)
_FIELD_DECL = re.compile(r"^(?P<type>.+?[\w>*&:\]])\s*(?P<name>[A-Za-z_]\w*)\s*(?P<array>\[[^\]]*\])?$", re.DOTALL)
_SKIP_HEADS = ("using ", "typedef ", "friend ", "static_assert", "template ", "return ", "enum ", "static ", "extern ")
_SPECIFIERS = ("virtual ", "inline ", "explicit ", "constexpr ", "static ", "mutable ", "[[nodiscard]] ")

_DTO_FIELD = re.compile(r"\bDTO_FIELD\s*\(")
_DROGON_MACRO = re.compile(r"\b(?P<macro>ADD_METHOD_TO|METHOD_ADD|ADD_METHOD_VIA_REGEX|PATH_ADD)\s*\(")
_REGISTER_HANDLER = re.compile(r"\bregisterHandler\s*\(")
_CROW_ROUTE = re.compile(r"\b(?P<macro>CROW_ROUTE|CROW_BP_ROUTE|CROW_WEBSOCKET_ROUTE)\s*\(")
_CROW_BLUEPRINT = re.compile(r"\bcrow::Blueprint\s+(?P<var>\w+)\s*[({]\s*\"(?P<prefix>[^\"]*)\"")
_CROW_METHOD = re.compile(r"\"(?P<a>[A-Za-z]+)\"_method|HTTPMethod::(?P<b>[A-Za-z]+)")
_OATPP_ENDPOINT = re.compile(r"\b(?P<macro>ENDPOINT|ENDPOINT_ASYNC)\s*\(")
_OATPP_PARAM = re.compile(r"^(?P<kind>PATH|QUERY|BODY_DTO|BODY_STRING|HEADER|REQUEST|AUTHORIZATION)\s*\((?P<args>.*)\)$", re.DOTALL)

_DROGON_VERBS = ("Get", "Post", "Put", "Delete", "Patch", "Head", "Options")


class _Extent(NamedTuple):
    start: int
    end: int
    name: str
    namespace: Optional[str]


class CppBackend(RegexBackend):
    """Extracts classes, structs and Drogon/Crow/Oat++ routes from C++ sources."""

    language = "cpp"
    extensions = (".cpp", ".cc", ".cxx", ".hpp", ".hh", ".hxx", ".h")
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        unit.imports.extend(_INCLUDE.findall(text))
        plain = mask_comments(text)
        plain = _PREPROCESSOR.sub(lambda match: re.sub(r"[^\n]", " ", match.group(0)), plain)
        extents: List[_Extent] = []
        self._scan_scope(plain, 0, len(plain), None, None, unit, extents)
        self._drogon_routes(plain, extents, unit)
        self._crow_routes(plain, extents, unit)
        self._oatpp_endpoints(plain, extents, unit)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _scan_scope(
        self,
        plain: str,
        start: int,
        end: int,
        namespace: Optional[str],
        decl: Optional[TypeDecl],
        unit: SourceUnit,
        extents: List[_Extent],
    ) -> None:
        """Walk the statements of a namespace or class body."""
        visibility = "public" if decl is None or decl.kind != "class" else "private"
        for offset, head, body_start, body_end in _statements(plain, start, end):
            while True:
                access = _ACCESS.match(head)
                if access is None:
                    break
                visibility = access.group("access")
                offset += access.end()
                head = head[access.end() :]
            macro = _MACRO.match(head)
            while macro is not None and macro.end() > 0:
                offset += macro.end()
                head = head[macro.end() :]
                macro = _MACRO.match(head)
            head_text = " ".join(head.split())
            if not head_text:
                continue
            line = line_of(plain, offset + len(head) - len(head.lstrip()))
            if body_start >= 0:
                namespace_match = _NAMESPACE_HEAD.match(head_text)
                type_match = _TYPE_HEAD.match(head_text)
                if namespace_match:
                    inner = namespace_match.group("name")
                    qualified = f"{namespace}::{inner}" if namespace else inner
                    self._scan_scope(plain, body_start, body_end, qualified, None, unit, extents)
                    continue
                if type_match:
                    nested = TypeDecl(
                        name=type_match.group("name"),
                        namespace=namespace,
                        bases=_bases(type_match.group("bases") or ""),
                        line=line,
                        kind=type_match.group("kind"),
                    )
                    extents.append(_Extent(offset, body_end, nested.name, namespace))
                    self._scan_scope(plain, body_start, body_end, namespace, nested, unit, extents)
                    nested.fields.extend(self._dto_fields(plain, body_start, body_end, extents, nested.name))
                    unit.types.append(nested)
                    continue
            if head_text.startswith(_SKIP_HEADS) or head_text.startswith(("class ", "struct ")):
                continue
            method = _method_head(head_text, line)
            if method is not None:
                owner_name, method = method
                if decl is not None:
                    if method.name in (decl.name, "~" + decl.name):
                        continue
                    method.visibility = visibility
                    method.owner = decl.name
                    decl.methods.append(method)
                elif owner_name is not None:
                    owner = unit.find_type(owner_name)
                    if owner is not None and not any(item.name == method.name for item in owner.methods):
                        method.owner = owner_name
                        owner.methods.append(method)
                else:
                    unit.functions.append(method)
                continue
            if decl is not None and "(" not in head_text:
                default = plain[body_start:body_end].strip() if body_start >= 0 else None
                decl.fields.extend(self._fields(head_text, default, line))

    def _fields(self, head: str, brace_default: Optional[str], line: int) -> List[FieldDecl]:
        left, _, default = head.partition("=")
        default_text = default.strip() or brace_default or None
        for specifier in ("mutable ", "inline ", "constexpr "):
            if left.startswith(specifier):
                left = left[len(specifier) :]
        declarators = split_top_level(left, quotes="\"")
        if not declarators:
            return []
        first = _FIELD_DECL.match(declarators[0].strip())
        if not first:
            return []
        base_type = first.group("type").strip()
        fields = [self.make_field(first.group("name"), base_type + (first.group("array") or ""), line, default=default_text)]
        shared = base_type.rstrip("*& ")
        for extra in declarators[1:]:
            name = extra.strip().lstrip("*&").strip()
            if name.isidentifier():
                fields.append(self.make_field(name, shared, line))
        return fields

    def _dto_fields(
        self, plain: str, start: int, end: int, extents: List[_Extent], owner: str
    ) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for match in _DTO_FIELD.finditer(plain, start, end):
            if _enclosing(extents, match.start()) not in (None, owner):
                continue
            close = find_matching(plain, match.end() - 1, "(", ")", quotes="\"")
            if close < 0:
                continue
            args = split_top_level(plain[match.end() : close], quotes="\"")
            if len(args) < 2:
                continue
            alias = unquote(args[2]) if len(args) > 2 else None
            fields.append(
                self.make_field(
                    args[1],
                    args[0],
                    line_of(plain, match.start()),
                    alias=alias,
                    annotations=[Annotation(name="DTO_FIELD", args=args, line=line_of(plain, match.start()))],
                )
            )
        return fields

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _drogon_routes(self, plain: str, extents: List[_Extent], unit: SourceUnit) -> None:
        for match in _DROGON_MACRO.finditer(plain):
            args = _call_args(plain, match.end() - 1)
            macro = match.group("macro")
            if macro == "PATH_ADD":
                if not args:
                    continue
                owner = _enclosing(extents, match.start())
                handler, path, rest = "asyncHandleHttpRequest", args[0], args[1:]
            else:
                if len(args) < 2:
                    continue
                owner, _, handler = args[0].strip().lstrip("&").rpartition("::")
                owner = owner.rpartition("::")[2] or _enclosing(extents, match.start())
                path, rest = args[1], args[2:]
            if not path.startswith('"'):
                continue
            prefix = ""
            if macro == "METHOD_ADD":
                prefix = join_paths(*(_namespace_of(extents, owner) or "").split("::"), owner or "")
            verbs = [item.rpartition("::")[2] for item in rest if item.rpartition("::")[2] in _DROGON_VERBS]
            for verb in verbs or ["Get"]:
                unit.routes.append(
                    RouteFact(
                        method=verb.upper(),
                        path=unquote(path),
                        handler=handler,
                        owner=owner,
                        prefix=prefix,
                        line=line_of(plain, match.start()),
                        framework="drogon",
                    )
                )
        for match in _REGISTER_HANDLER.finditer(plain):
            args = _call_args(plain, match.end() - 1)
            if not args or not args[0].startswith('"'):
                continue
            handler = "lambda"
            if len(args) > 1 and not args[1].startswith("["):
                handler = args[1].lstrip("&").rpartition("::")[2] or "lambda"
            verbs: List[str] = []
            if len(args) > 2 and args[2].startswith("{"):
                verbs = [
                    item.strip().rpartition("::")[2]
                    for item in split_top_level(args[2][1:-1])
                    if item.strip().rpartition("::")[2] in _DROGON_VERBS
                ]
            for verb in verbs or ["Get"]:
                unit.routes.append(
                    RouteFact(
                        method=verb.upper(),
                        path=unquote(args[0]),
                        handler=handler,
                        line=line_of(plain, match.start()),
                        framework="drogon",
                    )
                )

    def _crow_routes(self, plain: str, extents: List[_Extent], unit: SourceUnit) -> None:
        blueprints: Dict[str, str] = {
            match.group("var"): match.group("prefix") for match in _CROW_BLUEPRINT.finditer(plain)
        }
        for match in _CROW_ROUTE.finditer(plain):
            close = find_matching(plain, match.end() - 1, "(", ")", quotes="\"")
            if close < 0:
                continue
            args = split_top_level(plain[match.end() : close], quotes="\"")
            if len(args) < 2 or not args[1].startswith('"'):
                continue
            verbs: List[str] = []
            cursor = close + 1
            methods = re.match(r"\s*\.\s*methods\s*\(", plain[cursor:])
            if methods:
                methods_close = find_matching(plain, cursor + methods.end() - 1, "(", ")", quotes="\"")
                if methods_close > 0:
                    for item in _CROW_METHOD.finditer(plain, cursor, methods_close):
                        verbs.append((item.group("a") or item.group("b")).upper())
                    cursor = methods_close + 1
            handler = "lambda"
            call = re.match(r"\s*\(\s*(?P<target>[&\w:]+)?", plain[cursor:])
            if call and call.group("target"):
                handler = call.group("target").lstrip("&").rpartition("::")[2]
            prefix = blueprints.get(args[0].strip(), "") if match.group("macro") == "CROW_BP_ROUTE" else ""
            for verb in verbs or ["GET"]:
                unit.routes.append(
                    RouteFact(
                        method=verb,
                        path=unquote(args[1]),
                        handler=handler,
                        owner=_enclosing(extents, match.start()),
                        prefix=prefix,
                        line=line_of(plain, match.start()),
                        framework="crow",
                    )
                )

    def _oatpp_endpoints(self, plain: str, extents: List[_Extent], unit: SourceUnit) -> None:
        for match in _OATPP_ENDPOINT.finditer(plain):
            args = _call_args(plain, match.end() - 1)
            if len(args) < 3 or not args[0].startswith('"') or not args[1].startswith('"'):
                continue
            owner = _enclosing(extents, match.start())
            line = line_of(plain, match.start())
            params = [param for param in (_oatpp_param(item) for item in args[3:]) if param is not None]
            method = MethodDecl(name=args[2], params=params, line=line, owner=owner, visibility="public")
            decl = unit.find_type(owner) if owner else None
            if decl is not None:
                decl.methods.append(method)
            else:
                unit.functions.append(method)
            unit.routes.append(
                RouteFact(
                    method=unquote(args[0]).upper(),
                    path=unquote(args[1]),
                    handler=args[2],
                    owner=owner,
                    line=line,
                    framework="oatpp",
                )
            )


def _statements(plain: str, start: int, end: int) -> List[Tuple[int, str, int, int]]:
    """Split a scope into top-level statements: ``(offset, head, body_start, body_end)``.

    ``body_start`` is -1 for statements without a braced body. An unterminated
    body runs to the end of the scope.
    """
    statements: List[Tuple[int, str, int, int]] = []
    cursor = start
    index = start
    paren_depth = 0
    while index < end:
        char = plain[index]
        if char in "\"'":
            close = _string_end(plain, index, end)
            index = close + 1
            continue
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth = max(paren_depth - 1, 0)
        elif char == "{" and paren_depth == 0:
            close = find_matching(plain, index, "{", "}", quotes="\"'")
            if close < 0 or close > end:
                close = end
            statements.append((cursor, plain[cursor:index], index + 1, close))
            index = close + 1
            follow = index
            while follow < end and plain[follow] in " \t\r\n":
                follow += 1
            if follow < end and plain[follow] == ";":
                index = follow + 1
            cursor = index
            continue
        elif char == ";" and paren_depth == 0:
            statements.append((cursor, plain[cursor:index], -1, -1))
            cursor = index + 1
        index += 1
    return statements


def _string_end(plain: str, index: int, end: int) -> int:
    quote = plain[index]
    position = index + 1
    while position < end:
        if plain[position] == "\\":
            position += 2
            continue
        if plain[position] == quote or plain[position] == "\n":
            return position
        position += 1
    return end


def _method_head(head: str, line: int) -> Optional[Tuple[Optional[str], MethodDecl]]:
    """Parse ``ret name(params) quals`` into a method; returns ``(qualifier, method)``."""
    paren = _first_call_paren(head)
    if paren < 0:
        return None
    name_match = re.search(r"(~?[A-Za-z_]\w*)\s*$", head[:paren])
    if not name_match:
        return None
    close = find_matching(head, paren, "(", ")", quotes="\"")
    if close < 0:
        return None
    qualifier_text = head[: name_match.start()].rstrip()
    owner: Optional[str] = None
    if qualifier_text.endswith("::"):
        owner_match = re.search(r"(\w+)(?:<[^<>]*>)?::$", qualifier_text)
        owner = owner_match.group(1) if owner_match else None
        qualifier_text = re.sub(r"[\w:<>]*::$", "", qualifier_text).rstrip()
    return_type = qualifier_text
    for specifier in _SPECIFIERS:
        return_type = return_type.replace(specifier, "")
    return_type = return_type.strip()
    if not return_type and owner is None:
        return None
    quals = head[close + 1 :]
    trailing = re.search(r"->\s*(.+?)\s*(?:override|final|noexcept|$)", quals)
    if return_type == "auto" and trailing:
        return_type = trailing.group(1).strip()
    return owner, MethodDecl(
        name=name_match.group(1),
        params=_parse_params(head[paren + 1 : close]),
        return_type=return_type,
        is_async=return_type.startswith(("drogon::Task<", "Task<", "std::future<")),
        line=line,
    )


def _first_call_paren(head: str) -> int:
    angle = 0
    for index, char in enumerate(head):
        if char == "<":
            angle += 1
        elif char == ">" and angle:
            angle -= 1
        elif char == "(" and angle == 0:
            return index
        elif char == "=" and angle == 0:
            return -1
    return -1


def _parse_params(text: str) -> List[Param]:
    params: List[Param] = []
    for segment in split_top_level(text, quotes="\""):
        declaration, _, default = segment.partition("=")
        declaration = declaration.strip()
        if declaration in ("void", "...", ""):
            continue
        match = re.match(r"^(?P<type>.+?[\w>*&:\]])\s*(?P<name>[A-Za-z_]\w*)$", declaration, re.DOTALL)
        if not match:
            params.append(Param(name="", type=declaration))
            continue
        params.append(
            Param(
                name=match.group("name"),
                type=match.group("type").strip(),
                required=not default.strip(),
                default=default.strip() or None,
            )
        )
    return params


def _oatpp_param(raw: str) -> Optional[Param]:
    match = _OATPP_PARAM.match(raw.strip())
    if not match:
        return None
    kind = match.group("kind")
    args = split_top_level(match.group("args"), quotes="\"")
    if len(args) < 2:
        return None
    if kind == "QUERY":
        name = unquote(args[2]) if len(args) > 2 else args[1]
        return Param(name=name, type=args[0], annotations=[Annotation(name="Query")])
    if kind in ("BODY_DTO", "BODY_STRING"):
        return Param(name=args[1], type=args[0], annotations=[Annotation(name="Body")])
    if kind == "PATH":
        name = unquote(args[2]) if len(args) > 2 else args[1]
        return Param(name=name, type=args[0])
    return None


def _call_args(plain: str, paren: int) -> List[str]:
    close = find_matching(plain, paren, "(", ")", quotes="\"")
    if close < 0:
        return []
    return split_top_level(plain[paren + 1 : close], quotes="\"")


def _bases(text: str) -> List[str]:
    bases: List[str] = []
    for item in split_top_level(text):
        words = [word for word in item.split() if word not in ("public", "private", "protected", "virtual")]
        if words:
            bases.append(" ".join(words))
    return bases


def _enclosing(extents: List[_Extent], index: int) -> Optional[str]:
    best: Optional[_Extent] = None
    for extent in extents:
        if extent.start <= index < extent.end and (best is None or extent.start >= best.start):
            best = extent
    return best.name if best else None


def _namespace_of(extents: List[_Extent], name: Optional[str]) -> Optional[str]:
    for extent in extents:
        if extent.name == name:
            return extent.namespace
    return None


__all__ = ["CppBackend", "TYPES"]
