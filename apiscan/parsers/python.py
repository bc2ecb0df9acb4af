"""Python backend on the standard ``ast`` module: classes, FastAPI, Flask, Django and DRF routes."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..errors import ParseError
from ..models import (
    Annotation,
    FieldDecl,
    MethodDecl,
    Param,
    ResourceFact,
    RouteFact,
    SourceUnit,
    TypeDecl,
    decode_content,
    unquote,
)
from ..paths import join_paths
from .base import StructuralBackend
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, FieldShape, TypeMapping, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["str", "AnyStr", "CharField", "TextField", "SlugField", "SecretStr", "constr"],
            ("string", "email"): ["EmailStr", "EmailField"],
            ("string", "uri"): ["HttpUrl", "AnyUrl", "AnyHttpUrl", "URLField"],
            ("string", "binary"): ["bytes", "bytearray", "UploadFile", "FileField", "ImageField", "BinaryField"],
            ("integer", ""): [
                "int", "conint", "IntegerField", "SmallIntegerField", "PositiveIntegerField", "AutoField",
                "ForeignKey", "OneToOneField",
            ],
            ("integer", "int64"): ["BigIntegerField", "BigAutoField"],
            ("number", ""): ["float", "Decimal", "decimal.Decimal", "FloatField", "DecimalField", "confloat"],
            ("boolean", ""): ["bool", "BooleanField", "StrictBool"],
            ("string", "date-time"): ["datetime", "datetime.datetime", "DateTimeField", "AwareDatetime"],
            ("string", "date"): ["date", "datetime.date", "DateField"],
            ("string", "time"): ["time", "datetime.time", "TimeField"],
            ("string", "uuid"): ["UUID", "uuid.UUID", "UUID4", "UUIDField"],
            DEFAULT_MAPPING: ["dict", "Any", "object", "JSONField", "Json"],
            VOID_MAPPING: ["None", "NoReturn"],
        }
    ),
    optional_wrappers=("Optional[",),
    union_nulls=("None",),
    wrappers=("Awaitable[", "ClassVar[", "Final[", "Required[", "NotRequired[", "Annotated["),
    sequence_prefixes=(
        "List[", "list[", "Sequence[", "Set[", "set[", "FrozenSet[", "frozenset[", "Tuple[", "tuple[",
        "Iterable[", "Iterator[", "AsyncIterator[", "conlist(",
    ),
    map_prefixes=("Dict[", "dict[", "Mapping[", "MutableMapping[", "DefaultDict["),
    strip_prefixes=("typing.", "t.", "models."),
)

_VERBS = ("get", "post", "put", "delete", "patch", "head", "options")
_APP_FACTORIES = {
    "FastAPI": "fastapi",
    "APIRouter": "fastapi",
    "Flask": "flask",
    "Blueprint": "flask",
    "DefaultRouter": "drf",
    "SimpleRouter": "drf",
}
_MARKERS = ("Query", "Body", "Path", "Header", "Cookie", "Form", "File", "Depends", "Security")
_DJANGO_METHODS = ("get", "post", "put", "patch", "delete")
_NESTED_CONFIG = ("Config", "Meta")
_VIEWSET_ACTIONS = ("list", "create", "retrieve", "update", "partial_update", "destroy")
_VIEWSET_MIXINS = {
    "ListModelMixin": ("list",),
    "CreateModelMixin": ("create",),
    "RetrieveModelMixin": ("retrieve",),
    "UpdateModelMixin": ("update", "partial_update"),
    "DestroyModelMixin": ("destroy",),
}

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


@dataclass
class _Router:
    """A FastAPI/Flask application or router bound to a module-level name."""

    framework: str
    prefix: str = ""
    parent: Optional[str] = None
    mount: str = ""


@dataclass
class _Pending:
    router: str
    methods: List[str]
    path: str
    handler: str
    line: int
    framework: str = ""


@dataclass
class _Registration:
    """A ``router.register(prefix, viewset)`` call."""

    router: str
    prefix: str
    viewset: str
    line: int


@dataclass
class _ModuleState:
    routers: Dict[str, _Router] = field(default_factory=dict)
    pending: List[_Pending] = field(default_factory=list)
    viewsets: List[_Registration] = field(default_factory=list)


class PythonBackend(StructuralBackend):
    """Extracts classes, functions and routes from Python modules with ``ast``."""

    language = "python"
    extensions = (".py", ".pyi")
    types = TYPES

    def map_type(self, raw: str) -> TypeMapping:
        return self.types.map_type(_strip_annotated(raw))

    def classify(self, raw: str) -> FieldShape:
        return self.types.classify(_strip_annotated(raw))

    def parse(self, filename: str, content: bytes | str) -> SourceUnit:
        text = decode_content(content)
        try:
            tree = ast.parse(text, filename=filename)
        except SyntaxError as exc:
            raise ParseError(filename, f"line {exc.lineno}: {exc.msg}") from exc
        unit = SourceUnit(path=filename, language=self.language, content=text, tree=tree)
        state = _ModuleState()
        for node in tree.body:
            self._visit(node, unit, state)
        self._resolve_routes(unit, state)
        return unit

    def _visit(self, node: ast.stmt, unit: SourceUnit, state: _ModuleState) -> None:
        if isinstance(node, ast.Import):
            unit.imports.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                unit.imports.append(node.module)
        elif isinstance(node, ast.ClassDef):
            unit.types.extend(self._class_decls(node, None))
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            method = self._method(node, None)
            unit.functions.append(method)
            self._route_decorators(node, method, unit, state)
        elif isinstance(node, (ast.Assign, ast.AnnAssign, ast.AugAssign)):
            self._assignment(node, unit, state)
        elif isinstance(node, ast.Expr) and isinstance(node.value, ast.Call):
            self._registration(node.value, state)
        elif isinstance(node, (ast.If, ast.Try)):
            for child in node.body:
                self._visit(child, unit, state)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _class_decls(self, node: ast.ClassDef, namespace: Optional[str]) -> List[TypeDecl]:
        bases = [ast.unparse(base) for base in node.bases]
        annotations = [_annotation(decorator) for decorator in node.decorator_list]
        decl = TypeDecl(
            name=node.name,
            namespace=namespace,
            bases=bases,
            annotations=annotations,
            line=node.lineno,
            kind=_class_kind(bases, annotations),
        )
        nested: List[TypeDecl] = []
        for child in node.body:
            if isinstance(child, ast.AnnAssign) and isinstance(child.target, ast.Name):
                if not ast.unparse(child.annotation).startswith(("ClassVar", "typing.ClassVar")):
                    decl.fields.append(self._annotated_field(child))
            elif isinstance(child, ast.Assign) and decl.kind == "enum":
                for target in child.targets:
                    if isinstance(target, ast.Name):
                        decl.fields.append(
                            FieldDecl(name=target.id, type="", default=ast.unparse(child.value), line=child.lineno)
                        )
            elif isinstance(child, ast.Assign) and isinstance(child.value, ast.Call):
                model_field = self._model_field(child)
                if model_field is not None:
                    decl.fields.append(model_field)
            elif isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
                decl.methods.append(self._method(child, node.name))
            elif isinstance(child, ast.ClassDef) and child.name not in _NESTED_CONFIG:
                nested.extend(self._class_decls(child, node.name))
        return [decl] + nested

    def _annotated_field(self, node: ast.AnnAssign) -> FieldDecl:
        assert isinstance(node.target, ast.Name)
        raw_type = ast.unparse(node.annotation)
        default: Optional[str] = None
        alias: Optional[str] = None
        has_default = node.value is not None
        if node.value is not None:
            default = ast.unparse(node.value)
            if isinstance(node.value, ast.Call) and _call_name(node.value).endswith("Field"):
                alias = _string_keyword(node.value, "alias", "serialization_alias")
                has_default = _has_default(node.value)
        return self.make_field(
            node.target.id,
            raw_type,
            node.lineno,
            default=default,
            optional=has_default,
            alias=alias,
            annotations=_metadata_annotations(node.annotation),
        )

    def _model_field(self, node: ast.Assign) -> Optional[FieldDecl]:
        """Django-style ``name = models.CharField(...)`` declarations, serializer fields included."""
        assert isinstance(node.value, ast.Call)
        kind = _call_name(node.value).rpartition(".")[2]
        if not kind.endswith(("Field", "Key")) or kind == "ManyToManyField":
            return None
        names = [target.id for target in node.targets if isinstance(target, ast.Name)]
        if not names:
            return None
        nullable = any(
            keyword.arg in ("null", "blank") and isinstance(keyword.value, ast.Constant) and keyword.value.value is True
            for keyword in node.value.keywords
        )
        name = names[0] + "_id" if kind in ("ForeignKey", "OneToOneField") else names[0]
        default = _keyword_source(node.value, "default")
        return self.make_field(
            name,
            kind,
            node.lineno,
            default=default,
            optional=nullable or default is not None or _keyword_source(node.value, "required") == "False",
            alias=_string_keyword(node.value, "db_column"),
            annotations=[_annotation(node.value)],
        )

    def _method(self, node: FunctionNode, owner: Optional[str]) -> MethodDecl:
        return MethodDecl(
            name=node.name,
            params=_parameters(node.args),
            return_type=ast.unparse(node.returns) if node.returns is not None else "",
            is_async=isinstance(node, ast.AsyncFunctionDef),
            visibility="private" if node.name.startswith("_") and not node.name.endswith("__") else "public",
            annotations=[_annotation(decorator) for decorator in node.decorator_list],
            line=node.lineno,
            owner=owner,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _assignment(
        self, node: Union[ast.Assign, ast.AnnAssign, ast.AugAssign], unit: SourceUnit, state: _ModuleState
    ) -> None:
        targets = node.targets if isinstance(node, ast.Assign) else [node.target]
        names = [target.id for target in targets if isinstance(target, ast.Name)]
        value = node.value
        if not names or value is None:
            return
        if isinstance(value, ast.Call):
            factory = _call_name(value).rpartition(".")[2]
            if factory in _APP_FACTORIES:
                prefix = _string_keyword(value, "prefix", "url_prefix") or ""
                for name in names:
                    state.routers[name] = _Router(framework=_APP_FACTORIES[factory], prefix=prefix)
                return
        if "urlpatterns" in names and isinstance(value, (ast.List, ast.Tuple, ast.BinOp)):
            self._django_patterns(value, unit, state)

    def _registration(self, call: ast.Call, state: _ModuleState) -> None:
        """Handle router mounting, viewset registration and imperative route registration."""
        if not isinstance(call.func, ast.Attribute) or not isinstance(call.func.value, ast.Name):
            return
        target = call.func.value.id
        attribute = call.func.attr
        if attribute in ("include_router", "register_blueprint") and call.args:
            child = call.args[0]
            if isinstance(child, ast.Name) and child.id in state.routers:
                router = state.routers[child.id]
                router.parent = target
                router.mount = _string_keyword(call, "prefix", "url_prefix") or ""
            return
        if attribute == "register" and len(call.args) >= 2:
            router = state.routers.get(target)
            prefix = _string_value(call.args[0])
            if router is not None and router.framework == "drf" and prefix is not None:
                state.viewsets.append(
                    _Registration(router=target, prefix=prefix, viewset=_handler_name(call.args[1]), line=call.lineno)
                )
            return
        if attribute in ("add_api_route", "add_url_rule", "add_route") and call.args:
            path = _string_value(call.args[0])
            if path is None:
                return
            handler_node = call.args[1] if len(call.args) > 1 else _keyword(call, "endpoint", "view_func")
            methods = _string_list(_keyword(call, "methods")) or ["GET"]
            router = state.routers.get(target)
            state.pending.append(
                _Pending(
                    router=target,
                    methods=methods,
                    path=path,
                    handler=_handler_name(handler_node),
                    line=call.lineno,
                    framework=router.framework if router else "",
                )
            )

    def _route_decorators(
        self,
        node: FunctionNode,
        method: MethodDecl,
        unit: SourceUnit,
        state: _ModuleState,
    ) -> None:
        for decorator in node.decorator_list:
            if not isinstance(decorator, ast.Call) or not isinstance(decorator.func, ast.Attribute):
                continue
            if not isinstance(decorator.func.value, ast.Name):
                continue
            target = decorator.func.value.id
            verb = decorator.func.attr
            path = _string_value(decorator.args[0]) if decorator.args else _string_keyword(decorator, "path", "rule")
            if path is None:
                continue
            if verb in _VERBS:
                methods = [verb.upper()]
            elif verb in ("route", "api_route"):
                methods = _string_list(_keyword(decorator, "methods")) or ["GET"]
            else:
                continue
            response_model = _keyword(decorator, "response_model")
            if response_model is not None and not method.return_type:
                method.return_type = ast.unparse(response_model)
            deprecated = _keyword(decorator, "deprecated")
            if isinstance(deprecated, ast.Constant) and deprecated.value is True:
                method.annotations.append(Annotation(name="deprecated", line=decorator.lineno))
            router = state.routers.get(target)
            framework = router.framework if router else _framework_from_imports(unit.imports)
            state.pending.append(
                _Pending(
                    router=target,
                    methods=methods,
                    path=path,
                    handler=node.name,
                    line=node.lineno,
                    framework=framework,
                )
            )

    def _resolve_routes(self, unit: SourceUnit, state: _ModuleState) -> None:
        for pending in state.pending:
            prefix = _router_prefix(state.routers, pending.router, 0)
            for verb in pending.methods:
                unit.routes.append(
                    RouteFact(
                        method=verb.upper(),
                        path=pending.path,
                        handler=pending.handler,
                        prefix=prefix,
                        line=pending.line,
                        framework=pending.framework or _framework_from_imports(unit.imports),
                    )
                )
        for registration in state.viewsets:
            self._viewset_routes(registration, unit, state)

    def _viewset_routes(self, registration: _Registration, unit: SourceUnit, state: _ModuleState) -> None:
        """Register a viewset's standard actions as a resource and its ``@action`` methods as routes.

        When the viewset class lives in the same module its bases and methods
        narrow the standard actions; otherwise the full model viewset is assumed.
        """
        prefix = _router_prefix(state.routers, registration.router, 0)
        path = registration.prefix.strip("^$")
        decl = unit.find_type(registration.viewset)
        resource = ResourceFact(
            path=path,
            controller=registration.viewset,
            line=registration.line,
            framework="drf",
            prefix=prefix,
        )
        actions = _viewset_actions(decl)
        if actions is not None:
            resource.only = actions
            resource.except_ = [action for action in _VIEWSET_ACTIONS if action not in actions]
        unit.resources.append(resource)
        if decl is None:
            return
        for method in decl.methods:
            for annotation in method.annotations:
                if annotation.name.rpartition(".")[2] != "action":
                    continue
                segment = annotation.string_arg("url_path") or method.name
                detail = annotation.kwargs.get("detail") == "True"
                for verb in _literal_methods(annotation.kwargs.get("methods")) or ["GET"]:
                    unit.routes.append(
                        RouteFact(
                            method=verb,
                            path=join_paths(path, "{pk}", segment) if detail else join_paths(path, segment),
                            handler=method.name,
                            owner=registration.viewset,
                            prefix=prefix,
                            line=method.line,
                            framework="drf",
                        )
                    )

    def _django_patterns(self, node: ast.expr, unit: SourceUnit, state: _ModuleState) -> None:
        elements: List[ast.expr] = []
        if isinstance(node, ast.BinOp):
            for side in (node.left, node.right):
                if isinstance(side, (ast.List, ast.Tuple)):
                    elements.extend(side.elts)
        else:
            elements.extend(node.elts)
        framework = "drf" if _framework_from_imports(unit.imports) == "drf" else "django"
        for element in elements:
            if not isinstance(element, ast.Call) or len(element.args) < 2:
                continue
            function = _call_name(element).rpartition(".")[2]
            if function not in ("path", "re_path", "url"):
                continue
            route = _string_value(element.args[0])
            view = element.args[1]
            if route is None:
                continue
            if function != "path":
                route = route.lstrip("^").rstrip("$")
            if isinstance(view, ast.Call) and _call_name(view).endswith("include"):
                # include(router.urls) mounts a viewset router under this route
                urls = view.args[0] if view.args else None
                if isinstance(urls, ast.Attribute) and urls.attr == "urls" and isinstance(urls.value, ast.Name):
                    router = state.routers.get(urls.value.id)
                    if router is not None:
                        router.mount = route
                continue
            owner, handlers = self._django_view(view, unit)
            for verb, handler in handlers:
                unit.routes.append(
                    RouteFact(
                        method=verb,
                        path=route,
                        handler=handler,
                        owner=owner,
                        line=element.lineno,
                        framework=framework,
                    )
                )

    def _django_view(self, view: ast.expr, unit: SourceUnit) -> Tuple[Optional[str], List[Tuple[str, str]]]:
        """Return ``(owner, [(method, handler), ...])`` for a view expression."""
        if isinstance(view, ast.Call) and _call_name(view).endswith("as_view"):
            class_name = _call_name(view).rpartition(".")[0].rpartition(".")[2]
            if view.args and isinstance(view.args[0], ast.Dict):
                # Viewset.as_view({"get": "list"}) binds verbs to actions explicitly
                mapping = view.args[0]
                bound = [(_string_value(key), _string_value(value)) for key, value in zip(mapping.keys, mapping.values)]
                return class_name, [(verb.upper(), action) for verb, action in bound if verb and action]
            decl = unit.find_type(class_name)
            methods = [item.name for item in decl.methods if item.name in _DJANGO_METHODS] if decl else []
            if methods:
                return class_name, [(name.upper(), name) for name in methods]
            return class_name, [("GET", "as_view")]
        name = _handler_name(view)
        for function in unit.functions:
            if function.name != name:
                continue
            for annotation in function.annotations:
                if annotation.name.rpartition(".")[2] == "api_view":
                    methods = _literal_methods(annotation.args[0] if annotation.args else None)
                    return None, [(verb, name) for verb in methods or ["GET"]]
        return None, [("GET", name)]



def _parameters(arguments: ast.arguments) -> List[Param]:
    params: List[Param] = []
    positional = list(arguments.posonlyargs) + list(arguments.args)
    defaults: List[Optional[ast.expr]] = [None] * (len(positional) - len(arguments.defaults))
    defaults.extend(arguments.defaults)
    pairs = list(zip(positional, defaults)) + list(zip(arguments.kwonlyargs, arguments.kw_defaults))
    for index, (argument, default) in enumerate(pairs):
        if index == 0 and argument.arg in ("self", "cls"):
            continue
        annotations = _metadata_annotations(argument.annotation) if argument.annotation is not None else []
        required = default is None
        if isinstance(default, ast.Call):
            marker = _call_name(default).rpartition(".")[2]
            if marker in _MARKERS:
                annotations.append(_annotation(default))
                required = not _has_default(default)
        params.append(
            Param(
                name=argument.arg,
                type=ast.unparse(argument.annotation) if argument.annotation is not None else "",
                required=required,
                default=ast.unparse(default) if default is not None else None,
                annotations=annotations,
            )
        )
    return params


def _annotation(node: ast.expr) -> Annotation:
    """Convert a decorator or marker call into an :class:`Annotation`."""
    if isinstance(node, ast.Call):
        return Annotation(
            name=_call_name(node),
            args=[ast.unparse(arg) for arg in node.args],
            kwargs={keyword.arg: ast.unparse(keyword.value) for keyword in node.keywords if keyword.arg},
            line=node.lineno,
        )
    return Annotation(name=ast.unparse(node), line=getattr(node, "lineno", 0))


def _metadata_annotations(annotation: Optional[ast.expr]) -> List[Annotation]:
    """Marker calls carried in ``Annotated[T, Query(...)]`` metadata."""
    if not isinstance(annotation, ast.Subscript) or not ast.unparse(annotation.value).endswith("Annotated"):
        return []
    elements = annotation.slice.elts if isinstance(annotation.slice, ast.Tuple) else []
    return [
        _annotation(item)
        for item in elements[1:]
        if isinstance(item, ast.Call) and _call_name(item).rpartition(".")[2] in _MARKERS + ("Field",)
    ]


def _strip_annotated(raw: str) -> str:
    text = raw.strip()
    for prefix in ("Annotated[", "typing.Annotated["):
        if text.startswith(prefix) and text.endswith("]"):
            try:
                node = ast.parse(text, mode="eval").body
            except SyntaxError:
                return text
            if isinstance(node, ast.Subscript) and isinstance(node.slice, ast.Tuple) and node.slice.elts:
                return ast.unparse(node.slice.elts[0])
    return text


def _class_kind(bases: Sequence[str], annotations: Sequence[Annotation]) -> str:
    names = {base.rpartition(".")[2] for base in bases}
    if any(annotation.name.rpartition(".")[2] == "dataclass" for annotation in annotations):
        return "dataclass"
    if names & {"Enum", "IntEnum", "StrEnum"}:
        return "enum"
    if names & {"BaseModel", "SQLModel", "Schema"}:
        return "model"
    if any(name.endswith("Serializer") for name in names):
        return "serializer"
    if "TypedDict" in names:
        return "typeddict"
    if "Model" in names:
        return "django_model"
    return "class"


def _call_name(call: ast.Call) -> str:
    return ast.unparse(call.func)


def _keyword(call: ast.Call, *names: str) -> Optional[ast.expr]:
    for keyword in call.keywords:
        if keyword.arg in names:
            return keyword.value
    return None


def _keyword_source(call: ast.Call, name: str) -> Optional[str]:
    value = _keyword(call, name)
    return ast.unparse(value) if value is not None else None


def _string_keyword(call: ast.Call, *names: str) -> Optional[str]:
    return _string_value(_keyword(call, *names))


def _string_value(node: Optional[ast.expr]) -> Optional[str]:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def _string_list(node: Optional[ast.expr]) -> List[str]:
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        return [item.value.upper() for item in node.elts if isinstance(item, ast.Constant) and isinstance(item.value, str)]
    return []


def _has_default(call: ast.Call) -> bool:
    """Whether a ``Field(...)``/``Query(...)`` call supplies a default value."""
    if call.args:
        first = call.args[0]
        return not (isinstance(first, ast.Constant) and first.value is Ellipsis)
    return _keyword(call, "default", "default_factory") is not None


def _handler_name(node: Optional[ast.expr]) -> str:
    if node is None or isinstance(node, ast.Lambda):
        return "lambda"
    if isinstance(node, ast.Call):
        return _handler_name(node.func)
    return unquote(ast.unparse(node)).rpartition(".")[2]


def _viewset_actions(decl: Optional[TypeDecl]) -> Optional[List[str]]:
    """Return the standard actions a viewset implements, or None when it implements all of them."""
    if decl is None:
        return None
    names = {base.rpartition(".")[2] for base in decl.bases}
    if "ModelViewSet" in names:
        return None
    if "ReadOnlyModelViewSet" in names:
        return ["list", "retrieve"]
    supported = {method.name for method in decl.methods}
    for name in names:
        supported.update(_VIEWSET_MIXINS.get(name, ()))
    return [action for action in _VIEWSET_ACTIONS if action in supported]


def _literal_methods(source: Optional[str]) -> List[str]:
    """Upper-cased verbs from a ``["get", "post"]`` decorator argument."""
    if not source:
        return []
    try:
        node = ast.parse(source, mode="eval").body
    except SyntaxError:
        return []
    return _string_list(node)


def _router_prefix(routers: Dict[str, _Router], name: str, depth: int) -> str:
    router = routers.get(name)
    if router is None or depth > 8:
        return ""
    outer = _router_prefix(routers, router.parent, depth + 1) if router.parent else ""
    prefix = join_paths(outer, router.mount, router.prefix)
    return "" if prefix == "/" else prefix


def _framework_from_imports(imports: Sequence[str]) -> str:
    roots = {name.split(".")[0] for name in imports}
    if "rest_framework" in roots:
        return "drf"
    for framework in ("fastapi", "flask", "django", "starlette"):
        if framework in roots:
            return framework
    return "python"


__all__ = ["PythonBackend", "TYPES"]
