"""Path template normalization and resource macro expansion."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ResourceFact, RouteFact

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"

_PARAM_PATTERNS: List[Tuple[re.Pattern[str], str]] = [
    # Rails format suffix, optional or bare
    (re.compile(r"\(\.:format\)|\.:format(?=/|$)"), ""),
    # Express/Rails/Vapor/Ktor style :id, :id?, :id(\d+)
    (re.compile(rf"(?<=/):({_NAME})(?:\([^)]*\))?\??"), r"{\1}"),
    # Play $id<[0-9]+> and $id
    (re.compile(rf"(?<=/)\$({_NAME})<[^>]*>"), r"{\1}"),
    (re.compile(rf"(?<=/)\$({_NAME})"), r"{\1}"),
    # Rails/Play globs
    (re.compile(rf"(?<=/)\*({_NAME})"), r"{\1}"),
    # ASP.NET constraints and catch-alls, Laravel optionals, Go wildcards, Spring regexes
    (re.compile(rf"\{{\*{{0,2}}({_NAME})(?:\.\.\.|\?|\s*[:=][^}}]*)?\}}"), r"{\1}"),
    # Django/Python named regex groups
    (re.compile(rf"\(\?P<({_NAME})>[^)]+\)"), r"{\1}"),
]

# Flask <int:id>, Rocket <id> and <path..>, Django <slug:slug>
_NAMED_ANGLE = re.compile(rf"<(?:{_NAME}:)?({_NAME})(?:\.\.)?>")
# Crow <int>: a type with no name, numbered left to right
_TYPED_ANGLE = re.compile(r"<(int|uint|double|float|string|path)>")


def normalize_path(path: str, syntax: Optional[str] = None) -> str:
    """Return the canonical ``{name}`` form of a framework path template.

    ``syntax`` names the source framework when its placeholders are ambiguous;
    for ``"crow"`` every ``<...>`` segment is positional. Normalizing an
    already canonical path returns it unchanged.
    """
    if not path:
        return "/"
    result = path.strip()
    if result.startswith("^"):
        result = result[1:]
    if result.endswith("$"):
        result = result[:-1]
    if not result.startswith("/"):
        result = "/" + result
    for pattern, replacement in _PARAM_PATTERNS:
        result = pattern.sub(replacement, result)
    result = _number_positional(result, every_angle=syntax == "crow")
    result = _NAMED_ANGLE.sub(r"{\1}", result)
    result = re.sub(r"/{2,}", "/", result)
    if len(result) > 1 and result.endswith("/"):
        result = result[:-1]
    return result or "/"


def _number_positional(path: str, every_angle: bool) -> str:
    pattern = re.compile(r"<([^<>/]+)>") if every_angle else _TYPED_ANGLE
    counter = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal counter
        counter += 1
        return "{param%d}" % counter

    return pattern.sub(_replace, path)


def extract_path_params(path: str) -> List[str]:
    """Return the ``{name}`` placeholders of a canonical path in order."""
    names: List[str] = []
    for name in re.findall(r"\{([A-Za-z_][\w-]*)\}", path):
        if name not in names:
            names.append(name)
    return names


def join_paths(*parts: str) -> str:
    """Combine group prefixes and route paths with exactly one slash between them."""
    segments = [part.strip().strip("/") for part in parts if part and part.strip().strip("/")]
    return "/" + "/".join(segments)


def operation_name(method: str, path: str) -> str:
    """Build a camelCase name from a verb and the words of a path.

    ``("GET", "/users/{id}")`` gives ``getUsersById``.
    """
    words: List[str] = []
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        param = re.fullmatch(r"\{([A-Za-z_][\w-]*)\}", segment)
        if param:
            words.append("By" + _title(param.group(1)))
        else:
            words.append(_title(segment))
    return method.lower() + "".join(words)


def _title(word: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", word) if part)


def method_upper(value: str) -> str:
    """Normalize HTTP verbs to uppercase."""
    return (value or "").strip().upper()


# ---------------------------------------------------------------------------
# Resource expansion
# ---------------------------------------------------------------------------

Action = Tuple[str, str, str]

_RAILS_ACTIONS: Tuple[Action, ...] = (
    ("GET", "", "index"),
    ("GET", "/new", "new"),
    ("POST", "", "create"),
    ("GET", "/{id}", "show"),
    ("GET", "/{id}/edit", "edit"),
    ("PUT", "/{id}", "update"),
    ("PATCH", "/{id}", "update"),
    ("DELETE", "/{id}", "destroy"),
)

_RAILS_SINGULAR_ACTIONS: Tuple[Action, ...] = (
    ("GET", "/new", "new"),
    ("POST", "", "create"),
    ("GET", "", "show"),
    ("GET", "/edit", "edit"),
    ("PUT", "", "update"),
    ("PATCH", "", "update"),
    ("DELETE", "", "destroy"),
)

_LARAVEL_API_ACTIONS: Tuple[Action, ...] = (
    ("GET", "", "index"),
    ("POST", "", "store"),
    ("GET", "/{id}", "show"),
    ("PUT", "/{id}", "update"),
    ("PATCH", "/{id}", "update"),
    ("DELETE", "/{id}", "destroy"),
)

_LARAVEL_ACTIONS: Tuple[Action, ...] = _LARAVEL_API_ACTIONS + (
    ("GET", "/create", "create"),
    ("GET", "/{id}/edit", "edit"),
)

_PHOENIX_ACTIONS: Tuple[Action, ...] = (
    ("GET", "", "index"),
    ("GET", "/new", "new"),
    ("POST", "", "create"),
    ("GET", "/{id}", "show"),
    ("GET", "/{id}/edit", "edit"),
    ("PUT", "/{id}", "update"),
    ("PATCH", "/{id}", "update"),
    ("DELETE", "/{id}", "delete"),
)

_DRF_ACTIONS: Tuple[Action, ...] = (
    ("GET", "", "list"),
    ("POST", "", "create"),
    ("GET", "/{pk}", "retrieve"),
    ("PUT", "/{pk}", "update"),
    ("PATCH", "/{pk}", "partial_update"),
    ("DELETE", "/{pk}", "destroy"),
)

_FORM_ACTIONS: Dict[str, Tuple[str, ...]] = {
    "rails": ("new", "edit"),
    "phoenix": ("new", "edit"),
    "laravel": ("create", "edit"),
}


def resource_actions(resource: ResourceFact) -> Sequence[Action]:
    """Return the ordered action table for a resource declaration."""
    framework = resource.framework or "rails"
    if framework == "laravel":
        return _LARAVEL_API_ACTIONS if resource.is_api else _LARAVEL_ACTIONS
    if framework == "drf":
        return _DRF_ACTIONS
    if framework == "phoenix":
        table = _PHOENIX_ACTIONS
    elif resource.singular:
        table = _RAILS_SINGULAR_ACTIONS
    else:
        table = _RAILS_ACTIONS
    if resource.is_api:
        forms = _FORM_ACTIONS.get(framework, ())
        return tuple(action for action in table if action[2] not in forms)
    return table


def expand_resource(resource: ResourceFact) -> List[RouteFact]:
    """Expand a resource macro into the individual routes it declares.

    A non-empty ``only`` list is an allow-list; otherwise ``except_`` is a
    deny-list; otherwise every action of the table is emitted.
    """
    base = join_paths(resource.path)
    routes: List[RouteFact] = []
    for method, suffix, action in resource_actions(resource):
        if resource.only:
            if action not in resource.only:
                continue
        elif action in resource.except_:
            continue
        path = base + suffix if base != "/" else (suffix or "/")
        routes.append(
            RouteFact(
                method=method,
                path=path,
                handler=action,
                owner=resource.controller,
                prefix=resource.prefix,
                line=resource.line,
                framework=resource.framework,
            )
        )
    return routes


__all__ = [
    "expand_resource",
    "extract_path_params",
    "join_paths",
    "method_upper",
    "normalize_path",
    "operation_name",
    "resource_actions",
]
