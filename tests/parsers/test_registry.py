from __future__ import annotations

import pytest

from apiscan.engine import ExtractionEngine
from apiscan.errors import UnsupportedLanguageError
from apiscan.models import RouteFact
from apiscan.parsers import (
    _shared_backend,
    available_languages,
    canonical_language,
    get_backend,
    language_for_path,
    metadata,
)
from apiscan.parsers.base import RegexBackend
from apiscan.parsers.csharp import CSharpBackend
from apiscan.parsers.golang import GoBackend
from apiscan.plugins import FrameworkPlugin, available_plugins, get_plugin
from tests._fixtures.repo_builder import source


@pytest.fixture(autouse=True)
def _fresh_registry():
    _shared_backend.cache_clear()
    yield
    _shared_backend.cache_clear()


def test_aliases_resolve_to_shared_instances() -> None:
    assert canonical_language(" C# ") == "csharp"
    assert canonical_language("golang") == "go"
    assert isinstance(get_backend("cs"), CSharpBackend)
    assert get_backend("dotnet") is get_backend("csharp")
    assert isinstance(get_backend("golang"), GoBackend)
    assert get_backend("golang") is get_backend("go") is get_backend(" GO ")


def test_aliases_enumerate_entry_points_once(monkeypatch) -> None:
    calls = []

    def _entry_points():
        calls.append(1)
        return _EntryPoints()

    monkeypatch.setattr(metadata, "entry_points", _entry_points)
    for tag in ("golang", "go", "Go", "cs", "csharp"):
        get_backend(tag)
    assert len(calls) == 2


def test_unknown_language_raises() -> None:
    with pytest.raises(UnsupportedLanguageError) as excinfo:
        get_backend("cobol")
    assert excinfo.value.language == "cobol"


@pytest.mark.parametrize(
    "path, language",
    [
        ("src/Controllers/UsersController.cs", "csharp"),
        ("app/main.py", "python"),
        ("web/src/App.TSX", "typescript"),
        ("include/api/user.h", "cpp"),
        ("conf/routes", "scala"),
        ("conf/admin.routes", "scala"),
        ("lib/my_app_web/router.ex", "elixir"),
        ("README.md", None),
    ],
)
def test_language_for_path(path: str, language) -> None:
    assert language_for_path(path) == language


class _EchoBackend(RegexBackend):
    language = "echo"
    extensions = (".echo",)

    def scan(self, text: str, unit) -> None:
        for word in text.split():
            unit.routes.append(RouteFact(method="GET", path=word, handler="lambda"))


class _EntryPoint:
    def __init__(self, name: str, target: object) -> None:
        self.name = name
        self._target = target

    def load(self) -> object:
        return self._target


class _EntryPoints(list):
    def select(self, group: str):
        return [item for item in self if group == "apiscan.backends"]


def test_entry_point_backends_extend_registry(monkeypatch) -> None:
    points = _EntryPoints([_EntryPoint("echo", _EchoBackend), _EntryPoint("python", _EchoBackend)])
    monkeypatch.setattr(metadata, "entry_points", lambda: points)
    assert "echo" in available_languages()
    assert isinstance(get_backend("echo"), _EchoBackend)
    # built-ins win over entry points with the same name
    assert not isinstance(get_backend("python"), _EchoBackend)


def test_entry_point_languages_get_a_generic_plugin(monkeypatch) -> None:
    monkeypatch.setattr(metadata, "entry_points", lambda: _EntryPoints([_EntryPoint("echo", _EchoBackend)]))

    plugin = get_plugin("echo")
    assert type(plugin) is FrameworkPlugin
    assert plugin.language == "echo"
    assert plugin.backend is get_backend("echo")
    assert "echo" in available_plugins()

    result = ExtractionEngine().run([source("notes/hello.echo", "echo", "hello users/:id\n")])
    assert result.failed == []
    assert [(route.method, route.path, route.handler) for route in result.routes] == [
        ("GET", "/hello", "lambda"),
        ("GET", "/users/{id}", "lambda"),
    ]
    with pytest.raises(UnsupportedLanguageError):
        get_plugin("cobol")
