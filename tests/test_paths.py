"""Tests for path normalization and resource expansion."""

from __future__ import annotations

import pytest

from apiscan.models import ResourceFact
from apiscan.paths import (
    expand_resource,
    extract_path_params,
    join_paths,
    normalize_path,
    operation_name,
)


@pytest.mark.parametrize(
    ("raw", "syntax", "expected"),
    [
        ("/users/:id", None, "/users/{id}"),
        ("/users/:id?", None, "/users/{id}"),
        ("/users/:id(\\d+)", None, "/users/{id}"),
        ("/users/$id<[0-9]+>", None, "/users/{id}"),
        ("/users/$id", None, "/users/{id}"),
        ("/files/*path", None, "/files/{path}"),
        ("/users/<int:id>", None, "/users/{id}"),
        ("/users/<id>", None, "/users/{id}"),
        ("/static/<path..>", None, "/static/{path}"),
        ("/users/<int>/posts/<string>", "crow", "/users/{param1}/posts/{param2}"),
        ("/users/{id:int}", None, "/users/{id}"),
        ("/users/{id:[0-9]+}", None, "/users/{id}"),
        ("/users/{id?}", None, "/users/{id}"),
        ("/files/{*rest}", None, "/files/{rest}"),
        ("^users/(?P<pk>[0-9]+)/$", None, "/users/{pk}"),
        ("/users(.:format)", None, "/users"),
        ("users/:id.:format", None, "/users/{id}"),
        ("users//list/", None, "/users/list"),
        ("", None, "/"),
        ("/", None, "/"),
    ],
)
def test_normalize_path_handles_framework_syntaxes(raw: str, syntax, expected: str) -> None:
    assert normalize_path(raw, syntax) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "/users/:id/posts/:postId",
        "/users/$id<[0-9]+>",
        "/users/<int:id>",
        "/users/{id:int}",
        "^articles/(?P<year>[0-9]{4})/$",
        "/users(.:format)",
        "/users/:id.:format",
        "/already/{canonical}",
    ],
)
def test_normalize_path_is_idempotent(raw: str) -> None:
    once = normalize_path(raw)
    assert normalize_path(once) == once


def test_crow_positional_params_are_stable_under_renormalization() -> None:
    once = normalize_path("/add/<int>/<int>", "crow")
    assert once == "/add/{param1}/{param2}"
    assert normalize_path(once, "crow") == once


def test_extract_path_params_keeps_left_to_right_order() -> None:
    assert extract_path_params(normalize_path(":id/:name")) == ["id", "name"]
    assert extract_path_params("/a/{x}/b/{y}/c/{x}") == ["x", "y"]
    assert extract_path_params("/plain") == []


def test_join_paths_uses_single_slashes() -> None:
    assert join_paths("/api/", "/users") == "/api/users"
    assert join_paths("api", "", "v1/", "users/") == "/api/v1/users"
    assert join_paths() == "/"


def test_operation_name_builds_camel_case_from_path() -> None:
    assert operation_name("GET", "/users/{id}") == "getUsersById"
    assert operation_name("post", "/user-groups") == "postUserGroups"


def _triples(resource: ResourceFact):
    return [(fact.method, fact.path, fact.handler) for fact in expand_resource(resource)]


def test_laravel_api_resource_expands_to_six_routes() -> None:
    resource = ResourceFact(path="users", controller="UserController", is_api=True, framework="laravel")
    triples = _triples(resource)
    assert len(triples) == 6
    assert ("GET", "/users/{id}", "show") in triples
    assert ("POST", "/users", "store") in triples
    assert all(action not in ("create", "edit") for _, _, action in triples)


def test_rails_resource_expands_to_eight_routes_with_forms() -> None:
    resource = ResourceFact(path="users", controller="users", framework="rails")
    triples = _triples(resource)
    assert len(triples) == 8
    assert ("GET", "/users/{id}", "show") in triples
    assert ("GET", "/users/new", "new") in triples
    assert ("GET", "/users/{id}/edit", "edit") in triples
    assert all(fact.owner == "users" for fact in expand_resource(resource))


def test_laravel_web_resource_includes_create_form() -> None:
    resource = ResourceFact(path="posts", controller="PostController", framework="laravel")
    triples = _triples(resource)
    assert len(triples) == 8
    assert ("GET", "/posts/create", "create") in triples


def test_phoenix_resource_uses_delete_action() -> None:
    triples = _triples(ResourceFact(path="/users", controller="UserController", framework="phoenix"))
    assert len(triples) == 8
    assert ("DELETE", "/users/{id}", "delete") in triples


def test_drf_viewset_uses_pk_lookup_and_partial_update() -> None:
    triples = _triples(ResourceFact(path="users", controller="UserViewSet", framework="drf"))
    assert triples == [
        ("GET", "/users", "list"),
        ("POST", "/users", "create"),
        ("GET", "/users/{pk}", "retrieve"),
        ("PUT", "/users/{pk}", "update"),
        ("PATCH", "/users/{pk}", "partial_update"),
        ("DELETE", "/users/{pk}", "destroy"),
    ]


def test_only_is_an_allow_list_and_wins_over_except() -> None:
    resource = ResourceFact(
        path="photos",
        controller="photos",
        only=["index", "show"],
        except_=["index"],
        framework="rails",
    )
    assert [action for _, _, action in _triples(resource)] == ["index", "show"]


def test_except_removes_actions() -> None:
    resource = ResourceFact(path="photos", controller="photos", except_=["destroy"], framework="rails")
    triples = _triples(resource)
    assert len(triples) == 7
    assert all(action != "destroy" for _, _, action in triples)


def test_singular_rails_resource_has_no_id_segment() -> None:
    resource = ResourceFact(path="profile", controller="profiles", singular=True, framework="rails")
    triples = _triples(resource)
    assert len(triples) == 7
    assert ("GET", "/profile", "show") in triples
    assert all("{id}" not in path for _, path, _ in triples)
