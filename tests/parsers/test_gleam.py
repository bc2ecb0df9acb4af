"""Tests for the Gleam (Wisp) backend."""

from __future__ import annotations

from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent

SOURCE = """
import gleam/http
import gleam/option.{type Option}
import wisp.{type Request, type Response}

pub type User {
  User(id: Int, name: String, email: Option(String))
}

pub type Role {
  Admin
  Member
}

pub fn handle_request(req: Request) -> Response {
  case wisp.path_segments(req) {
    [] -> home(req)
    ["users", id] -> user(req, id)
    ["static", ..rest] -> files.serve(req, rest)
    _ -> wisp.not_found()
  }
}

fn user(req: Request, id: String) -> Response {
  case req.method {
    http.Get -> show_user(req, id)
    http.Delete -> delete_user(req, id)
    _ -> wisp.method_not_allowed([http.Get, http.Delete])
  }
}

fn home(req: Request) -> Response {
  use <- wisp.require_method(req, http.Get)
  wisp.ok()
}
"""


def _parse():
    return get_backend("gleam").parse("src/app/router.gleam", dedent(SOURCE))


def test_custom_types() -> None:
    unit = _parse()
    assert unit.imports == ["gleam/http", "gleam/option", "wisp"]
    user, role = unit.types
    assert user.kind == "record"
    assert [(item.name, item.type, item.optional) for item in user.fields] == [
        ("id", "Int", False),
        ("name", "String", False),
        ("email", "Option(String)", True),
    ]
    assert (role.kind, role.fields) == ("enum", [])


def test_functions_and_visibility() -> None:
    unit = _parse()
    assert [(function.name, function.visibility, function.return_type) for function in unit.functions] == [
        ("handle_request", "public", "Response"),
        ("user", "private", "Response"),
        ("home", "private", "Response"),
    ]
    assert [(param.name, param.type) for param in unit.functions[1].params] == [
        ("req", "Request"),
        ("id", "String"),
    ]


def test_path_segment_routing_reads_handler_methods() -> None:
    unit = _parse()
    assert [(fact.method, fact.path, fact.handler, fact.owner) for fact in unit.routes] == [
        ("GET", "/", "home", None),
        ("GET", "/users/{id}", "show_user", None),
        ("DELETE", "/users/{id}", "delete_user", None),
        ("GET", "/static/{rest}", "serve", "files"),
    ]
    assert {fact.framework for fact in unit.routes} == {"wisp"}
