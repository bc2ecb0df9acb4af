"""Tests for the Swift (Vapor) backend."""

from __future__ import annotations

from apiscan.models import TypeKind
from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent

SOURCE = """
import Vapor

struct UserDTO: Content {
    let id: UUID?
    var name: String
    var tags: [String] = []
}

final class User: Model {
    @ID(key: .id) var id: UUID?
    @Field(key: "full_name") var name: String
    @OptionalField(key: "bio") var bio: String?
}

struct UserController: RouteCollection {
    func boot(routes: RoutesBuilder) throws {
        let users = routes.grouped("users")
        users.get(use: index)
        users.get(":id", use: show)
        users.post(use: create)
    }

    func index(req: Request) async throws -> [UserDTO] { [] }
    func show(req: Request) async throws -> UserDTO { try await find(req) }
    func create(req: Request) async throws -> UserDTO { try req.content.decode(UserDTO.self) }
}
"""


def _parse(code: str = SOURCE):
    return get_backend("swift").parse("Sources/App/Users.swift", dedent(code))


def test_codable_struct_properties() -> None:
    unit = _parse()
    dto = unit.find_type("UserDTO")
    assert dto is not None
    assert dto.bases == ["Content"]
    assert [(item.name, item.type, item.optional) for item in dto.fields] == [
        ("id", "UUID?", True),
        ("name", "String", False),
        ("tags", "[String]", False),
    ]
    assert dto.fields[2].kind == TypeKind.SEQUENCE
    assert dto.fields[2].default == "[]"


def test_fluent_property_wrappers_give_keys() -> None:
    model = _parse().find_type("User")
    assert model is not None
    assert [(item.name, item.alias, item.optional) for item in model.fields] == [
        ("id", None, True),
        ("name", "full_name", False),
        ("bio", None, True),
    ]
    assert [item.wire_name for item in model.fields] == ["id", "full_name", "bio"]


def test_vapor_grouped_routes_resolve_handlers() -> None:
    unit = _parse()
    assert unit.imports == ["Vapor"]
    assert [(fact.method, fact.prefix, fact.path, fact.handler, fact.owner) for fact in unit.routes] == [
        ("GET", "users", "/", "index", "UserController"),
        ("GET", "users", "/:id", "show", "UserController"),
        ("POST", "users", "/", "create", "UserController"),
    ]
    controller = unit.find_type("UserController")
    index = unit.find_handler("index", "UserController")
    assert index is not None and index in controller.methods
    assert (index.return_type, index.is_async) == ("[UserDTO]", True)
