"""Tests for the Scala backend (case classes, Play, Tapir)."""

from __future__ import annotations

from apiscan.parsers import get_backend, language_for_path
from apiscan.parsers.scala import MOUNT, is_play_routes
from tests._fixtures.repo_builder import dedent


def _parse(code: str, filename: str = "App.scala"):
    return get_backend("scala").parse(filename, dedent(code))


def test_case_class_fields_with_defaults_and_aliases() -> None:
    unit = _parse(
        """
        package models

        case class User(id: Long, name: String, email: Option[String] = None, @JsonKey("created_at") createdAt: Instant)
        """
    )
    (decl,) = unit.types
    assert decl.kind == "case class"
    assert decl.namespace == "models"
    assert [(item.name, item.type, item.optional) for item in decl.fields] == [
        ("id", "Long", False),
        ("name", "String", False),
        ("email", "Option[String]", True),
        ("createdAt", "Instant", False),
    ]
    assert decl.fields[3].alias == "created_at"


def test_play_routes_file() -> None:
    unit = _parse(
        """
        # Routes
        GET     /users              controllers.UserController.list
        GET     /users/:id          controllers.UserController.show(id: Long)
        POST    /users              controllers.UserController.create()
        ->      /api                api.Routes
        """,
        filename="conf/routes",
    )
    assert [(fact.method, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "/users", "UserController", "list"),
        ("GET", "/users/:id", "UserController", "show"),
        ("POST", "/users", "UserController", "create"),
        (MOUNT, "/api", None, "api.Routes"),
    ]


def test_play_routes_file_names() -> None:
    assert is_play_routes("conf/routes")
    assert is_play_routes("conf/api.routes")
    assert not is_play_routes("app/routes.scala")
    assert language_for_path("conf/routes") == "scala"


def test_play_controller_actions() -> None:
    unit = _parse(
        """
        class UserController @Inject()(cc: ControllerComponents) extends AbstractController(cc) {
          def list = Action { Ok(Json.toJson(users)) }
          def show(id: Long): Action[AnyContent] = Action.async { request => lookup(id) }
        }
        """
    )
    (controller,) = unit.types
    assert controller.bases == ["AbstractController"]
    assert controller.fields == []
    assert [(method.name, method.return_type) for method in controller.methods] == [
        ("list", "Action"),
        ("show", "Action[AnyContent]"),
    ]
    assert controller.methods[1].params[0].type == "Long"


def test_tapir_endpoints_become_routes_and_functions() -> None:
    unit = _parse(
        """
        object Endpoints {
          val getUser =
            endpoint.get.in("users" / path[Long]("id")).out(jsonBody[User])
          val search = endpoint.get
            .in("users" / "search")
            .in(query[Option[String]]("q"))
            .out(jsonBody[List[User]])
          val importUsers = endpoint.post.in("users").in(jsonBody[Map[String, List[User]]]).out(jsonBody[User])
        }
        """
    )
    assert [(fact.method, fact.path, fact.handler) for fact in unit.routes] == [
        ("GET", "/users/{id}", "getUser"),
        ("GET", "/users/search", "search"),
        ("POST", "/users", "importUsers"),
    ]
    get_user, search, import_users = unit.functions
    assert get_user.return_type == "User"
    assert search.return_type == "List[User]"
    (query,) = search.params
    assert (query.name, query.type, query.required) == ("q", "Option[String]", False)
    assert query.annotations[0].name == "Query"
    assert [(param.name, param.type) for param in import_users.params] == [("body", "Map[String, List[User]]")]
    assert import_users.return_type == "User"
