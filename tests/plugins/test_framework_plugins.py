from __future__ import annotations

import pytest

from apiscan.parsers import TREE_SITTER_AVAILABLE
from apiscan.plugins import SCHEMA_REF_PREFIX, get_plugin
from tests._fixtures.repo_builder import source


def _summary(routes):
    return [(route.method, route.path, route.handler) for route in routes]


def test_aspnet_controller_routes() -> None:
    files = [
        source(
            "src/Controllers/UsersController.cs",
            "csharp",
            """
            [ApiController]
            [Route("api/[controller]")]
            public class UsersController : ControllerBase
            {
                [HttpGet("{id}")]
                public async Task<ActionResult<UserDto>> GetUser(int id) { return null; }

                [HttpPost]
                [Obsolete]
                public IActionResult Create([FromBody] CreateUser body, [FromQuery] string? source) { return Ok(); }
            }

            public class UserDto
            {
                public int Id { get; set; }
                public string? Name { get; set; }
            }
            """,
        )
    ]
    plugin = get_plugin("csharp")
    get_user, create = plugin.extract_routes(files)
    assert (get_user.method, get_user.path, get_user.handler) == ("GET", "/api/Users/{id}", "UsersController.GetUser")
    assert get_user.operation_id == "getGetUser"
    assert get_user.tags == ["Users"]
    assert [param.to_dict() for param in get_user.parameters] == [
        {"name": "id", "in": "path", "required": True, "schema": {"type": "integer", "format": "int32"}}
    ]
    assert get_user.response.to_dict() == {"$ref": SCHEMA_REF_PREFIX + "UserDto"}
    assert create.request_body.to_dict() == {"title": "CreateUser", "type": "object"}
    assert [(param.name, param.in_, param.required) for param in create.parameters] == [("source", "query", False)]
    assert create.deprecated is True
    assert create.response is not None

    (user_dto,) = plugin.extract_schemas(files)
    assert user_dto.to_dict() == {
        "title": "UserDto",
        "type": "object",
        "properties": {
            "Id": {"type": "integer", "format": "int32"},
            "Name": {"type": "string"},
        },
        "required": ["Id"],
    }


def test_laravel_resource_expands_to_crud_routes() -> None:
    files = [
        source(
            "routes/web.php",
            "php",
            """
            <?php
            use App\\Http\\Controllers\\PostController;

            Route::resource('posts', PostController::class);
            """,
        )
    ]
    routes = get_plugin("php").extract_routes(files)
    assert _summary(routes) == [
        ("GET", "/posts", "PostController@index"),
        ("POST", "/posts", "PostController@store"),
        ("GET", "/posts/{id}", "PostController@show"),
        ("PUT", "/posts/{id}", "PostController@update"),
        ("PATCH", "/posts/{id}", "PostController@update"),
        ("DELETE", "/posts/{id}", "PostController@destroy"),
        ("GET", "/posts/create", "PostController@create"),
        ("GET", "/posts/{id}/edit", "PostController@edit"),
    ]
    assert routes[2].parameters[0].schema.type == "string"


def test_play_includes_prefix_child_routes_files() -> None:
    files = [
        source(
            "conf/routes",
            "scala",
            """
            GET     /health             controllers.HealthController.check
            ->      /api                api.Routes
            """,
        ),
        source(
            "conf/api.routes",
            "scala",
            """
            GET     /users/:id          controllers.api.UserController.show(id: Long)
            """,
        ),
    ]
    routes = get_plugin("scala").extract_routes(files)
    assert _summary(routes) == [
        ("GET", "/health", "HealthController.check"),
        ("GET", "/api/users/{id}", "UserController.show"),
    ]


def test_play_prefixes_belong_to_their_batch() -> None:
    child = source("conf/v2.routes", "scala", "GET  /orders  controllers.v2.Orders.list\n")
    plugin = get_plugin("scala")

    stable = plugin.prepare([source("conf/routes", "scala", "->  /v2  v2.Routes\n"), child])
    beta = plugin.prepare([source("conf/routes", "scala", "->  /beta  v2.Routes\n"), child])

    assert (stable, beta) == ({"v2.routes": "/v2"}, {"v2.routes": "/beta"})
    assert plugin.prepare([child]) == {}
    with plugin.parse(child) as unit:
        assert [route.path for route in plugin.extract_unit(unit, stable)[0]] == ["/v2/orders"]
        assert [route.path for route in plugin.extract_unit(unit, beta)[0]] == ["/beta/orders"]
        assert [route.path for route in plugin.extract_unit(unit)[0]] == ["/orders"]


FASTAPI_APP = """
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Query
from pydantic import BaseModel, Field

app = FastAPI()
router = APIRouter(prefix="/users")


class User(BaseModel):
    id: int
    name: str = Field(..., alias="fullName")
    email: Optional[str] = None
    tags: List[str] = []


@router.get("/{user_id}", response_model=User)
async def read_user(user_id: int, verbose: bool = Query(False)):
    ...


@router.post("/", deprecated=True)
def create_user(user: User, dry_run: bool = False) -> User:
    ...


app.include_router(router, prefix="/api")
"""


def test_fastapi_parameters_bodies_and_models() -> None:
    files = [source("app/main.py", "python", FASTAPI_APP)]
    plugin = get_plugin("python")
    read_user, create_user = plugin.extract_routes(files)
    assert (read_user.method, read_user.path, read_user.handler) == ("GET", "/api/users/{user_id}", "read_user")
    assert [param.to_dict() for param in read_user.parameters] == [
        {"name": "user_id", "in": "path", "required": True, "schema": {"type": "integer"}},
        {"name": "verbose", "in": "query", "required": False, "schema": {"type": "boolean"}},
    ]
    assert read_user.response.to_dict() == {"$ref": SCHEMA_REF_PREFIX + "User"}
    assert create_user.path == "/api/users"
    assert create_user.request_body.to_dict() == {"$ref": SCHEMA_REF_PREFIX + "User"}
    assert [param.name for param in create_user.parameters] == ["dry_run"]
    assert create_user.deprecated is True

    (user,) = plugin.extract_schemas(files)
    data = user.to_dict()
    assert list(data["properties"]) == ["id", "fullName", "email", "tags"]
    assert data["required"] == ["id", "fullName"]
    assert data["properties"]["email"] == {"type": "string", "nullable": True}
    assert data["properties"]["tags"] == {"type": "array", "items": {"type": "string"}}


def test_files_that_fail_to_parse_are_skipped() -> None:
    files = [
        source("app/broken.py", "python", "def broken(:\n"),
        source("app/ok.py", "python", FASTAPI_APP),
    ]
    assert len(get_plugin("python").extract_routes(files)) == 2


def test_drf_viewsets_expand_under_router_mount() -> None:
    files = [
        source(
            "api/urls.py",
            "python",
            """
            from django.urls import include, path
            from rest_framework import routers, viewsets
            from rest_framework.decorators import action


            class BookViewSet(viewsets.ReadOnlyModelViewSet):
                @action(detail=True, methods=["post"])
                def publish(self, request, pk=None):
                    ...


            router = routers.SimpleRouter()
            router.register("books", BookViewSet)

            urlpatterns = [path("v1/", include(router.urls))]
            """,
        )
    ]
    routes = get_plugin("python").extract_routes(files)
    assert _summary(routes) == [
        ("POST", "/v1/books/{pk}/publish", "BookViewSet.publish"),
        ("GET", "/v1/books", "BookViewSet.list"),
        ("GET", "/v1/books/{pk}", "BookViewSet.retrieve"),
    ]
    assert [param.to_dict() for param in routes[0].parameters] == [
        {"name": "pk", "in": "path", "required": True, "schema": {"type": "string"}}
    ]
    assert routes[0].request_body is None


@pytest.mark.skipif(not TREE_SITTER_AVAILABLE, reason="tree-sitter grammars not installed")
def test_elysia_group_routes_get_full_paths() -> None:
    files = [
        source(
            "src/index.ts",
            "typescript",
            """
            import { Elysia } from "elysia";

            new Elysia({ prefix: "/v1" })
              .group("/users", (app) => app.get("/:id", getUser))
              .listen(3000);

            function getUser(id: string): User {}
            """,
        )
    ]
    (route,) = get_plugin("typescript").extract_routes(files)
    assert (route.method, route.path, route.handler) == ("GET", "/v1/users/{id}", "getUser")
    assert [param.name for param in route.parameters] == ["id"]


@pytest.mark.skipif(not TREE_SITTER_AVAILABLE, reason="tree-sitter grammars not installed")
def test_rust_extractors_classify_parameters() -> None:
    files = [
        source(
            "src/main.rs",
            "rust",
            """
            use axum::{routing::get, Json, Router};
            use serde::Deserialize;

            #[derive(Deserialize)]
            pub struct NewUser {
                pub name: String,
            }

            pub async fn get_user(Path(id): Path<u64>) -> String {
                todo!()
            }

            pub async fn create_user(Json(payload): Json<NewUser>) {}

            pub fn app() -> Router {
                Router::new().route("/users/:id", get(get_user)).route("/users", post(create_user))
            }
            """,
        )
    ]
    routes = get_plugin("rust").extract_routes(files)
    by_handler = {route.handler: route for route in routes}
    get_route = by_handler["get_user"]
    assert get_route.path == "/users/{id}"
    assert [(param.name, param.schema.type) for param in get_route.parameters] == [("id", "integer")]
    create_route = by_handler["create_user"]
    assert create_route.request_body.to_dict() == {"$ref": SCHEMA_REF_PREFIX + "NewUser"}
    assert create_route.response is None
