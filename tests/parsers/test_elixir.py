"""Tests for the Elixir backend (Phoenix, Plug, Ecto)."""

from __future__ import annotations

from apiscan.models import TypeKind
from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent


def _parse(code: str, filename: str = "lib/my_app_web/router.ex"):
    return get_backend("elixir").parse(filename, dedent(code))


def test_phoenix_router_scopes_and_resources() -> None:
    unit = _parse(
        """
        defmodule MyAppWeb.Router do
          use MyAppWeb, :router

          scope "/api", MyAppWeb do
            pipe_through :api
            get "/users/:id", UserController, :show
            resources "/posts", PostController, only: [:index, :show] do
              post "/publish", PostController, :publish
            end
            live "/dashboard", DashboardLive
          end
        end
        """
    )
    (router,) = unit.types
    assert (router.name, router.namespace, router.kind) == ("Router", "MyAppWeb", "module")
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "/api", "/users/:id", "MyAppWeb.UserController", "show"),
        ("POST", "/api/posts/{post_id}", "/publish", "MyAppWeb.PostController", "publish"),
        ("GET", "/api", "/dashboard", "MyAppWeb.DashboardLive", "mount"),
    ]
    (resource,) = unit.resources
    assert (resource.path, resource.controller, resource.only, resource.prefix) == (
        "/posts",
        "MyAppWeb.PostController",
        ["index", "show"],
        "/api",
    )


def test_plug_router_blocks() -> None:
    unit = _parse(
        """
        defmodule MyApp.Router do
          use Plug.Router

          get "/ping" do
            send_resp(conn, 200, "pong")
          end

          forward "/users", to: UsersRouter
          post "/hooks", to: HookPlug
        end
        """
    )
    assert unit.imports == ["Plug.Router"]
    assert [(fact.method, fact.path, fact.owner, fact.handler, fact.framework) for fact in unit.routes] == [
        ("GET", "/ping", None, "lambda", "plug"),
        ("POST", "/hooks", "HookPlug", "call", "plug"),
    ]


def test_ecto_schema_fields_and_required_validation() -> None:
    unit = _parse(
        """
        defmodule MyApp.Accounts.User do
          use Ecto.Schema
          import Ecto.Changeset

          schema "users" do
            field :email, :string
            field :name, :string, source: :full_name
            field :age, :integer, default: 0
            field :roles, {:array, :string}
            belongs_to :org, MyApp.Org
            has_many :posts, MyApp.Post
            timestamps(type: :utc_datetime)
          end

          def changeset(user, attrs) do
            user
            |> cast(attrs, [:email, :name, :age])
            |> validate_required([:email])
          end
        end
        """,
        filename="lib/my_app/accounts/user.ex",
    )
    assert unit.imports == ["Ecto.Schema", "Ecto.Changeset"]
    assert unit.routes == []
    (decl,) = unit.types
    assert (decl.name, decl.namespace, decl.kind) == ("User", "MyApp.Accounts", "schema")
    assert decl.annotation("schema").string_arg() == "users"
    assert [(item.name, item.optional) for item in decl.fields] == [
        ("email", False),
        ("name", True),
        ("age", True),
        ("roles", True),
        ("org_id", True),
        ("inserted_at", True),
        ("updated_at", True),
    ]
    assert decl.fields[1].alias == "full_name"
    assert decl.fields[3].kind == TypeKind.SEQUENCE
    (changeset,) = decl.methods
    assert [param.name for param in changeset.params] == ["user", "attrs"]


def test_ecto_composite_types() -> None:
    backend = get_backend("elixir")
    assert backend.map_type("{:array, :string}") == ("array", "")
    assert backend.classify("{:map, :integer}").kind == TypeKind.MAP
