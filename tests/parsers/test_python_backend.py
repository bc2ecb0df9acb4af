"""Tests for the Python backend (FastAPI, Flask, Django, DRF)."""

from __future__ import annotations

import pytest

from apiscan.errors import ParseError
from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent


def _parse(code: str, filename: str = "app/main.py"):
    return get_backend("python").parse(filename, dedent(code))


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
def create_user(user: User) -> User:
    ...


app.include_router(router, prefix="/api")
"""


def test_fastapi_routes_resolve_router_prefixes() -> None:
    unit = _parse(FASTAPI_APP)
    assert unit.imports == ["typing", "fastapi", "pydantic"]
    assert [(fact.method, fact.prefix, fact.path, fact.handler, fact.framework) for fact in unit.routes] == [
        ("GET", "/api/users", "/{user_id}", "read_user", "fastapi"),
        ("POST", "/api/users", "/", "create_user", "fastapi"),
    ]


def test_fastapi_handlers_and_markers() -> None:
    unit = _parse(FASTAPI_APP)
    read_user, create_user = unit.functions
    assert (read_user.is_async, read_user.return_type) == (True, "User")
    user_id, verbose = read_user.params
    assert (user_id.type, user_id.required) == ("int", True)
    assert (verbose.type, verbose.required, verbose.annotations[0].name) == ("bool", False, "Query")
    assert [annotation.name for annotation in create_user.annotations][-1] == "deprecated"
    assert create_user.return_type == "User"


def test_pydantic_model_fields() -> None:
    (user,) = _parse(FASTAPI_APP).types
    assert user.kind == "model"
    assert [(item.name, item.type, item.optional, item.alias) for item in user.fields] == [
        ("id", "int", False, None),
        ("name", "str", False, "fullName"),
        ("email", "Optional[str]", True, None),
        ("tags", "List[str]", True, None),
    ]


def test_flask_blueprints_and_url_rules() -> None:
    unit = _parse(
        """
        from flask import Blueprint, Flask

        app = Flask(__name__)
        bp = Blueprint("items", __name__, url_prefix="/items")


        @bp.route("/<int:item_id>", methods=["GET", "PUT"])
        def item(item_id):
            return {}


        def ping():
            return "pong"


        app.add_url_rule("/ping", view_func=ping)
        app.register_blueprint(bp, url_prefix="/v1")
        """
    )
    assert [(fact.method, fact.prefix, fact.path, fact.handler) for fact in unit.routes] == [
        ("GET", "/v1/items", "/<int:item_id>", "item"),
        ("PUT", "/v1/items", "/<int:item_id>", "item"),
        ("GET", "", "/ping", "ping"),
    ]
    assert {fact.framework for fact in unit.routes} == {"flask"}


def test_django_models_and_urlpatterns() -> None:
    unit = _parse(
        """
        from django.db import models
        from django.urls import path
        from django.views import View


        class Author(models.Model):
            name = models.CharField(max_length=100)
            bio = models.TextField(null=True, blank=True)
            publisher = models.ForeignKey("Publisher", on_delete=models.CASCADE)


        class AuthorView(View):
            def get(self, request, pk):
                ...

            def delete(self, request, pk):
                ...


        def health(request):
            ...


        urlpatterns = [
            path("authors/<int:pk>/", AuthorView.as_view()),
            path("health/", health),
            path("api/", include("api.urls")),
        ]
        """,
        filename="library/urls.py",
    )
    author, view = unit.types
    assert author.kind == "django_model"
    assert [(item.name, item.type, item.optional) for item in author.fields] == [
        ("name", "CharField", False),
        ("bio", "TextField", True),
        ("publisher_id", "ForeignKey", False),
    ]
    assert [param.name for param in view.methods[0].params] == ["request", "pk"]
    assert [(fact.method, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "authors/<int:pk>/", "AuthorView", "get"),
        ("DELETE", "authors/<int:pk>/", "AuthorView", "delete"),
        ("GET", "health/", None, "health"),
    ]
    assert {fact.framework for fact in unit.routes} == {"django"}


DRF_URLS = """
from django.urls import include, path
from rest_framework import mixins, routers, serializers, viewsets
from rest_framework.decorators import action, api_view


class UserSerializer(serializers.ModelSerializer):
    username = serializers.CharField(max_length=150)
    nickname = serializers.CharField(required=False)


class UserViewSet(viewsets.ModelViewSet):
    @action(detail=True, methods=["post"], url_path="set-password")
    def set_password(self, request, pk=None):
        ...

    @action(detail=False)
    def recent(self, request):
        ...


class TagViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    pass


@api_view(["GET", "POST"])
def health(request):
    ...


router = routers.DefaultRouter()
router.register(r"users", UserViewSet)
router.register(r"tags", TagViewSet, basename="tag")
router.register(r"groups", GroupViewSet)

urlpatterns = [
    path("api/", include(router.urls)),
    path("health/", health),
    path("me/", UserViewSet.as_view({"get": "retrieve", "patch": "partial_update"})),
]
"""


def test_drf_urlpatterns_and_viewset_actions() -> None:
    unit = _parse(DRF_URLS, filename="api/urls.py")
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "", "health/", None, "health"),
        ("POST", "", "health/", None, "health"),
        ("GET", "", "me/", "UserViewSet", "retrieve"),
        ("PATCH", "", "me/", "UserViewSet", "partial_update"),
        ("POST", "/api", "/users/{pk}/set-password", "UserViewSet", "set_password"),
        ("GET", "/api", "/users/recent", "UserViewSet", "recent"),
    ]
    assert {fact.framework for fact in unit.routes} == {"drf"}


def test_drf_router_registrations_become_resources() -> None:
    unit = _parse(DRF_URLS, filename="api/urls.py")
    assert [(item.path, item.controller, item.only, item.prefix) for item in unit.resources] == [
        ("users", "UserViewSet", [], "/api"),
        ("tags", "TagViewSet", ["list"], "/api"),
        ("groups", "GroupViewSet", [], "/api"),
    ]
    assert {item.framework for item in unit.resources} == {"drf"}


def test_drf_serializer_fields() -> None:
    serializer = _parse(DRF_URLS).find_type("UserSerializer")
    assert serializer.kind == "serializer"
    assert [(item.name, item.type, item.optional) for item in serializer.fields] == [
        ("username", "CharField", False),
        ("nickname", "CharField", True),
    ]

def test_syntax_errors_raise_parse_error() -> None:
    with pytest.raises(ParseError):
        _parse("def broken(:\n    pass\n")


def test_annotated_types_map_to_their_base() -> None:
    backend = get_backend("python")
    assert backend.map_type("Annotated[int, Query(gt=0)]") == ("integer", "")
