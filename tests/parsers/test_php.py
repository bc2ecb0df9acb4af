"""Tests for the PHP backend (Laravel, Slim, Symfony)."""

from __future__ import annotations

from apiscan.models import TypeKind
from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent


def _parse(code: str, filename: str = "routes/web.php"):
    return get_backend("php").parse(filename, dedent(code))


def test_laravel_route_file() -> None:
    unit = _parse(
        """
        <?php

        use App\\Http\\Controllers\\UserController;
        use Illuminate\\Support\\Facades\\Route;

        Route::get('/users/{id}', [UserController::class, 'show']);
        Route::post('/users', 'UserController@store');
        Route::prefix('admin')->group(function () {
            Route::get('/stats', [StatsController::class, 'index']);
        });
        Route::resource('posts', PostController::class)->only(['index', 'show']);
        """
    )
    assert unit.imports == ["App\\Http\\Controllers\\UserController", "Illuminate\\Support\\Facades\\Route"]
    assert unit.types == []
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "", "/users/{id}", "UserController", "show"),
        ("POST", "", "/users", "UserController", "store"),
        ("GET", "/admin", "/stats", "StatsController", "index"),
    ]
    assert all(fact.framework == "laravel" for fact in unit.routes)
    (resource,) = unit.resources
    assert (resource.path, resource.controller, resource.only, resource.is_api) == (
        "posts",
        "PostController",
        ["index", "show"],
        False,
    )


def test_slim_routes_and_groups() -> None:
    unit = _parse(
        """
        <?php
        $app->get('/hello/{name}', function ($request, $response, $args) {
            return $response;
        });
        $app->group('/api', function ($group) {
            $group->post('/items', ItemAction::class);
        });
        """,
        filename="public/index.php",
    )
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "", "/hello/{name}", None, "lambda"),
        ("POST", "/api", "/items", "ItemAction", "__invoke"),
    ]
    assert {fact.framework for fact in unit.routes} == {"slim"}


def test_symfony_attribute_controller() -> None:
    unit = _parse(
        """
        <?php
        namespace App\\Controller;

        #[Route('/api/products')]
        class ProductController extends AbstractController
        {
            #[Route('/{id}', methods: ['GET', 'HEAD'])]
            public function show(int $id): JsonResponse
            {
                return $this->json([]);
            }

            #[Post('')]
            public function create(#[MapRequestPayload] CreateProduct $payload): JsonResponse
            {
            }
        }
        """,
        filename="src/Controller/ProductController.php",
    )
    (controller,) = unit.types
    assert controller.namespace == "App\\Controller"
    assert controller.bases == ["AbstractController"]
    show, create = controller.methods
    assert (show.return_type, show.params[0].type, show.params[0].required) == ("JsonResponse", "int", True)
    assert [annotation.name for annotation in create.params[0].annotations] == ["MapRequestPayload"]
    assert [(fact.method, fact.prefix, fact.path, fact.handler) for fact in unit.routes] == [
        ("GET", "/api/products", "/{id}", "show"),
        ("HEAD", "/api/products", "/{id}", "show"),
        ("POST", "/api/products", "", "create"),
    ]


def test_typed_and_promoted_properties() -> None:
    unit = _parse(
        """
        <?php
        namespace App\\Dto;

        final class UserData
        {
            public ?string $nickname = null;
            private static int $count = 0;

            public function __construct(
                public readonly int $id,
                #[SerializedName('full_name')] public string $name,
                string $ignored,
            ) {}
        }
        """,
        filename="src/Dto/UserData.php",
    )
    (decl,) = unit.types
    assert [(item.name, item.type, item.optional, item.alias) for item in decl.fields] == [
        ("id", "int", False, None),
        ("name", "string", False, "full_name"),
        ("nickname", "?string", True, None),
    ]


def test_untyped_arrays_are_sequences() -> None:
    backend = get_backend("php")
    assert backend.classify("array").kind == TypeKind.SEQUENCE
    assert backend.map_type("?array") == ("array", "")
