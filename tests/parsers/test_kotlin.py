"""Tests for the Kotlin backend."""

from __future__ import annotations

from apiscan.models import TypeKind
from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent


def _parse(code: str):
    return get_backend("kotlin").parse("App.kt", dedent(code))


def test_data_class_constructor_properties() -> None:
    unit = _parse(
        """
        package com.example

        @Serializable
        data class User(
            val id: Long,
            @SerialName("display_name") val name: String,
            val email: String? = null,
            val tags: List<String> = emptyList(),
        )
        """
    )
    (decl,) = unit.types
    assert decl.kind == "data"
    assert decl.namespace == "com.example"
    assert [annotation.name for annotation in decl.annotations] == ["Serializable"]
    assert [(item.name, item.type, item.optional) for item in decl.fields] == [
        ("id", "Long", False),
        ("name", "String", False),
        ("email", "String?", True),
        ("tags", "List<String>", True),
    ]
    assert decl.fields[1].alias == "display_name"
    assert decl.fields[3].kind == TypeKind.SEQUENCE


def test_body_properties_are_fields() -> None:
    unit = _parse(
        """
        class Settings {
            var theme: String = "dark"
            lateinit var owner: Account
            const val LIMIT: Int = 3
        }
        """
    )
    fields = unit.types[0].fields
    assert [(item.name, item.type) for item in fields] == [("theme", "String"), ("owner", "Account")]


def test_ktor_routing_dsl_carries_route_prefixes() -> None:
    unit = _parse(
        """
        fun Application.module() {
            routing {
                route("/api") {
                    get("/users/{id}") {
                        call.respond(users)
                    }
                    post("/users") { }
                }
                get("/health") { call.respondText("ok") }
            }
        }
        """
    )
    assert [function.name for function in unit.functions] == ["module"]
    assert [(fact.method, fact.prefix, fact.path, fact.framework) for fact in unit.routes] == [
        ("GET", "/api", "/users/{id}", "ktor"),
        ("POST", "/api", "/users", "ktor"),
        ("GET", "", "/health", "ktor"),
    ]


def test_spring_controller_in_kotlin() -> None:
    unit = _parse(
        """
        @RestController
        @RequestMapping("/items")
        class ItemController(private val service: ItemService) {
            @GetMapping("/{id}")
            suspend fun get(@PathVariable id: Long): Item = service.find(id)
        }
        """
    )
    (controller,) = unit.types
    (method,) = controller.methods
    assert (method.name, method.return_type, method.is_async) == ("get", "Item", True)
    assert method.params[0].annotations[0].name == "PathVariable"
    assert [(fact.method, fact.prefix, fact.path, fact.handler) for fact in unit.routes] == [
        ("GET", "/items", "/{id}", "get")
    ]
