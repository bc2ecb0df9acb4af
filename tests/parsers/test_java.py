"""Tests for the Java backend."""

from __future__ import annotations

from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent

CONTROLLER = """
package com.example.api;

import org.springframework.web.bind.annotation.*;

@RestController
@RequestMapping("/api/users")
public class UserController {
    @GetMapping("/{id}")
    public ResponseEntity<UserDto> getUser(@PathVariable Long id) {
        return null;
    }

    @PostMapping
    public UserDto create(@RequestBody @Valid CreateUserRequest request) {
        return service.create(request);
    }

    @GetMapping
    public List<UserDto> search(@RequestParam(required = false) String q, @RequestParam(defaultValue = "10") int limit) {
        return List.of();
    }
}
"""


def _parse(code: str, filename: str = "Example.java"):
    return get_backend("java").parse(filename, dedent(code))


def test_spring_controller_routes_and_params() -> None:
    unit = _parse(CONTROLLER)
    assert unit.imports == ["org.springframework.web.bind.annotation.*"]
    (controller,) = unit.types
    assert controller.namespace == "com.example.api"
    assert [method.name for method in controller.methods] == ["getUser", "create", "search"]
    assert [(fact.method, fact.prefix, fact.path, fact.handler) for fact in unit.routes] == [
        ("GET", "/api/users", "/{id}", "getUser"),
        ("POST", "/api/users", "", "create"),
        ("GET", "/api/users", "", "search"),
    ]
    assert all(fact.framework == "spring" for fact in unit.routes)
    create = controller.methods[1]
    assert [annotation.name for annotation in create.params[0].annotations] == ["RequestBody", "Valid"]
    q, limit = controller.methods[2].params
    assert (q.name, q.type, q.required) == ("q", "String", False)
    assert (limit.name, limit.type, limit.required) == ("limit", "int", False)


def test_pojo_fields_skip_statics_and_honour_nullable() -> None:
    unit = _parse(
        """
        public class Item {
            private String name;
            @Nullable
            private Integer count = 0;
            private static final long serialVersionUID = 1L;
        }
        """
    )
    fields = unit.types[0].fields
    assert [(item.name, item.type, item.optional) for item in fields] == [
        ("name", "String", False),
        ("count", "Integer", True),
    ]
    assert fields[1].default == "0"


def test_record_components_and_json_property_alias() -> None:
    unit = _parse('public record Point(int x, @JsonProperty("y_coord") int y) {}')
    (decl,) = unit.types
    assert decl.kind == "record"
    assert [(item.name, item.alias) for item in decl.fields] == [("x", None), ("y", "y_coord")]


def test_enum_constants_become_fields() -> None:
    unit = _parse(
        """
        public enum Status {
            ACTIVE("a"), INACTIVE("i");
            private final String code;
            Status(String code) { this.code = code; }
        }
        """
    )
    (decl,) = unit.types
    assert decl.kind == "enum"
    assert [item.name for item in decl.fields] == ["ACTIVE", "INACTIVE"]


def test_jaxrs_resource_routes() -> None:
    unit = _parse(
        """
        @Path("/orders")
        public class OrderResource {
            @GET
            @Path("/{id}")
            public Order find(@PathParam("id") String id) { return null; }

            @POST
            public Response add(Order order) { return null; }
        }
        """
    )
    assert [(fact.method, fact.prefix, fact.path, fact.framework) for fact in unit.routes] == [
        ("GET", "/orders", "/{id}", "jaxrs"),
        ("POST", "/orders", "", "jaxrs"),
    ]


def test_request_mapping_with_method_list() -> None:
    unit = _parse(
        """
        @Controller
        public class PingController {
            @RequestMapping(value = "/ping", method = {RequestMethod.GET, RequestMethod.HEAD})
            public String ping() { return "pong"; }
        }
        """
    )
    assert [(fact.method, fact.path) for fact in unit.routes] == [("GET", "/ping"), ("HEAD", "/ping")]
