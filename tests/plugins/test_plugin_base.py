from __future__ import annotations

import pytest

from apiscan.errors import UnsupportedLanguageError
from apiscan.plugins import SCHEMA_REF_PREFIX, available_plugins, get_plugin, infer_tags, operation_id
from tests._fixtures.repo_builder import source


def test_operation_ids_prefer_handler_names() -> None:
    assert operation_id("GET", "/users/{id}", "show") == "getShow"
    assert operation_id("POST", "/users", "create_user") == "postCreate_user"
    assert operation_id("GET", "/users/{id}", "lambda") == "getUsersById"
    assert operation_id("DELETE", "/", "") == "delete"


def test_tags_skip_version_segments_and_params() -> None:
    assert infer_tags("/api/v1/orders/{id}") == ["orders"]
    assert infer_tags("/{tenant}/reports") == ["reports"]
    assert infer_tags("/") == []


def test_plugins_resolve_aliases() -> None:
    assert get_plugin("C#").language == "csharp"
    assert get_plugin("golang", include_private=True).include_private is True
    assert "rust" in available_plugins()
    with pytest.raises(UnsupportedLanguageError):
        get_plugin("fortran")


def test_enum_and_private_schemas() -> None:
    files = [
        source(
            "src/main/java/shop/Status.java",
            "java",
            """
            public enum Status { ACTIVE, INACTIVE }
            """,
        ),
        source(
            "app/models.py",
            "python",
            """
            from pydantic import BaseModel


            class _Audit(BaseModel):
                actor: str
            """,
        ),
    ]
    (status,) = get_plugin("java").extract_schemas(files[:1])
    assert status.to_dict() == {"title": "Status", "type": "string", "enum": ["ACTIVE", "INACTIVE"]}
    assert get_plugin("python").extract_schemas(files[1:]) == []
    (audit,) = get_plugin("python", include_private=True).extract_schemas(files[1:])
    assert audit.title == "_Audit"


def test_schema_for_type_references_same_file_types() -> None:
    plugin = get_plugin("java")
    (file,) = [
        source(
            "src/main/java/shop/Order.java",
            "java",
            """
            public class Order {
                private Long id;
                private List<LineItem> items;
                private Map<String, Integer> counts;
                private Optional<String> note;
            }

            class LineItem {
                private String sku;
            }
            """,
        )
    ]
    unit = plugin.parse(file)
    order = plugin.schema_from_decl(unit.find_type("Order"), unit).to_dict()
    assert order["properties"]["id"] == {"type": "integer", "format": "int64"}
    assert order["properties"]["items"] == {"type": "array", "items": {"$ref": SCHEMA_REF_PREFIX + "LineItem"}}
    assert order["properties"]["counts"] == {
        "type": "object",
        "additionalProperties": {"type": "integer", "format": "int32"},
    }
    assert order["properties"]["note"] == {"type": "string", "nullable": True}
    assert plugin.schema_for_type("Customer", unit).to_dict() == {"title": "Customer", "type": "object"}
