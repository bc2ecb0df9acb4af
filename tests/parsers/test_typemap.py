from __future__ import annotations

import pytest

from apiscan.models import TypeKind
from apiscan.parsers.java import TYPES as JAVA_TYPES
from apiscan.parsers.typemap import TypeTable, format_table


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("final int", ("integer", "int32")),
        ("Optional<Long>", ("integer", "int64")),
        ("ResponseEntity<List<User>>", ("array", "")),
        ("Map<String, Integer>", ("object", "")),
        ("String...", ("array", "")),
        ("byte[]", ("string", "binary")),
        ("void", ("", "")),
        ("User", ("object", "")),
        ("", ("object", "")),
    ],
)
def test_java_type_mapping(raw: str, expected: tuple) -> None:
    assert JAVA_TYPES.map_type(raw) == expected


def test_classify_shapes() -> None:
    assert JAVA_TYPES.classify("List<String>").element_type == "String"
    mapping = JAVA_TYPES.classify("Map<String, List<Integer>>")
    assert (mapping.kind, mapping.key_type, mapping.element_type) == (TypeKind.MAP, "String", "List<Integer>")
    assert JAVA_TYPES.classify("LocalDate").kind is TypeKind.TIME
    optional = JAVA_TYPES.classify("Optional<User>")
    assert (optional.kind, optional.optional) == (TypeKind.OPTIONAL, True)
    assert JAVA_TYPES.classify("User").kind is TypeKind.AGGREGATE
    assert JAVA_TYPES.classify("   ").kind is TypeKind.UNKNOWN


def test_union_nulls_count_as_optional() -> None:
    table = TypeTable({"string": ("string", "")}, union_nulls=("null", "undefined"))
    assert table.map_type("string | null") == ("string", "")
    assert table.classify("string | undefined").optional is True
    assert table.strip_optional("null") == ("null", False)


def test_bracket_literals_and_nullable_suffixes() -> None:
    table = TypeTable(
        {"String": ("string", ""), "Int": ("integer", "")},
        nullable_suffixes=("?",),
        bracket_literals=True,
    )
    sequence = table.classify("[String]")
    assert (sequence.kind, sequence.element_type) == (TypeKind.SEQUENCE, "String")
    mapping = table.classify("[String: Int]")
    assert (mapping.kind, mapping.key_type, mapping.element_type) == (TypeKind.MAP, "String", "Int")
    assert table.map_type("String?") == ("string", "")
    assert table.map_type("(Int)") == ("integer", "")


def test_format_table_inverts_groups() -> None:
    assert format_table({("integer", "int32"): ["int", "Int32"], ("string", ""): ["str"]}) == {
        "int": ("integer", "int32"),
        "Int32": ("integer", "int32"),
        "str": ("string", ""),
    }
