"""Behaviour shared by every pattern-table backend."""

from __future__ import annotations

import pytest

from apiscan.parsers import get_backend
from apiscan.parsers.base import RegexBackend
from tests._fixtures.repo_builder import dedent

UNTERMINATED = [
    ("csharp", "Broken.cs", "class Broken {"),
    ("java", "Broken.java", "class Broken {"),
    ("kotlin", "Broken.kt", "class Broken {"),
    ("scala", "Broken.scala", "class Broken {"),
    ("swift", "Broken.swift", "class Broken {"),
    ("php", "Broken.php", "<?php\nclass Broken {"),
    ("cpp", "broken.h", "class Broken {"),
    ("ruby", "broken.rb", "class Broken\n"),
    ("elixir", "broken.ex", "defmodule Broken do\n"),
    ("gleam", "broken.gleam", "pub type Broken {\n"),
    ("haskell", "Broken.hs", "data Broken = Broken {\n"),
]

SINGLE_FIELD = [
    ("java", "User.java", "public class User {\n    private String name;\n}\n", "String"),
    ("kotlin", "User.kt", "data class User(val name: String)\n", "String"),
    ("scala", "User.scala", "case class User(name: String)\n", "String"),
    ("swift", "User.swift", "struct User {\n    var name: String\n}\n", "String"),
    ("php", "User.php", "<?php\nclass User\n{\n    public string $name;\n}\n", "string"),
    ("cpp", "user.h", "struct User {\n    std::string name;\n};\n", "std::string"),
    ("ruby", "user.rb", "class User\n  attribute :name, :string\nend\n", ":string"),
    (
        "elixir",
        "user.ex",
        """
        defmodule User do
          use Ecto.Schema

          schema "users" do
            field :name, :string
          end
        end
        """,
        ":string",
    ),
    ("gleam", "user.gleam", "pub type User {\n  User(name: String)\n}\n", "String"),
    ("haskell", "User.hs", "data User = User { name :: Text }\n", "Text"),
]


@pytest.mark.parametrize("language, filename, code", UNTERMINATED, ids=[item[0] for item in UNTERMINATED])
def test_unterminated_body_keeps_the_type_name(language: str, filename: str, code: str) -> None:
    backend = get_backend(language)
    assert isinstance(backend, RegexBackend)

    unit = backend.parse(filename, code)

    assert [(decl.name, decl.fields) for decl in unit.types] == [("Broken", [])]


@pytest.mark.parametrize(
    "language, filename, code, raw_type", SINGLE_FIELD, ids=[item[0] for item in SINGLE_FIELD]
)
def test_single_field_is_recovered_verbatim(language: str, filename: str, code: str, raw_type: str) -> None:
    unit = get_backend(language).parse(filename, dedent(code))

    (decl,) = unit.types
    assert decl.name == "User"
    assert [(item.name, item.type) for item in decl.fields] == [("name", raw_type)]
