"""Tests for apiscan.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from apiscan.config import ApiscanConfig, ConfigError, load_config


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, ApiscanConfig)
    assert config.root == tmp_path.resolve()
    assert config.languages == []
    assert config.exclude_paths == []
    assert config.workers == 4
    assert config.include_private is False
    assert config.allows("rust")


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    config_file = tmp_path / ".apiscan.yml"
    config_file.write_text(
        """
languages: [C#, golang, python]
exclude_paths:
  - "vendor/"
  - "*.generated.cs"
workers: 2
include_private: true
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.languages == ["csharp", "go", "python"]
    assert config.exclude_paths == ["vendor/", "*.generated.cs"]
    assert config.workers == 2
    assert config.include_private is True
    assert config.allows("go")
    assert not config.allows("java")


def test_single_string_is_accepted_as_a_list(tmp_path: Path) -> None:
    (tmp_path / ".apiscan.yml").write_text("exclude_paths: build/\n", encoding="utf-8")

    assert load_config(tmp_path).exclude_paths == ["build/"]


def test_empty_file_yields_defaults(tmp_path: Path) -> None:
    (tmp_path / ".apiscan.yml").write_text("\n# nothing here\n", encoding="utf-8")

    assert load_config(tmp_path).workers == 4


@pytest.mark.parametrize(
    "content, message",
    [
        ("- just\n- a list\n", "mapping"),
        ("workers: 0\n", "workers"),
        ("workers: two\n", "workers"),
        ("workers: true\n", "workers"),
        ("include_private: yes please\n", "include_private"),
        ("languages: [1, 2]\n", "languages"),
        ("languages: [python\n", "Failed to parse"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str, message: str) -> None:
    (tmp_path / ".apiscan.yml").write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert message in str(excinfo.value)
