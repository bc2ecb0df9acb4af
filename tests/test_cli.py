"""CLI behaviour tests."""

from __future__ import annotations

import json

import pytest

from apiscan.cli import _build_parser, main

FLASK_APP = """
from flask import Flask
from pydantic import BaseModel

app = Flask(__name__)


class Item(BaseModel):
    name: str


@app.route("/items/<int:item_id>", methods=["GET", "DELETE"])
def item(item_id):
    return {}
"""


def test_cli_accepts_verbose_before_command() -> None:
    args = _build_parser().parse_args(["--verbose", "scan"])
    assert args.verbose is True
    assert args.command == "scan"
    assert args.path == "."


def test_cli_accepts_verbose_after_command() -> None:
    args = _build_parser().parse_args(["scan", "src", "--verbose"])
    assert args.verbose is True
    assert args.path == "src"


def test_cli_collects_scan_options() -> None:
    args = _build_parser().parse_args(
        ["scan", "repo", "--language", "go", "--language", "ts", "--workers", "3", "--routes-only", "-q"]
    )
    assert args.language == ["go", "ts"]
    assert args.workers == 3
    assert args.routes_only is True
    assert args.quiet is True


def test_routes_only_and_schemas_only_are_exclusive() -> None:
    with pytest.raises(SystemExit) as excinfo:
        _build_parser().parse_args(["scan", "--routes-only", "--schemas-only"])
    assert excinfo.value.code == 2


def test_scan_prints_json_document(repo_builder, capsys) -> None:
    repo_builder.write({"app/main.py": FLASK_APP, "app/empty.py": "VALUE = 1\n"})

    main(["scan", str(repo_builder.path()), "-q"])

    payload = json.loads(capsys.readouterr().out)
    assert [(route["method"], route["path"]) for route in payload["routes"]] == [
        ("GET", "/items/{item_id}"),
        ("DELETE", "/items/{item_id}"),
    ]
    assert payload["routes"][0]["parameters"][0]["name"] == "item_id"
    assert [schema["title"] for schema in payload["schemas"]] == ["Item"]
    assert payload["empty_files"] == ["app/empty.py"]
    assert payload["failed_files"] == []


def test_scan_writes_output_file(repo_builder, tmp_path) -> None:
    repo_builder.write({"app/main.py": FLASK_APP})
    output = tmp_path / "api.json"

    main(["scan", str(repo_builder.path() / "app" / "main.py"), "--schemas-only", "-o", str(output), "-q"])

    payload = json.loads(output.read_text(encoding="utf-8"))
    assert "routes" not in payload
    assert payload["schemas"][0]["properties"] == {"name": {"type": "string"}}


def test_language_filter_limits_scanned_files(repo_builder, capsys) -> None:
    repo_builder.write(
        {
            "app/main.py": FLASK_APP,
            "src/Controllers/PingController.cs": """
                [ApiController]
                [Route("ping")]
                public class PingController : ControllerBase
                {
                    [HttpGet]
                    public string Get() { return "pong"; }
                }
            """,
        }
    )

    main(["scan", str(repo_builder.path()), "--language", "C#", "--routes-only", "-q"])

    payload = json.loads(capsys.readouterr().out)
    assert [(route["method"], route["path"], route["handler"]) for route in payload["routes"]] == [
        ("GET", "/ping", "PingController.Get")
    ]


@pytest.mark.parametrize(
    "extra, message",
    [
        (["--language", "cobol"], "Unsupported language: cobol"),
        (["--workers", "0"], "--workers"),
    ],
)
def test_scan_rejects_bad_options(repo_builder, capsys, extra, message) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["scan", str(repo_builder.path()), "-q", *extra])
    assert excinfo.value.code == 1
    assert message in capsys.readouterr().err


def test_scan_missing_path_exits_with_error(tmp_path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["scan", str(tmp_path / "missing")])
    assert excinfo.value.code == 1
    assert "Path not found" in capsys.readouterr().err


def test_scan_invalid_config_exits_with_error(repo_builder, capsys) -> None:
    repo_builder.write({".apiscan.yml": "workers: -1\n"})

    with pytest.raises(SystemExit) as excinfo:
        main(["scan", str(repo_builder.path())])
    assert excinfo.value.code == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_languages_command_lists_tags(capsys) -> None:
    main(["languages"])

    lines = capsys.readouterr().out.splitlines()
    assert "csharp" in lines
    assert any(line.startswith("rust") for line in lines)
