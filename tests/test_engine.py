"""Tests for apiscan.engine."""

from __future__ import annotations

from apiscan.config import ApiscanConfig
from apiscan.engine import ExtractionEngine
from apiscan.models import SourceFile
from tests._fixtures.repo_builder import source


def _flask_file(index: int) -> SourceFile:
    return source(
        f"app/views_{index:02d}.py",
        "python",
        f"""
        from flask import Flask

        app = Flask(__name__)


        @app.route("/items/{index}")
        def item_{index}():
            return "ok"
        """,
    )


def test_empty_and_failed_files_are_reported() -> None:
    files = [
        source("app/constants.py", "python", "TIMEOUT = 30\n"),
        source("app/broken.py", "python", "def broken(:\n"),
        source("legacy/main.cob", "cobol", "IDENTIFICATION DIVISION.\n"),
        _flask_file(1),
    ]

    result = ExtractionEngine(ApiscanConfig(workers=1)).run(files)

    assert [route.path for route in result.routes] == ["/items/1"]
    assert result.empty == ["app/constants.py"]
    assert [failure.path for failure in result.failed] == ["legacy/main.cob", "app/broken.py"]
    assert "cobol" in result.failed[0].error
    assert result.failed[1].error.startswith("app/broken.py:")


def test_worker_pool_keeps_input_order() -> None:
    files = [_flask_file(index) for index in range(12)]

    result = ExtractionEngine(ApiscanConfig(), workers=4).run(files)

    assert [route.path for route in result.routes] == [f"/items/{index}" for index in range(12)]
    assert [route.handler for route in result.routes][:2] == ["item_0", "item_1"]
    assert result.failed == []


def test_plugins_are_shared_per_language() -> None:
    engine = ExtractionEngine()

    assert engine.plugin_for("python") is engine.plugin_for("python")
    assert engine.workers == 4


def test_play_routes_are_prepared_across_the_batch() -> None:
    files = [
        source("conf/routes", "scala", "->  /v2  v2.Routes\n"),
        source("conf/v2.routes", "scala", "GET  /orders/:id  controllers.v2.Orders.show(id: Long)\n"),
    ]

    result = ExtractionEngine().run(files)

    assert [(route.method, route.path) for route in result.routes] == [("GET", "/v2/orders/{id}")]
    assert result.empty == []


def test_result_payload_respects_output_selection() -> None:
    result = ExtractionEngine().run(
        [
            _flask_file(1),
            source(
                "app/models.py",
                "python",
                """
                from pydantic import BaseModel


                class Item(BaseModel):
                    name: str
                """,
            ),
        ]
    )

    payload = result.to_dict(schemas=False)
    assert sorted(payload) == ["empty_files", "failed_files", "routes"]
    assert payload["routes"][0]["operationId"] == "getItem_1"
    assert [schema["title"] for schema in result.to_dict(routes=False)["schemas"]] == ["Item"]
