"""Tests for the tree-sitter TypeScript backend (Express, NestJS, Elysia, Zod)."""

from __future__ import annotations

import pytest

from apiscan.parsers import TREE_SITTER_AVAILABLE, get_backend
from tests._fixtures.repo_builder import dedent

pytestmark = pytest.mark.skipif(not TREE_SITTER_AVAILABLE, reason="tree-sitter grammars not installed")

EXPRESS_APP = """
import express from "express";
import { z } from "zod";

export interface User {
  id: number;
  name?: string;
  tags: string[];
}

export const CreateUser = z.object({
  name: z.string(),
  age: z.number().optional(),
  email: z.string().email(),
  nickname: z.string().min(1).optional(),
  address: AddressSchema.optional(),
});

const router = express.Router();
router.get("/users/:id", getUser);
router.post("/users", async (req, res) => { res.json({}); });
app.use("/api", router);

export async function getUser(req: Request, res: Response): Promise<void> {}
"""


def _parse(code: str, filename: str = "src/app.ts"):
    return get_backend("typescript").parse(filename, dedent(code))


def test_interfaces_and_zod_objects() -> None:
    unit = _parse(EXPRESS_APP)
    assert unit.imports == ["express", "zod"]
    user, create = unit.types
    assert (user.name, user.kind) == ("User", "interface")
    assert [(item.name, item.type, item.optional) for item in user.fields] == [
        ("id", "number", False),
        ("name", "string", True),
        ("tags", "string[]", False),
    ]
    assert (create.name, create.kind) == ("CreateUser", "zod")
    assert [(item.name, item.type, item.optional) for item in create.fields] == [
        ("name", "string", False),
        ("age", "number", True),
        ("email", "string", False),
        ("nickname", "string", True),
        ("address", "Address", True),
    ]


def test_express_routes_use_mount_prefixes() -> None:
    unit = _parse(EXPRESS_APP)
    assert [(fact.method, fact.prefix, fact.path, fact.handler, fact.framework) for fact in unit.routes] == [
        ("GET", "/api", "/users/:id", "getUser", "express"),
        ("POST", "/api", "/users", "lambda", "express"),
    ]
    (function,) = [item for item in unit.functions if item.name == "getUser"]
    assert (function.is_async, function.return_type) == (True, "Promise<void>")
    assert [(param.name, param.type) for param in function.params] == [("req", "Request"), ("res", "Response")]


def test_nestjs_controller_decorators() -> None:
    unit = _parse(
        """
        import { Body, Controller, Get, Param, Post } from "@nestjs/common";

        @Controller("cats")
        export class CatsController {
          @Get(":id")
          findOne(@Param("id") id: string): Cat {
            return null;
          }

          @Post()
          create(@Body() dto: CreateCatDto) {}
        }
        """,
        filename="src/cats/cats.controller.ts",
    )
    (controller,) = unit.types
    assert [annotation.name for annotation in controller.annotations] == ["Controller"]
    find_one, create = controller.methods
    assert find_one.return_type == "Cat"
    assert [annotation.name for annotation in create.params[0].annotations] == ["Body"]
    assert [(fact.method, fact.prefix, fact.path, fact.handler, fact.owner) for fact in unit.routes] == [
        ("GET", "cats", ":id", "findOne", "CatsController"),
        ("POST", "cats", "", "create", "CatsController"),
    ]
    assert {fact.framework for fact in unit.routes} == {"nestjs"}


def test_elysia_chains_groups_and_prefix_option() -> None:
    unit = _parse(
        """
        import { Elysia, t } from "elysia";

        const users = new Elysia({ prefix: "/users" })
          .get("/", listUsers)
          .post("/", ({ body }) => body, { body: t.Object({ name: t.String() }) });

        new Elysia()
          .get("/health", () => "ok")
          .group("/api", (app) => app.get("/items/:id", getItem).delete("/items/:id", deleteItem))
          .listen(3000);

        users.get("/:id", getUser);
        """,
        filename="src/server.ts",
    )
    assert [(fact.method, fact.prefix, fact.path, fact.handler) for fact in unit.routes] == [
        ("POST", "/users", "/", "lambda"),
        ("GET", "/users", "/", "listUsers"),
        ("GET", "", "/health", "lambda"),
        ("DELETE", "/api", "/items/:id", "deleteItem"),
        ("GET", "/api", "/items/:id", "getItem"),
        ("GET", "/users", "/:id", "getUser"),
    ]
    assert {fact.framework for fact in unit.routes} == {"elysia"}


def test_elysia_ignores_calls_on_other_receivers() -> None:
    unit = _parse(
        """
        import { Elysia } from "elysia";

        const app = new Elysia();
        app.get("/ping", () => "pong");
        cache.get("/ping", fallback);
        """,
        filename="src/app.ts",
    )
    assert [(fact.method, fact.path) for fact in unit.routes] == [("GET", "/ping")]
