"""Tests for the Haskell (Servant) backend."""

from __future__ import annotations

from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent

SOURCE = """
module Api where

import Servant
import qualified Data.Text as T

data User = User
  { userId :: Int
  , userName :: T.Text
  , userEmail :: Maybe Text
  } deriving (Generic, Show)

data Color = Red | Green | Blue

type UserAPI =
       "users" :> QueryParam "sort" Text :> Get '[JSON] [User]
  :<|> "users" :> Capture "id" Int :> Get '[JSON] User
  :<|> "users" :> ReqBody '[JSON] User :> Post '[JSON] User

server :: Server UserAPI
server = listUsers :<|> getUser :<|> createUser
"""


def _parse(code: str = SOURCE):
    return get_backend("haskell").parse("src/Api.hs", dedent(code))


def test_record_and_enum_data_types() -> None:
    unit = _parse()
    assert unit.imports == ["Servant", "Data.Text"]
    user, color = unit.types
    assert [(item.name, item.type, item.optional) for item in user.fields] == [
        ("userId", "Int", False),
        ("userName", "T.Text", False),
        ("userEmail", "Maybe Text", True),
    ]
    assert (color.name, color.kind) == ("Color", "enum")


def test_servant_api_type_uses_server_binding_names() -> None:
    unit = _parse()
    assert [(fact.method, fact.path, fact.handler, fact.owner) for fact in unit.routes] == [
        ("GET", "/users", "listUsers", "UserAPI"),
        ("GET", "/users/{id}", "getUser", "UserAPI"),
        ("POST", "/users", "createUser", "UserAPI"),
    ]
    list_users, get_user, create_user = unit.functions
    (sort,) = list_users.params
    assert (sort.name, sort.type, sort.required) == ("sort", "Text", False)
    assert sort.annotations[0].name == "QueryParam"
    assert list_users.return_type == "[User]"
    assert [(param.name, param.type) for param in get_user.params] == [("id", "Int")]
    (body,) = create_user.params
    assert (body.type, body.annotations[0].name) == ("User", "ReqBody")


def test_handler_names_fall_back_to_operation_names() -> None:
    unit = _parse(
        """
        type HealthAPI = "health" :> Get '[JSON] Text
        """
    )
    (route,) = unit.routes
    assert (route.method, route.path, route.handler) == ("GET", "/health", "getHealth")
