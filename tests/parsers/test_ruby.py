"""Tests for the Ruby backend (Rails routes, Sinatra, classes)."""

from __future__ import annotations

from apiscan.parsers import get_backend
from tests._fixtures.repo_builder import dedent


def _parse(code: str, filename: str = "config/routes.rb"):
    return get_backend("ruby").parse(filename, dedent(code))


def test_rails_routes_draw_block() -> None:
    unit = _parse(
        """
        Rails.application.routes.draw do
          root "pages#home"
          get "/health", to: "status#show"
          resources :users, only: [:index, :show] do
            resources :posts
            member do
              post :archive
            end
          end
          namespace :admin do
            resources :reports, except: %i[destroy]
          end
        end
        """
    )
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "", "/", "pages", "home"),
        ("GET", "", "/health", "status", "show"),
        ("POST", "/users/{id}", "archive", "users", "archive"),
    ]
    assert all(fact.framework == "rails" for fact in unit.routes)
    assert [
        (resource.path, resource.controller, resource.only, resource.except_, resource.prefix)
        for resource in unit.resources
    ] == [
        ("users", "users", ["index", "show"], [], ""),
        ("posts", "posts", [], [], "/users/{user_id}"),
        ("reports", "admin/reports", [], ["destroy"], "/admin"),
    ]


def test_rails_route_modifiers_do_not_leak_into_targets() -> None:
    unit = _parse(
        """
        Rails.application.routes.draw do
          get '/health', to: 'status#health' if ENV['X']
          get("/ready", to: "status#ready") unless Rails.env.test?
        end
        """
    )
    assert [(fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("/health", "status", "health"),
        ("/ready", "status", "ready"),
    ]


def test_classes_methods_and_visibility() -> None:
    unit = _parse(
        """
        require "json"

        module Api
          class UsersController < ApplicationController
            attr_reader :current_user

            def index
              render json: User.all
            end

            def show(id, format: nil)
              if id
                render json: User.find(id)
              end
            end

            private

            def helper
              nil
            end
          end
        end
        """,
        filename="app/controllers/api/users_controller.rb",
    )
    assert unit.imports == ["json"]
    assert unit.functions == []
    assert unit.routes == []
    (controller,) = unit.types
    assert (controller.name, controller.namespace, controller.bases) == (
        "UsersController",
        "Api",
        ["ApplicationController"],
    )
    assert [item.name for item in controller.fields] == ["current_user"]
    assert [(method.name, method.visibility) for method in controller.methods] == [
        ("index", "public"),
        ("show", "public"),
        ("helper", "private"),
    ]
    identifier, fmt = controller.methods[1].params
    assert (identifier.name, identifier.required) == ("id", True)
    assert (fmt.name, fmt.required, fmt.default) == ("format", False, "nil")


def test_sinatra_routes() -> None:
    unit = _parse(
        """
        require 'sinatra'

        get '/hi' do
          'Hello'
        end

        namespace '/api' do
          post '/items' do
            status 201
          end
        end

        class App < Sinatra::Base
          get '/' do
            'ok'
          end
        end
        """,
        filename="app.rb",
    )
    assert [(fact.method, fact.prefix, fact.path, fact.owner, fact.handler) for fact in unit.routes] == [
        ("GET", "", "/hi", None, "lambda"),
        ("POST", "/api", "/items", None, "lambda"),
        ("GET", "", "/", "App", "lambda"),
    ]
    assert {fact.framework for fact in unit.routes} == {"sinatra"}
