"""OpenAPI schema customisation and private documentation routes."""

import pytest
from fastapi import APIRouter, Depends, FastAPI
from fastapi.testclient import TestClient

from wolmgr.api.openapi import OpenAPIConfig, setup_openapi_config, setup_protected_openapi_routes
from wolmgr.core.auth import require_user, resolve_principal, verify_token
from wolmgr.core.config import config

OPENAPI_ROUTES = ("/docs", "/redoc", "/openapi.json")


@pytest.fixture
def private_app(monkeypatch):
    monkeypatch.setattr(config, "API_DOCS_VISIBILITY", "private")
    fastapi_config = OpenAPIConfig.get_fastapi_config()
    fastapi_config.update(docs_url=None, redoc_url=None, openapi_url=None)
    app = FastAPI(**fastapi_config)

    @app.get("/api/ping", tags=["API"])
    async def ping():
        return {"ok": True}

    @app.get("/api/secret", tags=["API"], dependencies=[Depends(verify_token)])
    async def secret():
        return {"ok": True}

    setup_openapi_config(app)
    setup_protected_openapi_routes(app)
    return app


@pytest.mark.parametrize("route", OPENAPI_ROUTES)
def test_private_docs_require_agent_token(private_app, agent_headers, alice_headers, route):
    client = TestClient(private_app)

    assert client.get(route).status_code == 401
    assert client.get(route, headers=alice_headers).status_code == 401
    assert client.get(route, headers={"X-API-Token": "wrong"}).status_code == 401
    assert client.get(route, headers=agent_headers).status_code == 200


def test_query_token_only_when_allowed(private_app, monkeypatch):
    client = TestClient(private_app)

    monkeypatch.setattr(config, "OPENAPI_ALLOW_QUERY_TOKEN", False)
    assert client.get("/openapi.json?token=test-token").status_code == 401

    monkeypatch.setattr(config, "OPENAPI_ALLOW_QUERY_TOKEN", True)
    assert client.get("/openapi.json?token=test-token").status_code == 200


def test_custom_schema_has_tags_and_security(private_app, agent_headers):
    schema = TestClient(private_app).get("/openapi.json", headers=agent_headers).json()

    assert schema["info"]["title"] == "Wake-on-LAN Task API"
    assert schema["info"]["license"]["name"].startswith("GNU Lesser")
    assert [tag["name"] for tag in schema["tags"]] == ["API", "Task", "Device"]
    assert set(schema["components"]["securitySchemes"]) == {"Bearer", "AgentToken"}
    assert "security" not in schema["paths"]["/api/ping"]["get"]
    assert schema["paths"]["/api/secret"]["get"]["security"] == [
        {"AgentToken": []},
        {"Bearer": []},
    ]


def test_public_app_schema_has_task_examples(client):
    schemas = client.get("/openapi.json").json()["components"]["schemas"]

    assert schemas["TaskCreateRequest"]["example"] == {"macAddress": "aa-bb-cc-dd-ee-ff"}
    assert schemas["Task"]["example"]["status"] == "processing"


def test_security_follows_route_dependencies(client):
    paths = client.get("/openapi.json").json()["paths"]

    assert paths["/api/wol/tasks/claim"]["post"]["security"] == [
        {"AgentToken": []},
        {"Bearer": []},
    ]
    assert paths["/api/devices"]["get"]["security"] == [{"Bearer": []}]
    assert {} in paths["/api/wol/tasks"]["get"]["security"]
    assert "security" not in paths["/"]["get"]


def test_security_of_included_and_nested_routers():
    inner = APIRouter(prefix="/api/devices")

    @inner.get("")
    async def devices(user=Depends(require_user)):
        return []

    outer = APIRouter()

    @outer.get("/api/me")
    async def me(principal=Depends(resolve_principal)):
        return {}

    outer.include_router(inner)

    app = FastAPI(**OpenAPIConfig.get_fastapi_config())
    app.include_router(outer)
    setup_openapi_config(app)

    paths = TestClient(app).get("/openapi.json").json()["paths"]

    assert paths["/api/devices"]["get"]["security"] == [{"Bearer": []}]
    assert paths["/api/me"]["get"]["security"] == [{"Bearer": []}, {"AgentToken": []}, {}]


def test_operations_only_reference_published_schemes(client):
    schema = client.get("/openapi.json").json()
    published = set(schema["components"]["securitySchemes"])

    referenced = {
        name
        for operations in schema["paths"].values()
        for operation in operations.values()
        for requirement in operation.get("security", [])
        for name in requirement
    }
    assert referenced
    assert referenced <= published
