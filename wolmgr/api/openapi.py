# wolmgr/api/openapi.py
"""
OpenAPI documentation of the task API.

The generated schema is post-processed: tag descriptions, the two token
schemes, a security requirement per operation derived from the auth
dependency the route actually uses, and request/response examples.
With API_DOCS_VISIBILITY=private the documentation routes themselves
require an agent token.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.dependencies.models import Dependant
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from wolmgr.__version__ import __author__, __email__, __version__
from wolmgr.core.auth import require_user, resolve_principal, verify_openapi_token, verify_token

_TAGS = [
    {"name": "API", "description": "Service metadata, health and identity"},
    {
        "name": "Task",
        "description": "Wake task creation, claiming, status updates and notifications",
    },
    {"name": "Device", "description": "Saved devices of the authenticated principal"},
]

_SECURITY_SCHEMES = {
    "AgentToken": {
        "type": "apiKey",
        "in": "header",
        "name": "X-API-Token",
        "description": "Agent token (AUTHORIZED_TOKENS) in the X-API-Token header",
    },
    "Bearer": {
        "type": "http",
        "scheme": "bearer",
        "description": "Agent or user token as Authorization: Bearer <token>",
    },
}

# Auth dependency -> security requirement; the first match wins.
# An empty requirement ({}) marks the token as optional.
_SECURITY_BY_DEPENDENCY: List[tuple] = [
    (require_user, [{"Bearer": []}]),
    (verify_token, [{"AgentToken": []}, {"Bearer": []}]),
    (resolve_principal, [{"Bearer": []}, {"AgentToken": []}, {}]),
]

_SCHEMA_EXAMPLES: Dict[str, Dict[str, Any]] = {
    "Task": {
        "id": "3f1c7a52-9a0e-4c43-8d5e-0c2f1d8b7e11",
        "macAddress": "AA:BB:CC:DD:EE:FF",
        "status": "processing",
        "createdAt": 1718000000000,
        "updatedAt": 1718000004200,
        "attempts": 1,
    },
    "TaskCreateRequest": {"macAddress": "aa-bb-cc-dd-ee-ff"},
    "TaskStatusUpdate": {"id": "3f1c7a52-9a0e-4c43-8d5e-0c2f1d8b7e11", "status": "success"},
    "NotifyRequest": {"macAddress": "AA:BB:CC:DD:EE:FF"},
    "ClaimRequest": {"limit": 10},
    "DeviceCreateRequest": {"name": "NAS", "macAddress": "AA:BB:CC:DD:EE:01"},
}

_SWAGGER_JS = "https://cdn.jsdelivr.net/npm/swagger-ui-dist@5/swagger-ui-bundle.js"
_SWAGGER_CSS = "https://cdn.jsdelivr.net/npm/swagger-ui-dist@5/swagger-ui.css"
_REDOC_JS = "https://cdn.jsdelivr.net/npm/redoc@2/bundles/redoc.standalone.js"


def _dependency_calls(dependant: Dependant) -> Iterator[Callable]:
    for sub in dependant.dependencies:
        if sub.call is not None:
            yield sub.call
        yield from _dependency_calls(sub)


def _iter_api_routes(routes: Iterable[Any]) -> Iterator[APIRoute]:
    """APIRoutes of the application, including those of nested routers."""
    for route in routes:
        if isinstance(route, APIRoute):
            yield route
            continue
        # Mounts expose ``routes``; included routers may be wrapped
        nested = getattr(route, "routes", None)
        if nested is None:
            nested = getattr(getattr(route, "original_router", None), "routes", None)
        if nested:
            yield from _iter_api_routes(nested)


def _route_security(route: APIRoute) -> Optional[List[Dict]]:
    calls = list(_dependency_calls(route.dependant))
    for dependency, requirement in _SECURITY_BY_DEPENDENCY:
        if dependency in calls:
            return requirement
    return None


def _apply_security(openapi_schema: Dict, routes: List[Any]) -> None:
    openapi_schema.setdefault("components", {})["securitySchemes"] = _SECURITY_SCHEMES

    paths = openapi_schema.get("paths", {})
    for route in _iter_api_routes(routes):
        if route.path not in paths:
            continue
        requirement = _route_security(route)
        if requirement is None:
            continue
        for method in route.methods:
            operation = paths[route.path].get(method.lower())
            if operation is not None:
                operation["security"] = requirement


def _apply_examples(openapi_schema: Dict) -> None:
    schemas = openapi_schema.setdefault("components", {}).setdefault("schemas", {})
    for name, example in _SCHEMA_EXAMPLES.items():
        if name in schemas:
            schemas[name]["example"] = example


def custom_openapi(app: FastAPI) -> Callable[[], Dict]:
    """
    Build the ``app.openapi`` replacement.

    The schema is generated once and cached on the application.
    """

    def _custom_openapi() -> Dict:
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            contact=app.contact,
            license_info=app.license_info,
        )
        openapi_schema["tags"] = _TAGS
        _apply_security(openapi_schema, app.routes)
        _apply_examples(openapi_schema)

        app.openapi_schema = openapi_schema
        return openapi_schema

    return _custom_openapi


def setup_openapi_config(app: FastAPI) -> None:
    """Install the customised schema generator on ``app``."""
    app.openapi = custom_openapi(app)  # type: ignore[method-assign]


def setup_protected_openapi_routes(app: FastAPI) -> None:
    """
    Serve /docs, /redoc and /openapi.json behind :func:`verify_openapi_token`.

    The application must have been created with its default documentation
    routes disabled.
    """
    schema_url = app.openapi_url or OpenAPIConfig.OPENAPI_URL
    app.openapi_url = schema_url

    def _schema_link(token: Optional[str]) -> str:
        # Browsers cannot add headers to the schema fetch done by the UI
        return f"{schema_url}?token={token}" if token else schema_url

    @app.get(OpenAPIConfig.DOCS_URL, include_in_schema=False)
    async def protected_swagger_ui(
        request: Request, token: Optional[str] = Depends(verify_openapi_token)
    ):
        return get_swagger_ui_html(
            openapi_url=_schema_link(token),
            title=f"{app.title} - Swagger UI",
            oauth2_redirect_url=app.swagger_ui_oauth2_redirect_url,
            swagger_js_url=_SWAGGER_JS,
            swagger_css_url=_SWAGGER_CSS,
        )

    @app.get(OpenAPIConfig.REDOC_URL, include_in_schema=False)
    async def protected_redoc(
        request: Request, token: Optional[str] = Depends(verify_openapi_token)
    ):
        return get_redoc_html(
            openapi_url=_schema_link(token),
            title=f"{app.title} - ReDoc",
            redoc_js_url=_REDOC_JS,
        )

    @app.get(schema_url, include_in_schema=False)
    async def protected_openapi_schema(
        request: Request, token: Optional[str] = Depends(verify_openapi_token)
    ):
        return JSONResponse(app.openapi())


class OpenAPIConfig:
    """Metadata handed to the FastAPI constructor."""

    TITLE = "Wake-on-LAN Task API"
    DESCRIPTION = """
## Wake-on-LAN Task API

Queue of "wake this device" requests shared between clients and waking agents:

* **Create tasks** - enqueue a wake request for a MAC address
* **Claim tasks** - agents atomically take a batch of pending tasks
* **Report outcomes** - explicit status updates or a device-observed notification
* **Saved devices** - remember MAC addresses per principal and wake them in one call

### Tokens

Agents send a token from `AUTHORIZED_TOKENS` in the `X-API-Token` header
(or `Authorization: Bearer`). User tokens (`USER_TOKENS`) identify the owning
principal of tasks and devices.
"""
    OPENAPI_URL = "/openapi.json"
    DOCS_URL = "/docs"
    REDOC_URL = "/redoc"

    @classmethod
    def get_fastapi_config(cls) -> Dict:
        return {
            "title": cls.TITLE,
            "description": cls.DESCRIPTION,
            "version": __version__,
            "contact": {"name": __author__, "email": __email__},
            "license_info": {
                "name": "GNU Lesser General Public License v3.0",
                "url": "https://www.gnu.org/licenses/lgpl-3.0.en.html",
            },
            "openapi_url": cls.OPENAPI_URL,
            "docs_url": cls.DOCS_URL,
            "redoc_url": cls.REDOC_URL,
        }
