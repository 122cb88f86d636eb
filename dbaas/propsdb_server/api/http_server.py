"""
HTTP API for PropsDB.

Routes (under /api/data):

    GET    /app                          all application documents
    GET    /app/{document}               document, ?collections=a,b filter
    GET    /app/{document}/{collection}  one collection
    POST   /app/{document}               set properties        (admin)
    DELETE /app/{document}/{collection}  delete a collection   (admin)
    DELETE /app/{document}               delete properties     (admin)

The same six routes exist under /user; all of them require the user role and
act on the documents owned by the authenticated user.

Invariants:
    - Reads return 204 when the result holds no properties, 404 when nothing matched
    - Error bodies: {status, message, ok: false, timestamp, url, type}
    - Version conflicts are always 409 with versionError: true

How to change safely:
    - Response bodies are consumed by existing clients, only add keys
    - Store calls are blocking; keep route handlers as plain `def`
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..auth import AuthorizerProvider, AuthUser
from ..config import HttpConfig
from ..errors import (
    AuthorizationError,
    InfrastructureError,
    NotFoundError,
    PropsDbError,
    ValidationError,
    VersionConflictError,
)
from ..health import check_health
from ..store import Database, MutationResult, PropertyStore, PropertyTree, Scope
from .models import DeletePropertiesBody, SetPropertiesBody, VersionBody, parse_collections

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cookie_session"
DEFAULT_API_VERSION = "1.0.0"
_API_VERSION_ALIASES = {"1.0": "1.0.0"}
VERSION_ERROR_MESSAGE = "E_VERSION - Refresh and reconcile with current version and retry."


# --- Response helpers ---


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _request_url(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def error_response(
    request: Request,
    status: int,
    message: str,
    error_type: str | None = None,
    **extra: Any,
) -> JSONResponse:
    body: dict[str, Any] = {
        "status": status,
        "message": message,
        "ok": False,
        "timestamp": _timestamp(),
        "url": _request_url(request),
    }
    if error_type:
        body["type"] = error_type
    body.update(extra)
    return JSONResponse(body, status_code=status)


def tree_response(tree: PropertyTree) -> Response:
    if not tree.has_content:
        return Response(status_code=204)
    return JSONResponse(tree.to_dict())


def mutation_response(result: MutationResult) -> JSONResponse:
    return JSONResponse(
        {
            "message": "Success",
            "ok": True,
            "newVersion": str(result.new_version),
            "timestamp": _timestamp(),
            "affectedRows": result.affected_rows,
        }
    )


# --- Dependencies ---


def get_app_store(request: Request) -> PropertyStore:
    return request.app.state.app_store


def get_user_store(request: Request) -> PropertyStore:
    return request.app.state.user_store


async def _authenticate(request: Request, roles: list[str], error_type: str) -> AuthUser:
    provider: AuthorizerProvider = request.app.state.authorizer
    if not provider.initialized:
        redirect_url = request.app.state.redirect_url or f"{request.url.scheme}://{request.url.netloc}"
        try:
            await provider.initialize(redirect_url)
        except InfrastructureError as e:
            raise InfrastructureError(
                f"Failed to initialize authorizer: {e.message}", operation=error_type
            ) from e

    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise AuthorizationError(
            f'Authorizer cookie "{SESSION_COOKIE}" not found', error_type=error_type, roles=roles
        )

    try:
        user = await provider.client.authenticate(token, roles)
    except AuthorizationError as e:
        raise AuthorizationError(e.message, error_type=error_type, roles=roles) from e

    request.state.user = user
    return user


async def require_admin(request: Request) -> AuthUser:
    """Require a session with the admin role."""
    return await _authenticate(request, ["admin"], "data.authorization.admin")


async def require_user(request: Request) -> AuthUser:
    """Require a session with the user role."""
    return await _authenticate(request, ["user"], "data.authorization.user")


# --- Application data routes ---

app_router = APIRouter(prefix="/data/app", tags=["AppData"])


@app_router.get("")
@app_router.get("/", include_in_schema=False)
def get_app_documents(store: PropertyStore = Depends(get_app_store)) -> Response:
    return tree_response(store.get_documents())


@app_router.get("/{document}")
def get_app_collections(
    document: str,
    collections: list[str] | None = Query(None),
    store: PropertyStore = Depends(get_app_store),
) -> Response:
    return tree_response(store.get_collections(document, parse_collections(collections)))


@app_router.get("/{document}/{collection}")
def get_app_properties(
    document: str,
    collection: str,
    store: PropertyStore = Depends(get_app_store),
) -> Response:
    return tree_response(store.get_properties(document, collection))


@app_router.post("/{document}", dependencies=[Depends(require_admin)])
def set_app_properties(
    document: str,
    body: SetPropertiesBody,
    store: PropertyStore = Depends(get_app_store),
) -> JSONResponse:
    return mutation_response(store.set_properties(document, body.version, body.to_inputs()))


@app_router.delete("/{document}/{collection}", dependencies=[Depends(require_admin)])
def delete_app_collection(
    document: str,
    collection: str,
    body: VersionBody,
    store: PropertyStore = Depends(get_app_store),
) -> JSONResponse:
    return mutation_response(store.delete_collection(document, body.version, collection))


@app_router.delete("/{document}", dependencies=[Depends(require_admin)])
def delete_app_properties(
    document: str,
    body: DeletePropertiesBody,
    store: PropertyStore = Depends(get_app_store),
) -> JSONResponse:
    return mutation_response(
        store.delete_properties(
            document, body.version, body.to_inputs(), delete_document=body.delete_document
        )
    )


# --- User data routes ---

user_router = APIRouter(prefix="/data/user", tags=["UserData"])


@user_router.get("")
@user_router.get("/", include_in_schema=False)
def get_user_documents(
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> Response:
    return tree_response(store.get_documents(owner=user.id))


@user_router.get("/{document}")
def get_user_collections(
    document: str,
    collections: list[str] | None = Query(None),
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> Response:
    return tree_response(store.get_collections(document, parse_collections(collections), owner=user.id))


@user_router.get("/{document}/{collection}")
def get_user_properties(
    document: str,
    collection: str,
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> Response:
    return tree_response(store.get_properties(document, collection, owner=user.id))


@user_router.post("/{document}")
def set_user_properties(
    document: str,
    body: SetPropertiesBody,
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> JSONResponse:
    return mutation_response(
        store.set_properties(document, body.version, body.to_inputs(), owner=user.id)
    )


@user_router.delete("/{document}/{collection}")
def delete_user_collection(
    document: str,
    collection: str,
    body: VersionBody,
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> JSONResponse:
    return mutation_response(
        store.delete_collection(document, body.version, collection, owner=user.id)
    )


@user_router.delete("/{document}")
def delete_user_properties(
    document: str,
    body: DeletePropertiesBody,
    user: AuthUser = Depends(require_user),
    store: PropertyStore = Depends(get_user_store),
) -> JSONResponse:
    return mutation_response(
        store.delete_properties(
            document,
            body.version,
            body.to_inputs(),
            delete_document=body.delete_document,
            owner=user.id,
        )
    )


# --- Error handling ---

_STATUS_BY_ERROR: list[tuple[type[PropsDbError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (AuthorizationError, 403),
    (InfrastructureError, 500),
]


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(VersionConflictError)
    async def version_conflict_handler(request: Request, exc: VersionConflictError) -> JSONResponse:
        return error_response(request, 409, VERSION_ERROR_MESSAGE, "version", versionError=True)

    @app.exception_handler(PropsDbError)
    async def propsdb_error_handler(request: Request, exc: PropsDbError) -> JSONResponse:
        status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        if isinstance(exc, AuthorizationError):
            error_type = exc.error_type
        elif isinstance(exc, ValidationError):
            error_type = "data.validation.input"
        elif isinstance(exc, InfrastructureError):
            error_type = exc.operation or "data.infrastructure"
        else:
            error_type = None
        if status >= 500:
            logger.error(f"Request failed: {exc.message}", extra={"url": _request_url(request)})
        return error_response(request, status, exc.message, error_type)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(request, 400, "Invalid input", "data.validation.input")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return error_response(request, 404, "[404] Resource Not Found")
        return error_response(request, exc.status_code, str(exc.detail))


# --- Application factory ---


def create_app(
    app_store: PropertyStore,
    user_store: PropertyStore,
    authorizer: AuthorizerProvider,
    database: Database | None = None,
    redirect_url: str | None = None,
    http: HttpConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        app_store: Store for the application scope
        user_store: Store for the user scope
        authorizer: Provider of the Authorizer client
        database: Database for health checks (defaults to app_store's)
        redirect_url: Authorizer redirect URL (derived from the first request if None)
        http: HTTP configuration (defaults if None)

    Returns:
        Configured FastAPI application
    """
    if app_store.scope is not Scope.APPLICATION or user_store.scope is not Scope.USER:
        raise ValueError("create_app needs an application store and a user store")

    http = http or HttpConfig()
    database = database or app_store.database

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if redirect_url:
            try:
                await authorizer.initialize(redirect_url)
            except InfrastructureError as e:
                logger.warning(f"Authorizer initialization deferred to first request: {e.message}")
        yield
        await authorizer.close()

    app = FastAPI(
        title="PropsDB",
        description="Versioned hierarchical property storage for applications and users.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.app_store = app_store
    app.state.user_store = user_store
    app.state.authorizer = authorizer
    app.state.database = database
    app.state.redirect_url = redirect_url

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(http.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def api_version_middleware(request: Request, call_next):
        version = request.headers.get("X-Api-Version", DEFAULT_API_VERSION)
        request.state.api_version = _API_VERSION_ALIASES.get(version, version)
        response = await call_next(request)
        response.headers["X-Api-Version"] = request.state.api_version
        return response

    @app.middleware("http")
    async def access_log_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "client": request.client.host if request.client else None,
            },
        )
        return response

    _install_error_handlers(app)
    app.include_router(app_router, prefix=http.api_prefix)
    app.include_router(user_router, prefix=http.api_prefix)

    @app.get("/health")
    async def health() -> JSONResponse:
        result = await check_health(database, authorizer)
        return JSONResponse(result, status_code=200 if result["status"] == "healthy" else 503)

    return app
