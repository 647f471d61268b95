import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pythonjsonlogger.json import JsonFormatter
from starlette.middleware.cors import CORSMiddleware

from app.core.database_manager import db_manager
from app.core.exceptions import RegistrationError
from app.core.settings import get_settings
from app.middleware.monitoring import RequestLoggingMiddleware, get_health_status

from .api.api import api_router
from .api.openapi_tags import security_schemes, tags_metadata

settings = get_settings()

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    **Rollcall** manages who gets a seat at an event.

    ## Features

    * **Registration with capacity**: attendees register until the event is full, then join a waitlist
    * **Waitlist promotion**: a cancelled seat goes to the first person in line, automatically
    * **Check-in by code**: every registration carries a short code; scanning it twice is safe
    * **Batch operations**: cancel, check in or promote many registrations in one all-or-nothing step

    ## Authentication

    Endpoints require a JWT Bearer token whose `sub` claim is the user id:

    ```
    Authorization: Bearer <your_jwt_token>
    ```
    """,
    version=settings.VERSION,
    debug=settings.DEBUG,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    swagger_ui_parameters={
        "defaultModelsExpandDepth": -1,
        "docExpansion": "list",
        "filter": True,
    },
)

# Configure structured logging
log_handler = logging.StreamHandler()
formatter = JsonFormatter(
    "%(levelname)s %(asctime)s %(message)s %(name)s %(processName)s "
    "%(filename)s %(lineno)d",
    rename_fields={
        "levelname": "level",
        "asctime": "time",
        "name": "loggerName",
        "filename": "fileName",
        "lineno": "lineNumber",
    },
)
log_handler.setFormatter(formatter)
logging.basicConfig(handlers=[log_handler], level=settings.monitoring.LOG_LEVEL)
logger = logging.getLogger(__name__)
logger.info("Application logging configured.")

app.add_middleware(RequestLoggingMiddleware)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(RegistrationError)  # type: ignore[misc]
async def registration_error_handler(
    request: Request, exc: RegistrationError
) -> JSONResponse:
    logger.warning(
        "Registration request rejected: %s",
        exc.message,
        extra={"code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_dict()),
    )


@app.exception_handler(HTTPException)  # type: ignore[misc]
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(
        "HTTPException occurred: %s",
        exc.detail,
        extra={"status_code": exc.status_code, "headers": exc.headers},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)  # type: ignore[misc]
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception occurred: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error"},
    )


def custom_openapi() -> Dict[str, Any]:
    """OpenAPI schema with tag docs and the bearer scheme on protected routes"""
    if app.openapi_schema:
        return cast(Dict[str, Any], app.openapi_schema)

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=tags_metadata,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = security_schemes

    for path_item in openapi_schema["paths"].values():
        for method_item in path_item.values():
            if isinstance(method_item, dict) and "tags" in method_item:
                if "Health" not in method_item.get("tags", []):
                    method_item["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return cast(Dict[str, Any], app.openapi_schema)


app.openapi = custom_openapi  # type: ignore[method-assign]


@app.get(
    settings.monitoring.HEALTH_CHECK_PATH, tags=["Health"], summary="Health Check"
)  # type: ignore[misc]
async def health_check() -> JSONResponse:
    """
    Liveness plus database health. Answers 503 when the database is down.
    """
    result = await get_health_status()
    status_code = (
        status.HTTP_200_OK
        if result["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=result)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})")

    db_health = await db_manager.health_check()
    if db_health.get("status") == "healthy":
        logger.info("Database connection verified")
    else:
        logger.warning(f"Database health check failed: {db_health.get('message')}")

    try:
        yield
    finally:
        await db_manager.close()
        logger.info("Database connections closed")


# Attach lifespan handler
app.router.lifespan_context = lifespan
