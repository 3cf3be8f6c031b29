"""FastAPI application for the DevContext sync server."""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from devcontext import __version__
from devcontext.server.config import ServerSettings, get_settings
from devcontext.server.db import ServerStore
from devcontext.server.rate_limit import limiter, rate_limit_exceeded_handler
from devcontext.server.routes import router

MAX_VALIDATION_DETAILS = 5


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "path": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    logger.info(f"Rejected invalid payload on {request.url.path}: {len(details)} errors")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid sync data", "details": details[:MAX_VALIDATION_DETAILS]},
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def create_app(settings: ServerSettings | None = None, store: ServerStore | None = None) -> FastAPI:
    """Build the sync server application.

    Args:
        settings: Server settings (defaults to environment-derived settings).
        store: Storage backend (defaults to a ServerStore at settings.server_db).

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    store = store or ServerStore(settings.server_db)

    app = FastAPI(title="DevContext Sync", version=__version__)
    app.state.settings = settings
    app.state.store = store
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/")
    async def root():
        return {"name": "DevContext Sync", "version": __version__}

    app.include_router(router, prefix="/sync")
    logger.info(f"Sync server ready (database: {store.db_path})")
    return app
