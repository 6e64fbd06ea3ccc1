import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from conduit.cache import CacheManager
from conduit.config import Settings, get_settings
from conduit.database import build_engine, build_session_factory, create_tables
from conduit.errors import ConduitError
from conduit.middleware import TimingMiddleware
from conduit.routers import articles, profiles, users
from conduit.schemas import ErrorBody, ErrorResponse

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_REQUEST_SOURCES = frozenset({"body", "query", "path", "header"})


def _error_response(status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(errors=ErrorBody(body=[message]))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _validation_message(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ())]
    # The first element names where the value came from (body, query, ...).
    if loc and loc[0] in _REQUEST_SOURCES:
        loc = loc[1:]
    field = ".".join(loc) or "body"
    kind = error.get("type", "")
    if kind == "missing":
        return f'"{field}" is required'
    if kind == "value_error" and loc and loc[-1] == "email":
        return f'"{field}" must be a valid email'
    if kind == "string_type":
        return f'"{field}" must be a string'
    if kind == "string_too_long":
        return f'"{field}" must contain at most {error.get("ctx", {}).get("max_length")} characters'
    return f'"{field}" is invalid: {error.get("msg", "")}'


async def conduit_error_handler(request: Request, exc: ConduitError) -> JSONResponse:
    logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return _error_response(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = _validation_message(errors[0]) if errors else "invalid request"
    logger.info("%s %s -> 422: %s", request.method, request.url.path, message)
    return _error_response(422, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "internal server error")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the application around *settings*.

    The engine, session factory and cache client live on ``app.state`` so
    each app instance (one per test, one in production) owns its own.
    Serve with ``uvicorn conduit.main:create_app --factory`` (or the lazily
    built ``conduit.main:app``).
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format=LOG_FORMAT)

    engine = build_engine(settings)
    cache = CacheManager(settings.REDIS_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await cache.connect()
        if settings.CREATE_TABLES_ON_STARTUP:
            await create_tables(engine)
        yield
        # Shutdown
        await cache.disconnect()
        await engine.dispose()

    app = FastAPI(
        title="Conduit API",
        description="Articles, comments, favorites and follows for a blogging platform",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine, settings)
    app.state.cache = cache

    # Middleware
    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Errors
    app.add_exception_handler(ConduitError, conduit_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routers
    app.include_router(users.router, prefix="/api")
    app.include_router(profiles.router, prefix="/api")
    app.include_router(articles.router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": VERSION, "cache": cache.stats}

    return app


_app: FastAPI | None = None


def __getattr__(name: str):
    # ``uvicorn conduit.main:app`` builds the production app on first access,
    # so importing this module (as the tests do) configures nothing.
    if name == "app":
        global _app
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
