"""
main.py
-------
FastAPI application factory and entry point.

create_application() wires, in order:
  - lifespan: logging + MLflow on startup; on shutdown, pending background
    writes are awaited before the engine is disposed
  - request context middleware (request_id bound into structlog)
  - CORS
  - routers
  - exception handlers, which render every failure as {"error": message}

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bubblechat.api.routes import chat, messages, personas, register, reports
from bubblechat.core.background import background
from bubblechat.core.config import settings
from bubblechat.core.errors import AppError, UpstreamUnavailable
from bubblechat.core.logging import bind_request_context, configure_logging, get_logger
from bubblechat.db.session import engine
from bubblechat.services.mlflow_service import setup_mlflow

logger = get_logger(__name__)

ROUTERS = (register.router, chat.router, messages.router, personas.router, reports.router)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging()
    setup_mlflow()
    logger.info("BubbleChat API starting", env=settings.APP_ENV, debug=settings.DEBUG)
    yield
    logger.info("Shutting down, flushing background writes", pending=background.pending)
    await background.drain()
    await engine.dispose()


def _format_validation_error(exc: RequestValidationError) -> str:
    """First validation problem as a short 'field: reason' string."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def on_app_error(request: Request, exc: AppError) -> JSONResponse:
        if isinstance(exc, UpstreamUnavailable):
            return _error(exc.status_code, exc.message, retryable=True)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejected request", errors=len(exc.errors()))
        return _error(status.HTTP_400_BAD_REQUEST, _format_validation_error(exc))

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception) -> JSONResponse:
        # Detail goes to the log only.
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def create_application() -> FastAPI:
    expose_docs = settings.APP_ENV != "production"
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Persona chat backend: rotating bearer credentials, threaded "
            "history and bubble-segmented LLM replies."
        ),
        version="1.0.0",
        docs_url="/docs" if expose_docs else None,
        redoc_url="/redoc" if expose_docs else None,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = bind_request_context(request.method, request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # Bearer tokens only, no cookies.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-FCM-Token"],
        expose_headers=["X-Request-ID"],
    )

    for router in ROUTERS:
        app.include_router(router)
    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        return {
            "status": "ok",
            "env": settings.APP_ENV,
            "pending_writes": background.pending,
        }

    return app


app = create_application()
