"""Document Chat API - Main Application Module.

This module initializes the FastAPI application with configuration,
middleware, routing, and lifecycle management for the document chat service.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import ConfigValidator, settings
from app.core.logging import setup_logging
from app.database import AsyncSessionLocal, engine
from app.exceptions.chat import TurnErrorKind
from models import Base


logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Manage application lifecycle events."""
    logger.info(f"Starting {settings.app_name} ({settings.environment.value})")

    if settings.is_production:
        ConfigValidator.validate_required_settings()
    else:
        # Outside production the schema is created on startup
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Chat with uploaded PDF documents using retrieval-augmented generation",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routers(app)

    return app


def setup_middleware(app: FastAPI):
    """Configure application middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Chat-ID", "X-Request-ID"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def setup_exception_handlers(app: FastAPI):
    """Configure global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Application exceptions carry a structured detail
        if isinstance(exc.detail, dict) and "message" in exc.detail:
            message = exc.detail["message"]
            error_code = exc.detail.get("error_code", "HTTP_ERROR")
            details = exc.detail.get("details")
        else:
            message = str(exc.detail) if exc.detail else "An error occurred"
            error_code = "HTTP_ERROR"
            details = None

        if exc.status_code >= 500:
            logger.error(f"{error_code}: {message}", extra={"request_id": getattr(request.state, "request_id", None)})

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": "error",
                "message": message,
                "error_code": error_code,
                "details": details,
                "timestamp": _timestamp(),
                "request_id": getattr(request.state, "request_id", None),
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            error_dict = {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "Validation error")),
                "type": error.get("type", "value_error"),
            }
            if "input" in error:
                error_dict["input"] = str(error["input"])
            errors.append(error_dict)

        return JSONResponse(
            status_code=422,
            content={
                "status": "error",
                "message": "Validation error",
                "error_code": TurnErrorKind.INVALID_INPUT.value,
                "details": errors,
                "timestamp": _timestamp(),
                "request_id": getattr(request.state, "request_id", None),
            },
        )


def setup_routers(app: FastAPI):
    """Configure application routers."""
    from app.domains.chat.controller import router as chat_router
    from app.domains.documents.controller import router as documents_router

    @app.get("/health")
    async def health_check():
        """Health check with a database round trip."""
        db_status = "healthy"
        try:
            async with AsyncSessionLocal() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check failed: {str(e)}")
            db_status = "unhealthy"

        ai_status = "configured" if settings.has_ai_enabled else "not_configured"

        return JSONResponse(
            status_code=200 if db_status == "healthy" else 503,
            content={
                "status": "healthy" if db_status == "healthy" else "degraded",
                "version": settings.version,
                "environment": settings.environment.value,
                "timestamp": _timestamp(),
                "services": {
                    "database": db_status,
                    "ai_service": ai_status,
                    "vector_index": str(settings.chroma_url),
                },
            },
        )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "description": "Chat with uploaded PDF documents",
            "docs_url": "/docs" if settings.is_development else None,
        }

    app.include_router(chat_router)
    app.include_router(documents_router)


# Create the application instance
app = create_app()


def main():
    """Entry point for running the application directly."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    main()
