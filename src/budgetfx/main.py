"""
BudgetFX Main Application Entry Point
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from budgetfx import __version__
from budgetfx.api import router
from budgetfx.api.schemas import ErrorResponse
from budgetfx.config import Settings, get_settings
from budgetfx.conversion import CurrencyConversionService
from budgetfx.database import ProjectRepository, create_repository

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException details that are already error bodies as-is."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = ErrorResponse(error=str(exc.detail), error_type="HTTP_ERROR").model_dump(by_alias=True)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info(f"Rejected request to {request.url.path}: {location}: {message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error=f"{location}: {message}" if location else message,
            error_type="VALIDATION_ERROR"
        ).model_dump(by_alias=True)
    )


def create_app(
    settings: Settings | None = None,
    repository: ProjectRepository | None = None,
    conversion_service: CurrencyConversionService | None = None
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        settings: Configuration; read from the environment when None
        repository: Storage backend; built from settings when None
        conversion_service: Conversion service; built from settings when None
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🚀 Starting BudgetFX v.{__version__}")

        app.state.settings = settings
        app.state.repository = repository or create_repository(settings)
        app.state.conversion_service = (
            conversion_service or CurrencyConversionService.from_settings(settings)
        )

        try:
            await app.state.repository.init_schema()
            logger.info(f"✅ Database ready ({app.state.repository.BACKEND_NAME})")
        except Exception as e:
            logger.warning(f"⚠️ Database not available: {e}")

        yield

        logger.info("🛑 Shutting down BudgetFX")
        await app.state.repository.close()
        logger.info("✅ Shutdown complete")

    app = FastAPI(
        title="BudgetFX",
        description="Project budget API with live currency conversion",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "BudgetFX",
            "version": __version__,
            "docs": "/docs",
            "api": {
                "project": "/api/project/budget/{id}",
                "convert": "/api/project/budget/currency",
                "batch_conversion": "/api/api-conversion",
                "health": "/api/health"
            }
        }

    return app


def main():
    """Main entry point for running the server."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info(f"Starting BudgetFX server on {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
