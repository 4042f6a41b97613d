from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from proposal_ai.api.router import api_router
from proposal_ai.core.config import settings as default_settings
from proposal_ai.core.dependencies import ServiceRegistry, build_services
from proposal_ai.core.error_handlers import (
    domain_exception_handler,
    general_exception_handler,
    http_exception_handler,
    provider_error_handler,
    validation_exception_handler,
)
from proposal_ai.core.exceptions import ProposalAIException, ProviderError
from proposal_ai.core.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(settings=None, services: Optional[ServiceRegistry] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting up {settings.PROJECT_NAME}...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug mode: {settings.DEBUG}")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        logger.info(f"Providers with keys: {app.state.services.api_keys.available_providers()}")
        yield
        logger.info(f"Shutting down {settings.PROJECT_NAME}...")
        await app.state.services.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="AI orchestration backend for proposal pre-analysis",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings
    app.state.services = services

    # Add exception handlers
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ProviderError, provider_error_handler)
    app.add_exception_handler(ProposalAIException, domain_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    allowed_origins = list(settings.BACKEND_CORS_ORIGINS)
    # Only allow all origins in development
    if settings.ENVIRONMENT == "development" and settings.DEBUG:
        allowed_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=allowed_origins != ["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        registry = app.state.services
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "version": settings.VERSION,
            "services": {
                "store": type(registry.store).__name__ if registry else "not started",
                "providers": registry.api_keys.available_providers() if registry else [],
            },
        }

    return app


setup_logging(
    log_dir=Path(default_settings.LOG_DIR),
    level=default_settings.LOG_LEVEL,
    enable_json=default_settings.LOG_JSON,
    enable_file=default_settings.LOG_TO_FILE,
)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("proposal_ai.main:app", host="0.0.0.0", port=8000, reload=default_settings.DEBUG)
