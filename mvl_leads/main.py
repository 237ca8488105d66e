"""
Mount Vernon Lofts lead capture backend

FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from mvl_leads.config import Settings, settings as default_settings
from mvl_leads.database import create_all
from mvl_leads.dependencies.services import LeadServices, build_services
from mvl_leads.errors import APIError, api_error_handler
from mvl_leads.logging_config import configure_logging, get_logger
from mvl_leads.sentry_config import configure_sentry
from mvl_leads.middleware.logging import LoggingMiddleware
from mvl_leads.routes.metrics import router as metrics_router

# Import route modules
from mvl_leads.routes.contact import router as contact_router
from mvl_leads.routes.documents import router as documents_router
from mvl_leads.routes.open_house import router as open_house_router
from mvl_leads.routes.status import router as status_router
from mvl_leads.routes.export import router as export_router

log = get_logger(component="app")


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[LeadServices] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to the environment)
        services: Prebuilt service container; when given, the app uses it
            as-is and leaves closing it to the caller

    Returns:
        Configured FastAPI app
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            yield
            return

        app.state.services = build_services(settings)
        if settings.AUTO_CREATE_TABLES and app.state.services.engine is not None:
            await create_all(app.state.services.engine)
        log.info("app_started", environment=settings.ENVIRONMENT)
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Lead capture backend for the Mount Vernon Lofts website",
        lifespan=lifespan,
    )

    if services is not None:
        app.state.services = services

    app.add_exception_handler(APIError, api_error_handler)

    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.SITE_URL],
        allow_methods=["GET", "POST", "HEAD", "OPTIONS"],
        allow_headers=["*"],
    )

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)

    app.include_router(contact_router)
    app.include_router(documents_router)
    app.include_router(open_house_router)
    app.include_router(status_router)
    app.include_router(export_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "healthy"}

    return app


# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

app = create_app()
