"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures middleware,
routes, exception handlers and the background billing scheduler.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm.core.config import settings
from crm.core.exceptions import AppException
from crm.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from crm.core.logging import configure_logging
from crm.middleware import RequestContextMiddleware
from crm.api import (
    clients,
    projects,
    invoices,
    recurring_invoices,
    transactions,
    budgets,
    tasks,
)
from crm.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern lets tests build an app and override its
    dependencies without touching the module-level instance.

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Agency CRM API: clients, projects, billing and bookkeeping",
        version=settings.VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    )

    # One error body shape for domain errors, validation errors, HTTP errors
    # and unexpected failures
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request id and access log; added before CORS so it wraps every response
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Load balancers need a cheap liveness check; the scheduler state
        shows whether recurring billing is running on this worker.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    @app.on_event("startup")
    async def startup_event():
        """Start the recurring billing scheduler unless disabled."""
        if settings.SCHEDULER_ENABLED:
            await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown_event():
        await shutdown_scheduler()

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": f"{settings.API_V1_PREFIX}/docs",
        }

    for module in (clients, projects, invoices, recurring_invoices, transactions, budgets, tasks):
        app.include_router(module.router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
