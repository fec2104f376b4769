import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from crud6.core.bases.base_router import CrudRouter
from crud6.core.bases.base_service import CrudService
from crud6.core.config import Settings, settings
from crud6.core.database import DatabaseManager
from crud6.core.exceptions import CRUD6Exception
from crud6.core.logging import setup_logging
from crud6.core.response.handlers import crud6_exception_handler, global_exception_handler
from crud6.core.services.password_service import PasswordHasher
from crud6.core.services.schema_service import SchemaService

logger = logging.getLogger(__name__)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application for the given settings."""
    app_settings = app_settings or settings
    setup_logging(debug=app_settings.DEBUG_MODE, level=app_settings.LOG_LEVEL)

    databases = DatabaseManager(
        app_settings.ASYNC_DATABASE_URL,
        app_settings.DATABASE_CONNECTIONS,
    )
    schema_service = SchemaService.from_settings(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: check the default connection
        await databases.connect()
        # Read schema files once here rather than inside the first requests
        await run_in_threadpool(schema_service.warm)
        logger.info("%s started (schemas in %s)", app_settings.PROJECT_NAME, app_settings.SCHEMA_PATH)
        yield
        # Shutdown: release pooled connections
        await databases.disconnect()
        logger.info("Shutting down")

    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        description=app_settings.PROJECT_INFO,
        version=app_settings.PROJECT_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.databases = databases
    app.state.schema_service = schema_service
    app.state.crud_service = CrudService(
        schema_service,
        databases,
        hasher=PasswordHasher(app_settings.PASSWORD_ROUNDS),
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Adjust in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CRUD6Exception, crud6_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": app_settings.PROJECT_VERSION}

    crud_router = CrudRouter(
        namespace=app_settings.SCHEMA_NAMESPACE,
        prefix=app_settings.API_PREFIX,
    )
    app.include_router(crud_router.get_router())
    return app


if __name__ == "__main__":
    uvicorn.run(
        "crud6.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,  # Enable auto-reload in development
        log_level="info",
    )
