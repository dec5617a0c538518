"""Application entrypoint for the storefront identity service.

This module wires together the FastAPI application with its lifespan hooks,
database metadata, Redis cleanup, error handlers and CORS configuration.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from storefront_auth.api.routes import auth_router
from storefront_auth.core.config import settings
from storefront_auth.core.errors import (
    AuthError,
    auth_error_handler,
    request_validation_handler,
    storage_error_handler,
)
from storefront_auth.core.logging import configure_logging, get_logger
from storefront_auth.db import models  # noqa: F401
from storefront_auth.db.base import Base
from storefront_auth.db.session import engine
from storefront_auth.services.otp import close_redis_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup and dispose shared clients on shutdown."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("startup", environment=settings.ENVIRONMENT, dev_otp=settings.expose_dev_otp)
    yield
    await close_redis_client()
    await engine.dispose()


def create_application() -> FastAPI:
    """Assemble and configure the FastAPI application instance.

    - Configures structured logging from `settings`.
    - Injects the lifespan manager defined above to manage startup/shutdown.
    - Renders typed auth errors and storage failures as JSON envelopes.
    - Registers the authentication router that exposes the OTP flows.
    """

    configure_logging(settings)

    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(AuthError, auth_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)
    application.add_exception_handler(SQLAlchemyError, storage_error_handler)

    application.include_router(auth_router)

    @application.get("/")
    async def healthcheck():
        """Lightweight health endpoint used by uptime monitors."""
        return {"message": f"{settings.PROJECT_NAME} is running!"}

    return application


app = create_application()
