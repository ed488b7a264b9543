"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from visa_advisor.api.v1.router import api_router
from visa_advisor.core.config import settings
from visa_advisor.core.database import close_database, db_client, init_database
from visa_advisor.core.exceptions import DatabaseError
from visa_advisor.core.gateway import GenerativeGateway
from visa_advisor.core.llm_client import create_llm_client_from_settings
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Health check status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    database: dict = Field(default_factory=dict, description="Database check result")


def build_gateway() -> GenerativeGateway:
    """Construct the provider client and gateway from settings.

    Raises:
        ConfigurationError: Provider unknown or its API key missing
    """
    llm = settings.llm
    client = create_llm_client_from_settings(llm)
    return GenerativeGateway(
        client,
        timeout=llm.timeout_seconds,
        max_retries=llm.max_retries,
        base_delay=llm.retry_base_delay,
        max_delay=llm.retry_max_delay,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    # A misconfigured provider is fatal; the service cannot run any stage
    app.state.gateway = build_gateway()

    LOGGER.info("Starting database initialization...")
    try:
        await asyncio.wait_for(
            init_database(create_tables=settings.db.create_tables),
            timeout=settings.db.init_timeout,
        )
        LOGGER.info("Database initialized successfully")
    except asyncio.TimeoutError:
        LOGGER.error(f"Database initialization timed out after {settings.db.init_timeout}s")
    except DatabaseError as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    LOGGER.info("Shutting down application")
    await close_database()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Staged advisory pipeline for US visa eligibility",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Include routers
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get(
    "/health",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health check endpoint",
    operation_id="get_service_health_status",
)
async def health_check() -> HealthCheckResponse:
    """Liveness plus a database round trip."""
    db_health = await db_client.health_check()
    return HealthCheckResponse(
        status="healthy" if db_health["status"] == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        database=db_health,
    )


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    """Root endpoint.

    Returns:
        RootResponse: Basic API information
    """
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "visa_advisor.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
