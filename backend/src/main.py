# pyright: reportMissingTypeStubs=false
"""
ABDM Integration Backend API

A FastAPI application exposing the ABHA (national health ID) enrollment
flows and patient-to-organization consent tokens.

Features:
- ABHA V3 enrollment, verification and recovery through the ABDM gateway
- Patient ABDM token storage (Redis with in-memory fallback)
- Signed, revocable consent tokens backed by PostgreSQL
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import abha, consent
from core.constants import CORS_ORIGINS
from core.database import create_tables
from core.exceptions import (
    ConfigurationError,
    ConsentTokenError,
    ExpiredError,
    InvalidPurposeError,
    InvalidWindowError,
    RevokedError,
    ScopeError,
    StoreError,
    UpstreamError,
)
from services import abha_token_service
from services.consent_token_service import get_consent_token_service
from services.encryption_service import get_encryption_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting ABDM Integration Backend API")

    # Missing or malformed keys are fatal: fail before serving requests
    try:
        get_encryption_service()
        get_consent_token_service()
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        raise

    create_tables()

    yield

    if abha_token_service.patient_token_store is not None:
        await abha_token_service.patient_token_store.close()

    logger.info("Shutting down ABDM Integration Backend API")


# Create FastAPI application
app = FastAPI(
    title="ABDM Integration Backend",
    description="ABHA enrollment and consent token service",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    abha.router,
    prefix="/api/abha",
    tags=["abha"],
    responses={
        400: {"description": "Bad request"},
        404: {"description": "Resource not found"},
        502: {"description": "ABDM gateway error"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    consent.router,
    prefix="/api/consent",
    tags=["consent"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Consent token expired or invalid"},
        403: {"description": "Consent revoked or resource not permitted"},
        500: {"description": "Internal server error"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "ABDM Integration Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    """Handle ABDM gateway and FHIR server errors."""
    logger.warning(f"Upstream error: status={exc.status}")
    return JSONResponse(
        status_code=502,
        content={"detail": "External service error", "type": "external_service_error"},
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    """Handle backing store failures."""
    logger.error(f"Store error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "type": "store_unavailable"},
    )


@app.exception_handler(ConsentTokenError)
async def consent_error_handler(request: Request, exc: ConsentTokenError):
    """Map consent token errors to client errors by category."""
    if isinstance(exc, (InvalidPurposeError, InvalidWindowError)):
        status_code, error_type = 400, "validation_error"
    elif isinstance(exc, ScopeError):
        status_code, error_type = 403, "scope"
    elif isinstance(exc, RevokedError):
        status_code, error_type = 403, "revoked"
    elif isinstance(exc, ExpiredError):
        status_code, error_type = 401, "expired"
    else:
        status_code, error_type = 401, "invalid"
    logger.info(f"Consent token rejected ({error_type}): {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": error_type},
    )
