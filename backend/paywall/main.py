"""
Paywall Backend - FastAPI Application

Main entry point for the billing API: plans, checkout, trial status and
the Stripe webhook.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paywall.config.settings import settings
from paywall.infrastructure.exceptions import (
    PaywallError,
    ValidationError,
    NotFoundError,
    PaymentRequiredError,
    ProviderError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Paywall Backend starting in {settings.environment} mode...")

    from paywall.infrastructure.db.database import init_db, close_db
    await init_db()
    logger.info("Database connection pool initialized")

    yield

    # Shutdown
    await close_db()
    logger.info("Database connection pool closed")
    logger.info("Paywall Backend shutting down...")


app = FastAPI(
    title="Paywall Backend",
    description="Subscription billing with trial-to-recurring upgrades",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(PaymentRequiredError)
async def payment_required_handler(request: Request, exc: PaymentRequiredError):
    """Handle requests blocked by the paywall."""
    return JSONResponse(
        status_code=402,
        content=exc.to_dict(),
    )


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    """Handle billing provider failures."""
    logger.error(f"Provider error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=502,
        content=exc.to_dict(),
    )


@app.exception_handler(PaywallError)
async def general_error_handler(request: Request, exc: PaywallError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "paywall-backend"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Paywall Backend API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from paywall.api.routes import subscriptions, trial, webhooks

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(trial.router, prefix="/api", tags=["Trial"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
