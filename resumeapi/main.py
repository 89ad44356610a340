import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from resumeapi/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from resumeapi.core.config import settings, validate_config  # noqa: E402
from resumeapi.core.database import create_all_tables  # noqa: E402
from resumeapi.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from resumeapi.core.logging import configure_logging  # noqa: E402
from resumeapi.core.middleware.request_context import RequestContextMiddleware  # noqa: E402
from resumeapi.core.validation import validate_env  # noqa: E402
from resumeapi.api import billing, health, metrics  # noqa: E402
from resumeapi.features.billing.provider import BillingProvider  # noqa: E402
from resumeapi.features.billing.service import build_provider  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("resumeapi")
    logger.info("Starting resume API...")
    app.state.startup_time = time.time()
    create_all_tables()
    if app.state.billing_provider is None:
        logger.warning("STRIPE_SECRET_KEY not set; billing endpoints will report billing_not_configured")
    try:
        yield
    finally:
        logger.info("Stopping resume API...")


def create_app(provider: Optional[BillingProvider] = None) -> FastAPI:
    """
    Build the application.

    Args:
        provider: Billing provider to use; defaults to Stripe when configured
    """
    configure_logging(settings.ENV)
    validate_env()
    validate_config(strict=settings.CONFIG_STRICT)

    app = FastAPI(title="Resume API", lifespan=lifespan)
    app.state.billing_provider = provider if provider is not None else build_provider()

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(billing.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    return app


app = create_app()
