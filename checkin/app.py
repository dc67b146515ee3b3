"""
FastAPI application entry point for the check-in backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from checkin.config import get_settings
from checkin.dependencies import get_checkin_data
from checkin.errors import ApiError, api_error_handler, validation_error_handler
from checkin.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    subscriptions = get_checkin_data().subscribe_all()
    logger.info("Subscribed to %d change channels", len(subscriptions))
    try:
        yield
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="Event Check-in Backend", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
