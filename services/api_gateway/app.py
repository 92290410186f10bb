"""API gateway entrypoint."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from services.api_gateway.dependencies import (
    get_analysis_service,
    get_settings,
    reset_state,
)
from services.api_gateway.presentation.http.routes import router
from services.api_gateway.settings import configure_logging

configure_logging(get_settings().log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    reset_state()
    logger.info("Surveillance gateway started")
    yield
    get_analysis_service().stop_all()
    logger.info("Surveillance gateway stopped, analysis sessions cancelled")


app = FastAPI(title="Surveillance Analysis API", lifespan=lifespan)
app.include_router(router)
