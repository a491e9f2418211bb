"""
FastAPI application entry point for the orchard backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from orchard.config import get_settings
from orchard.dependencies import close_clients, get_garden_service
from orchard.errors import OrchardError
from orchard.routes import router, uploads_router
from orchard.seed import seed_sample_data

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Đã có lỗi xảy ra ở server!"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    service = get_garden_service()
    if settings.seed_sample_data:
        seed_sample_data(service)
    yield
    close_clients()


async def handle_orchard_error(request: Request, exc: OrchardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message
        )
        return JSONResponse(status_code=exc.status_code, content={"error": GENERIC_ERROR})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Dữ liệu không hợp lệ.",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Durian Orchard Backend", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(OrchardError, handle_orchard_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(uploads_router)
    if Path(settings.public_dir).is_dir():
        app.mount(
            "/", StaticFiles(directory=settings.public_dir, html=True), name="public"
        )
    return app


app = create_app()
