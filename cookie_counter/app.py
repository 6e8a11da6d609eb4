"""
FastAPI application entry point for the cookie counter.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from cookie_counter.config import get_settings
from cookie_counter.dependencies import get_db_client
from cookie_counter.errors import StoreError
from cookie_counter.routes import router
from cookie_counter.service import INVALID_DATA_MESSAGE
from cookie_counter.types import PhotoStorageKind

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    upload_dir = getattr(app.state, "upload_dir", None)
    if upload_dir:
        os.makedirs(upload_dir, exist_ok=True)
    # Create the total document up front; an unreachable store is logged and
    # retried lazily on the first request.
    try:
        get_db_client().ensure_total()
    except StoreError:
        logger.exception("Could not initialize the cookie total")
    yield


async def invalid_request_handler(request: Request, exc: RequestValidationError):
    # Malformed form bodies get the same 400 as failed field validation.
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"detail": INVALID_DATA_MESSAGE})


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Cookie Counter", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, invalid_request_handler)
    app.include_router(router)
    serve_uploads = (
        settings.photo_storage == PhotoStorageKind.LOCAL
        and not settings.use_in_memory_backends
    )
    if serve_uploads:
        # The directory itself is created on startup.
        app.state.upload_dir = settings.upload_dir
        app.mount(
            "/uploads",
            StaticFiles(directory=settings.upload_dir, check_dir=False),
            name="uploads",
        )
    return app


app = create_app()
