"""
HTTP routes for the cookie counter API.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from cookie_counter.config import Settings, get_settings
from cookie_counter.dependencies import get_cookie_service
from cookie_counter.errors import (
    DependencyError,
    PayloadTooLargeError,
    ValidationError,
)
from cookie_counter.schemas import (
    CookieStatsResponse,
    HealthResponse,
    LocationView,
    TypeCount,
)
from cookie_counter.service import CookieService, CookieStats, PhotoUpload

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_SIZE = 64 * 1024


def _to_response(stats: CookieStats) -> CookieStatsResponse:
    return CookieStatsResponse(
        total=stats.total,
        types=[TypeCount(**record.as_dict()) for record in stats.types],
        locations=[LocationView(**record.as_dict()) for record in stats.locations],
    )


async def _spool_upload(upload: UploadFile, max_bytes: int) -> PhotoUpload:
    """Copies the upload to a temporary file, enforcing the size limit."""
    suffix = Path(upload.filename or "").suffix
    fd, temp_path = tempfile.mkstemp(suffix=suffix)
    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise PayloadTooLargeError(
                        f"File too large. Maximum size is {max_bytes} bytes."
                    )
                out.write(chunk)
    except BaseException:
        Path(temp_path).unlink(missing_ok=True)
        raise
    return PhotoUpload(
        filename=upload.filename or "",
        content_type=upload.content_type or "",
        path=temp_path,
        size=size,
    )


@router.get("/healthz", response_model=HealthResponse)
def healthz():
    return HealthResponse(status="ok")


@router.get("/get-cookies", response_model=CookieStatsResponse)
def get_cookies(service: CookieService = Depends(get_cookie_service)):
    try:
        stats = service.get_stats()
    except DependencyError:
        logger.exception("Error fetching cookie data")
        raise HTTPException(status_code=500, detail="Error fetching cookie data")
    return _to_response(stats)


@router.post("/add-cookies", response_model=CookieStatsResponse)
async def add_cookies(
    cookies: str | None = Form(None),
    city: str | None = Form(None),
    state: str | None = Form(None),
    country: str | None = Form(None),
    cookie_type: str | None = Form(None, alias="cookieType"),
    photo: UploadFile | None = File(None),
    service: CookieService = Depends(get_cookie_service),
    settings: Settings = Depends(get_settings),
):
    """
    Adds cookies to the tallies, with an optional photo.

    Form fields are read as optional strings so missing values produce the
    same 400 response as invalid ones.
    """
    upload = None
    try:
        # Browsers send an empty file part when no photo was chosen.
        if photo is not None and photo.filename:
            upload = await _spool_upload(photo, settings.max_upload_bytes)
        stats = await run_in_threadpool(
            service.add_contribution,
            cookies,
            city,
            state,
            country,
            cookie_type,
            upload,
        )
    except PayloadTooLargeError as exc:
        logger.info("Rejected oversized upload: %s", exc)
        raise HTTPException(status_code=413, detail=str(exc))
    except ValidationError as exc:
        logger.info("Invalid request: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except DependencyError:
        logger.exception("Error updating cookies")
        raise HTTPException(status_code=500, detail="Error updating cookie count.")
    finally:
        if upload is not None:
            upload.discard()
    return _to_response(stats)
