"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from cookie_counter.config import get_settings
from cookie_counter.db import DbClient, InMemoryDbClient, MongoDbClient, SqlDbClient
from cookie_counter.geocoding import Geocoder, HttpGeocoder
from cookie_counter.service import CookieService
from cookie_counter.storage import (
    InMemoryPhotoStorage,
    LocalPhotoStorage,
    PhotoStorage,
    S3PhotoStorage,
)
from cookie_counter.types import PhotoStorageKind

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_photo_storage: PhotoStorage | None = None
_geocoder: Geocoder | None = None
_cookie_service: CookieService | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so the tallies persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    url = settings.database_url
    if settings.use_in_memory_backends or not url:
        _db_client = InMemoryDbClient()
    elif url.startswith(("mongodb://", "mongodb+srv://")):
        _db_client = MongoDbClient(url, db_name=settings.mongo_db_name)
    else:
        _db_client = SqlDbClient(url)
    logger.info("Using %s", type(_db_client).__name__)
    return _db_client


def get_photo_storage() -> PhotoStorage | None:
    global _photo_storage
    if _photo_storage:
        return _photo_storage

    settings = get_settings()
    kind = settings.photo_storage
    if kind == PhotoStorageKind.NONE:
        return None
    if settings.use_in_memory_backends or kind == PhotoStorageKind.MEMORY:
        _photo_storage = InMemoryPhotoStorage()
    elif kind == PhotoStorageKind.S3:
        _photo_storage = S3PhotoStorage(
            bucket=settings.s3_bucket,
            region=settings.aws_region,
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            public_read=settings.s3_public_read,
        )
    else:
        _photo_storage = LocalPhotoStorage(upload_dir=settings.upload_dir)
    return _photo_storage


def get_geocoder() -> Geocoder | None:
    global _geocoder
    if _geocoder:
        return _geocoder

    settings = get_settings()
    if not settings.geocoding_enabled:
        return None
    _geocoder = HttpGeocoder(
        api_key=settings.geocoding_api_key,
        url=settings.geocoding_url,
        timeout=settings.geocoding_timeout,
    )
    return _geocoder


def get_cookie_service() -> CookieService:
    global _cookie_service
    if _cookie_service:
        return _cookie_service

    settings = get_settings()
    _cookie_service = CookieService(
        get_db_client(),
        log_policy=settings.log_policy,
        geocoder=get_geocoder(),
        photo_storage=get_photo_storage(),
        normalize_photos=settings.normalize_photos,
        photo_max_width=settings.photo_max_width,
        photo_quality=settings.photo_quality,
    )
    return _cookie_service
