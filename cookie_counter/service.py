"""
Aggregation service: validates submissions, coordinates the geocoder, the
image normalizer and photo storage, and applies the counter updates.
"""

from __future__ import annotations

import logging
import math
import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from cookie_counter.db import ContributionRecord, DbClient, TypeCountRecord
from cookie_counter.errors import ValidationError
from cookie_counter.geocoding import Geocoder, format_location
from cookie_counter.images import DEFAULT_MAX_WIDTH, DEFAULT_QUALITY, normalize_image
from cookie_counter.storage import UPLOAD_PREFIX, PhotoStorage
from cookie_counter.types import ALLOWED_IMAGE_TYPES, LogPolicy

logger = logging.getLogger(__name__)

INVALID_DATA_MESSAGE = "Invalid data. Ensure all fields are provided."
INVALID_PHOTO_MESSAGE = "Only image files are allowed (jpeg, jpg, png, gif)."
UNRESOLVED_LOCATION_MESSAGE = "Unable to resolve location"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class PhotoUpload:
    """An uploaded photo spooled to a temporary file."""

    filename: str
    content_type: str
    path: str
    size: int = 0

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower().lstrip(".")

    def discard(self) -> None:
        Path(self.path).unlink(missing_ok=True)


@dataclass
class CookieStats:
    total: int
    types: list[TypeCountRecord] = field(default_factory=list)
    locations: list[ContributionRecord] = field(default_factory=list)


def parse_cookie_count(value) -> int:
    """
    Accepts an int or numeric string and returns it as a positive integer.

    Raises:
        ValidationError: If the value is missing, non-numeric, not a whole
            number, or not strictly positive.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(INVALID_DATA_MESSAGE)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(INVALID_DATA_MESSAGE)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(INVALID_DATA_MESSAGE) from None
    if not math.isfinite(number) or number <= 0 or not number.is_integer():
        raise ValidationError(INVALID_DATA_MESSAGE)
    return int(number)


def require_text(*values: Optional[str]) -> list[str]:
    cleaned = []
    for value in values:
        if value is None or not str(value).strip():
            raise ValidationError(INVALID_DATA_MESSAGE)
        cleaned.append(str(value).strip())
    return cleaned


def validate_photo(photo: PhotoUpload) -> None:
    # Both the extension and the declared MIME type must name an image format.
    ext_ok = photo.extension in ALLOWED_IMAGE_TYPES
    mime = (photo.content_type or "").lower()
    mime_ok = mime.startswith("image/") and mime.split("/", 1)[1] in ALLOWED_IMAGE_TYPES
    if not (ext_ok and mime_ok):
        logger.info("Rejected upload %s (%s)", photo.filename, photo.content_type)
        raise ValidationError(INVALID_PHOTO_MESSAGE)


def storage_key(filename: str, extension: Optional[str] = None) -> str:
    stem, suffix = os.path.splitext(os.path.basename(filename))
    stem = _UNSAFE_NAME_CHARS.sub("_", stem).strip("_") or "photo"
    suffix = f".{extension}" if extension else suffix.lower()
    return f"{UPLOAD_PREFIX}{int(time.time() * 1000)}-{stem}{suffix}"


class CookieService:
    """Read and write paths over the cookie tallies."""

    def __init__(
        self,
        db: DbClient,
        *,
        log_policy: LogPolicy = LogPolicy.APPEND,
        geocoder: Optional[Geocoder] = None,
        photo_storage: Optional[PhotoStorage] = None,
        normalize_photos: bool = True,
        photo_max_width: int = DEFAULT_MAX_WIDTH,
        photo_quality: int = DEFAULT_QUALITY,
    ):
        self.db = db
        self.log_policy = log_policy
        self.geocoder = geocoder
        self.photo_storage = photo_storage
        self.normalize_photos = normalize_photos
        self.photo_max_width = photo_max_width
        self.photo_quality = photo_quality

    def get_stats(self) -> CookieStats:
        self.db.ensure_total()
        return CookieStats(
            total=self.db.get_total(),
            types=self.db.list_type_counts(),
            locations=self.db.list_contributions(),
        )

    def add_contribution(
        self,
        cookies,
        city: Optional[str],
        state: Optional[str],
        country: Optional[str],
        cookie_type: Optional[str],
        photo: Optional[PhotoUpload] = None,
    ) -> CookieStats:
        """
        Validates and records one submission, then returns the updated stats.

        Geocoding and photo processing happen before any database write, so a
        rejected location or a broken image leaves the tallies untouched.
        """
        amount = parse_cookie_count(cookies)
        city, state, country, cookie_type = require_text(
            city, state, country, cookie_type
        )
        if photo is not None:
            validate_photo(photo)

        latitude = longitude = None
        if self.geocoder is not None:
            coordinates = self.geocoder.geocode(format_location(city, state, country))
            if coordinates is None:
                raise ValidationError(UNRESOLVED_LOCATION_MESSAGE)
            latitude, longitude = coordinates

        photo_url = None
        if photo is not None and self.photo_storage is not None:
            photo_url = self._store_photo(photo)

        contribution = ContributionRecord(
            city=city,
            state=state,
            country=country,
            cookie_type=cookie_type,
            cookies=amount,
            photo=photo_url,
            latitude=latitude,
            longitude=longitude,
        )
        self.db.ensure_total()
        self.db.record_contribution(contribution, self.log_policy)
        logger.info(
            "Recorded %d %r cookies from %s", amount, cookie_type,
            format_location(city, state, country),
        )
        return self.get_stats()

    def _store_photo(self, photo: PhotoUpload) -> str:
        if not self.normalize_photos:
            key = storage_key(photo.filename)
            url = self.photo_storage.upload_file(photo.path, key, photo.content_type)
            photo.discard()
            return url

        fd, normalized_path = tempfile.mkstemp(suffix=".jpg")
        os.close(fd)
        try:
            normalize_image(
                photo.path,
                normalized_path,
                max_width=self.photo_max_width,
                quality=self.photo_quality,
            )
            # The original upload is no longer needed once it has been re-encoded.
            photo.discard()
            key = storage_key(photo.filename, extension="jpg")
            return self.photo_storage.upload_file(normalized_path, key, "image/jpeg")
        finally:
            Path(normalized_path).unlink(missing_ok=True)
