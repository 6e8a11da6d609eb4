"""
Shared enums for the cookie counter backend.
"""

from __future__ import annotations

from enum import Enum


class LogPolicy(str, Enum):
    """How contribution log rows are recorded."""

    # Every submission becomes its own row.
    APPEND = "append"
    # Rows are keyed by (city, state, country, cookieType) and accumulate.
    AGGREGATE = "aggregate"


class PhotoStorageKind(str, Enum):
    LOCAL = "local"
    S3 = "s3"
    MEMORY = "memory"
    NONE = "none"


ALLOWED_IMAGE_TYPES = ("jpeg", "jpg", "png", "gif")
