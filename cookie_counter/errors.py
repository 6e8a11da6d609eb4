"""
Exception hierarchy used between the service layer and the HTTP routes.
"""

from __future__ import annotations


class CookieCounterError(Exception):
    """Base class for all service errors."""


class ValidationError(CookieCounterError):
    """The request is malformed; reported to the client as a 400."""


class PayloadTooLargeError(ValidationError):
    """An uploaded file exceeded the configured size limit."""


class DependencyError(CookieCounterError):
    """A downstream collaborator (geocoder, image library, object store) failed."""


class StoreError(DependencyError):
    """The database rejected or failed a read or write."""
