"""
Geocoding clients that resolve a free-text location to latitude/longitude.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

import requests

from cookie_counter.errors import DependencyError

logger = logging.getLogger(__name__)

Coordinates = Tuple[float, float]


class Geocoder(Protocol):
    def geocode(self, query: str) -> Optional[Coordinates]:
        """Return (latitude, longitude) of the best match, or None."""
        ...


def format_location(city: str, state: str, country: str) -> str:
    return f"{city}, {state}, {country}"


@dataclass
class HttpGeocoder:
    """
    Client for an OpenCage-style forward geocoding API.

    The provider is expected to answer with
    ``{"results": [{"geometry": {"lat": .., "lng": ..}}, ...]}``.
    """

    api_key: str
    url: str
    timeout: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    def geocode(self, query: str) -> Optional[Coordinates]:
        try:
            response = self.session.get(
                self.url,
                params={"q": query, "key": self.api_key, "limit": 1},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise DependencyError(f"Geocoding request failed: {exc}") from exc

        results = payload.get("results") or []
        if not results:
            logger.info("No geocoding results for %r", query)
            return None
        try:
            geometry = results[0]["geometry"]
            return float(geometry["lat"]), float(geometry["lng"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DependencyError(f"Unexpected geocoding payload: {exc}") from exc


@dataclass
class StaticGeocoder:
    """Lookup-table geocoder for tests and offline development."""

    locations: dict = field(default_factory=dict)
    queries: list = field(default_factory=list)

    def geocode(self, query: str) -> Optional[Coordinates]:
        self.queries.append(query)
        return self.locations.get(query)
