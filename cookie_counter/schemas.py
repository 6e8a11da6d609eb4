"""
Pydantic schemas for the cookie counter API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TypeCount(BaseModel):
    type: str
    count: int


class LocationView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    city: str
    state: str
    country: str
    cookie_type: str = Field(..., alias="cookieType")
    cookies: int
    timestamp: datetime
    photo: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CookieStatsResponse(BaseModel):
    total: int
    types: list[TypeCount]
    locations: list[LocationView]


class HealthResponse(BaseModel):
    status: Literal["ok"]
