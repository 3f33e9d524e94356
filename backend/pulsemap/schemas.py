"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime


# --- Geographic bounds ---

class BoundsParams(BaseModel):
    """Geographic bounding box for precomputation."""
    north: float = Field(default=-27.35, ge=-85, le=85)
    south: float = Field(default=-27.55, ge=-85, le=85)
    east: float = Field(default=153.15, ge=-180, le=180)
    west: float = Field(default=152.95, ge=-180, le=180)

    @field_validator('south')
    @classmethod
    def validate_lat_range(cls, v, info):
        if 'north' in info.data and v >= info.data['north']:
            raise ValueError("north must be greater than south")
        return v

    @field_validator('west')
    @classmethod
    def validate_lon_range(cls, v, info):
        if 'east' in info.data and v >= info.data['east']:
            raise ValueError("east must be greater than west")
        return v


# --- Grid output ---

class GridCellSchema(BaseModel):
    """Single coarse grid sample."""
    lat: float
    lng: float
    intensity: float = Field(ge=0.0, le=1.0)


class GridResponse(BaseModel):
    """Coarse numeric heat map for one tile."""
    zoom: int
    x: int
    y: int
    cells: List[GridCellSchema]
    timestamp: datetime


# --- Venues ---

class HeatmapVenue(BaseModel):
    """Active venue as seen by the heat map."""
    id: str
    name: Optional[str] = None
    latitude: float
    longitude: float
    capacity: int
    occupancy: int
    rating: Optional[float] = None
    status: str


class VenueListResponse(BaseModel):
    venues: List[HeatmapVenue]
    count: int
    timestamp: datetime


# --- Precomputation ---

class PrecomputeRequest(BaseModel):
    """Manual precompute trigger."""
    bounds: Optional[BoundsParams] = None
    zoom_levels: Optional[List[int]] = Field(
        default=None,
        description="Zoom levels to render; defaults to the configured range"
    )


class PrecomputeResponse(BaseModel):
    status: str  # "started" or "already_running"
    bounds: BoundsParams
    zoom_levels: List[int]


class PrecomputeStatus(BaseModel):
    is_precomputing: bool
    last_precompute_time: Optional[datetime] = None
    last_tile_count: int = 0
    last_duration_seconds: Optional[float] = None
    refresh_interval_active: bool
    refresh_interval_seconds: int


# --- General Responses ---

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    precompute: Optional[PrecomputeStatus] = None


class ErrorResponse(BaseModel):
    """Error response format."""
    detail: str
    error_code: Optional[str] = None
