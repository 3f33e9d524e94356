"""
Database models for PulseMap.
"""

from sqlalchemy import (
    Column, Integer, Float, String, DateTime, LargeBinary, UniqueConstraint,
)
from sqlalchemy.sql import func
from geoalchemy2 import Geometry

from .database import Base


class Venue(Base):
    """
    A nightlife venue and its live occupancy.

    Owned by the wider application; the heat map only reads the
    location, capacity and current occupancy columns.
    """
    __tablename__ = "venues"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    capacity = Column(Integer, nullable=False, default=0)
    current_occupancy = Column(Integer, nullable=False, default=0)
    rating = Column(Float, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # PostGIS geometry column for efficient spatial queries
    location = Column(
        Geometry(geometry_type="POINT", srid=4326),
        nullable=True
    )

    def __repr__(self):
        return (
            f"<Venue(id={self.id}, occupancy={self.current_occupancy}/"
            f"{self.capacity})>"
        )


class HeatMapTile(Base):
    """
    Persistent tier of the tile cache.

    A row is valid only while it has not expired and its venue_hash
    matches the hash of the current occupancy data.
    """
    __tablename__ = "heatmap_tiles"
    __table_args__ = (
        UniqueConstraint("zoom", "x", "y", name="uq_heatmap_tiles_zxy"),
    )

    id = Column(Integer, primary_key=True, index=True)
    zoom = Column(Integer, nullable=False)
    x = Column(Integer, nullable=False)
    y = Column(Integer, nullable=False)

    png = Column(LargeBinary, nullable=False)
    venue_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    # Hit bookkeeping
    hit_count = Column(Integer, nullable=False, default=0)
    last_hit_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<HeatMapTile({self.zoom}/{self.x}/{self.y}, hash={self.venue_hash})>"
