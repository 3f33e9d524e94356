"""
Venue samples and the occupancy weighting model.

A VenueSample is a point-in-time snapshot of one venue: where it is, how
big it is and how many people are inside right now. The KDE engine turns
each active sample into a weighted Gaussian kernel whose height and spread
both grow with the crowd.
"""

import hashlib
from dataclasses import dataclass
from typing import Iterable, Optional

# Occupancy that counts as one "unit" of absolute crowd size
CROWD_UNIT = 200.0

# (upper bound on occupancy ratio, bandwidth multiplier)
BLOOM_STEPS = (
    (0.3, 0.7),
    (0.6, 1.0),
    (0.9, 1.3),
)
MAX_BLOOM_MULTIPLIER = 1.6

# (upper bound on occupancy ratio, status)
STATUS_STEPS = (
    (0.3, "QUIET"),
    (0.6, "MODERATE"),
    (0.8, "BUSY"),
)


@dataclass(frozen=True)
class VenueSample:
    """Current occupancy snapshot of a single venue."""
    id: str
    longitude: float
    latitude: float
    capacity: int
    occupancy: int
    rating: Optional[float] = None
    name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.capacity > 0 and self.occupancy > 0

    @property
    def occupancy_ratio(self) -> float:
        """Percent-full in [0, 1]; inconsistent data above capacity is clamped."""
        if self.capacity <= 0:
            return 0.0
        return min(self.occupancy / self.capacity, 1.0)

    @property
    def weight(self) -> float:
        return venue_weight(self.occupancy, self.capacity)

    @property
    def bloom_multiplier(self) -> float:
        return bloom_multiplier(self.occupancy_ratio)

    @property
    def status(self) -> str:
        return venue_status(self.occupancy, self.capacity)


def venue_weight(occupancy: int, capacity: int) -> float:
    """
    Kernel weight of a venue.

    Blends absolute crowd size with percent-full:

        weight = (occupancy / 200) * (0.5 + 0.5 * min(occupancy / capacity, 1))

    so a large venue with many people outweighs a tiny venue that is
    merely full.
    """
    if capacity <= 0 or occupancy <= 0:
        return 0.0
    ratio = min(occupancy / capacity, 1.0)
    return (occupancy / CROWD_UNIT) * (0.5 + 0.5 * ratio)


def bloom_multiplier(ratio: float) -> float:
    """Bandwidth multiplier for an occupancy ratio; busier venues glow larger."""
    for upper, multiplier in BLOOM_STEPS:
        if ratio < upper:
            return multiplier
    return MAX_BLOOM_MULTIPLIER


def venue_status(occupancy: int, capacity: int) -> str:
    """Four-level busyness vocabulary shared with the color map."""
    if capacity <= 0 or occupancy <= 0:
        return "QUIET"
    ratio = occupancy / capacity
    for upper, status in STATUS_STEPS:
        if ratio < upper:
            return status
    return "VERY_BUSY"


def active_venues(venues: Iterable[VenueSample]) -> list:
    """Venues that contribute to the heat map (capacity > 0, occupancy > 0)."""
    return [v for v in venues if v.is_active]


def compute_venue_hash(venues: Iterable[VenueSample]) -> str:
    """
    Fingerprint of the active venues' occupancy.

    Any change in who is active or how many people they hold changes the
    hash, which invalidates persisted tiles rendered from older data.
    """
    parts = sorted(f"{v.id}:{v.occupancy}" for v in venues if v.is_active)
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:16]
