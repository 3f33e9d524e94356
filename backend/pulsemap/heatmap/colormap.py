"""
Heat color ramp.

Maps a normalized intensity in [0, 1] to RGBA. The ramp tracks the venue
status vocabulary:

    0.0 - 0.2   very quiet (transparent to faint blue)
    0.2 - 0.4   QUIET (blue)
    0.4 - 0.6   MODERATE (cyan/teal)
    0.6 - 0.8   BUSY (yellow/orange)
    0.8 - 1.0   VERY_BUSY (orange to bright red)
"""

import numpy as np
from typing import NamedTuple


class Color(NamedTuple):
    r: int
    g: int
    b: int
    a: int


# (t, r, g, b, a)
HEAT_STOPS = (
    (0.0, 0, 0, 0, 0),
    (0.05, 50, 80, 200, 120),
    (0.2, 80, 120, 255, 180),
    (0.4, 0, 180, 255, 220),
    (0.6, 0, 220, 180, 240),
    (0.75, 255, 220, 0, 250),
    (0.88, 255, 140, 0, 255),
    (1.0, 255, 40, 40, 255),
)

_STOP_T = np.array([s[0] for s in HEAT_STOPS], dtype=np.float64)
_STOP_RGBA = np.array([s[1:] for s in HEAT_STOPS], dtype=np.float64)


def apply_colormap(intensities: np.ndarray) -> np.ndarray:
    """
    Vectorized color lookup.

    Args:
        intensities: Array of any shape; values are clamped to [0, 1]

    Returns:
        uint8 array of shape intensities.shape + (4,)
    """
    values = np.clip(np.asarray(intensities, dtype=np.float64), 0.0, 1.0)
    rgba = np.empty(values.shape + (4,), dtype=np.uint8)
    for channel in range(4):
        interpolated = np.interp(values, _STOP_T, _STOP_RGBA[:, channel])
        rgba[..., channel] = np.floor(interpolated).astype(np.uint8)
    return rgba


def get_color(intensity: float) -> Color:
    """Color for a single intensity value."""
    r, g, b, a = apply_colormap(np.array([intensity]))[0]
    return Color(int(r), int(g), int(b), int(a))
