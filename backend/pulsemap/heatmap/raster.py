"""
Raster encoding of intensity fields.

Colors an intensity grid, softens it with a Gaussian blur and encodes a
PNG. Encoding favours speed over size: tiles are re-rendered often and
freshness matters more than bytes.
"""

import io
import numpy as np
from PIL import Image, ImageFilter

from .colormap import apply_colormap

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def render_rgba(intensities: np.ndarray) -> np.ndarray:
    """Color a 2-D intensity grid into an (H, W, 4) uint8 buffer."""
    return apply_colormap(intensities)


def encode_png(
    rgba: np.ndarray,
    blur_sigma: float = 0.0,
    compress_level: int = 1,
) -> bytes:
    """
    Encode an RGBA buffer as PNG.

    Args:
        rgba: (H, W, 4) uint8 array
        blur_sigma: Gaussian blur radius in pixels (0 disables)
        compress_level: zlib effort, 0 (none) to 9 (smallest)
    """
    image = Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8))
    if blur_sigma > 0:
        image = image.filter(ImageFilter.GaussianBlur(radius=blur_sigma))

    buffer = io.BytesIO()
    image.save(buffer, format="PNG", compress_level=compress_level)
    return buffer.getvalue()


def render_png(
    intensities: np.ndarray,
    blur_sigma: float = 0.0,
    compress_level: int = 1,
) -> bytes:
    """Intensity grid -> colored, blurred PNG bytes."""
    return encode_png(render_rgba(intensities), blur_sigma, compress_level)
