"""
Tile processing applied between download and storage.
Converts GSI elevation PNG tiles to Mapbox Terrain-RGB encoding.
"""

import io

import numpy as np
from PIL import Image


# GSI dem_png: 24-bit value x in 0.01 m steps, two's complement, 2^23 = no data
GSI_NODATA = 2 ** 23

# Terrain-RGB: height = -10000 + (R * 65536 + G * 256 + B) * 0.1
TERRAIN_RGB_OFFSET_M = 10000.0
TERRAIN_RGB_SCALE = 10.0


def decode_gsi_elevation(rgb: np.ndarray) -> np.ndarray:
    """
    Decode GSI elevation PNG pixels to heights in meters.

    Args:
        rgb: uint8 array of shape (H, W, 3)

    Returns:
        float64 array of shape (H, W); no-data pixels become 0.0
    """
    rgb = rgb.astype(np.int64)
    x = (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]
    x = np.where(x < GSI_NODATA, x, x - 2 ** 24)
    heights = x * 0.01
    heights[x == -GSI_NODATA] = 0.0
    return heights


def encode_terrain_rgb(heights: np.ndarray) -> np.ndarray:
    """
    Encode heights in meters as Terrain-RGB pixels.

    Args:
        heights: float array of shape (H, W)

    Returns:
        uint8 array of shape (H, W, 3)
    """
    # Round half up, matching the reference encoder
    value = np.floor(TERRAIN_RGB_SCALE * (heights + TERRAIN_RGB_OFFSET_M) + 0.5)
    value = np.clip(value, 0, 2 ** 24 - 1).astype(np.int64)
    out = np.empty(heights.shape + (3,), dtype=np.uint8)
    out[..., 0] = (value >> 16) & 0xFF
    out[..., 1] = (value >> 8) & 0xFF
    out[..., 2] = value & 0xFF
    return out


def terrain_rgb(png_data: bytes) -> bytes:
    """
    Full conversion for a single GSI dem_png tile.

    1. Load PNG as RGBA
    2. Decode GSI heights from RGB
    3. Re-encode as Terrain-RGB, keeping alpha
    4. Write PNG

    Args:
        png_data: Raw PNG image data as served by GSI

    Returns:
        PNG image data in Terrain-RGB encoding
    """
    img = Image.open(io.BytesIO(png_data)).convert("RGBA")
    pixels = np.array(img, dtype=np.uint8)

    heights = decode_gsi_elevation(pixels[..., :3])
    pixels[..., :3] = encode_terrain_rgb(heights)

    out = io.BytesIO()
    Image.fromarray(pixels).save(out, format="PNG")
    return out.getvalue()
