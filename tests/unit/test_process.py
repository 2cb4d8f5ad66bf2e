"""
Unit tests for the Terrain-RGB tile transform
"""

import io

import numpy as np
import pytest
from PIL import Image

from gsi_mbtiles.process import decode_gsi_elevation, encode_terrain_rgb, terrain_rgb


def pixels(*rgb):
    return np.array([list(rgb)], dtype=np.uint8)


def png(array):
    out = io.BytesIO()
    Image.fromarray(array).save(out, format="PNG")
    return out.getvalue()


def terrain_height(rgb):
    r, g, b = (int(v) for v in rgb)
    return -10000 + (r * 65536 + g * 256 + b) * 0.1


class TestDecodeGsiElevation:
    """Test cases for GSI dem_png decoding"""

    def test_positive_height(self):
        assert decode_gsi_elevation(pixels((0, 0, 100)))[0, 0] == pytest.approx(1.0)

    def test_large_height(self):
        """3776.24 m, the summit of Mt. Fuji"""
        x = 377624
        rgb = pixels(((x >> 16) & 0xFF, (x >> 8) & 0xFF, x & 0xFF))
        assert decode_gsi_elevation(rgb)[0, 0] == pytest.approx(3776.24)

    def test_negative_height(self):
        assert decode_gsi_elevation(pixels((255, 255, 255)))[0, 0] == pytest.approx(-0.01)

    def test_no_data_is_sea_level(self):
        assert decode_gsi_elevation(pixels((0x80, 0, 0)))[0, 0] == 0.0


class TestEncodeTerrainRgb:
    """Test cases for Terrain-RGB encoding"""

    def test_sea_level(self):
        assert encode_terrain_rgb(np.array([[0.0]]))[0, 0].tolist() == [1, 134, 160]

    def test_rounds_to_decimeter(self):
        rgb = encode_terrain_rgb(np.array([[12.34]]))[0, 0]
        assert terrain_height(rgb) == pytest.approx(12.3)

    def test_clips_below_range(self):
        assert encode_terrain_rgb(np.array([[-20000.0]]))[0, 0].tolist() == [0, 0, 0]

    def test_round_trip_within_precision(self):
        heights = np.array([[-5.5, 0.0, 1.0, 3776.24]])
        encoded = encode_terrain_rgb(heights)
        for expected, rgb in zip(heights[0], encoded[0]):
            assert terrain_height(rgb) == pytest.approx(expected, abs=0.05)


class TestTerrainRgbTile:
    """Test cases for whole-tile conversion"""

    def test_converts_rgb_png(self):
        data = png(np.array([[[0, 0, 100], [0x80, 0, 0]]], dtype=np.uint8))

        out = Image.open(io.BytesIO(terrain_rgb(data)))

        assert out.format == "PNG"
        assert out.mode == "RGBA"
        assert out.size == (2, 1)
        assert terrain_height(out.getpixel((0, 0))[:3]) == pytest.approx(1.0)
        assert out.getpixel((1, 0))[:3] == (1, 134, 160)

    def test_keeps_alpha(self):
        data = png(np.array([[[0, 0, 100, 0], [0, 0, 100, 255]]], dtype=np.uint8))
        out = Image.open(io.BytesIO(terrain_rgb(data)))
        assert out.getpixel((0, 0))[3] == 0
        assert out.getpixel((1, 0))[3] == 255

    def test_rejects_non_image(self):
        with pytest.raises(OSError):
            terrain_rgb(b"not a png")
