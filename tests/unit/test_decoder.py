"""
Unit tests for the raster decoder boundary
"""

import io
import os
import sys

import numpy as np
import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import DecodeFailure
from common.types import RGB, PixelGrid
from kmoni.decoder import decode_raster, encode_png
from tests.helpers import GRID_ROWS, make_gif, make_png


class TestDecodeRaster:
    """Test cases for decode_raster"""

    def test_palette_gif(self):
        """Palette GIF decodes to the exact RGB values"""
        grid = decode_raster(make_gif())
        assert (grid.width, grid.height) == (3, 2)
        assert grid.pixels.dtype == np.uint8
        np.testing.assert_array_equal(grid.pixels, np.asarray(GRID_ROWS, dtype=np.uint8))

    def test_rgba_png_alpha_stripped(self):
        """Alpha channel is dropped at the boundary"""
        arr = np.zeros((4, 5, 4), dtype=np.uint8)
        arr[..., 0] = 200
        arr[..., 3] = 17
        grid = decode_raster(make_png(arr))
        assert grid.pixels.shape == (4, 5, 3)
        assert grid.rgb_at(0, 0).r == 200

    def test_grayscale_png(self):
        """Grayscale expands to three equal channels"""
        arr = np.full((2, 2), 99, dtype=np.uint8)
        grid = decode_raster(make_png(arr))
        assert grid.rgb_at(1, 1).to_dict() == {"r": 99, "g": 99, "b": 99}

    def test_garbage_bytes(self):
        """Non-image bytes raise DecodeFailure"""
        with pytest.raises(DecodeFailure):
            decode_raster(b"<html>404 Not Found</html>")

    def test_truncated_image(self):
        """A cut-off GIF raises DecodeFailure"""
        data = make_gif()
        with pytest.raises(DecodeFailure):
            decode_raster(data[: len(data) // 2])

    def test_empty(self):
        """Empty input raises DecodeFailure"""
        with pytest.raises(DecodeFailure):
            decode_raster(b"")


class TestEncodePng:
    """Test cases for encode_png"""

    def test_png_matches_grid(self):
        """The served PNG carries the same pixels as the grid"""
        grid = PixelGrid.from_rows(GRID_ROWS)
        data = encode_png(grid)
        assert data.startswith(b"\x89PNG")
        img = Image.open(io.BytesIO(data))
        assert img.size == (3, 2)
        np.testing.assert_array_equal(np.asarray(img.convert("RGB")), grid.pixels)


class TestPixelGrid:
    """Test cases for the PixelGrid record"""

    def test_shape_validation(self):
        """width/height must match the array"""
        with pytest.raises(ValueError):
            PixelGrid(width=4, height=2, pixels=np.zeros((2, 3, 3), dtype=np.uint8))

    def test_channels_validation(self):
        """Only RGB grids are accepted"""
        with pytest.raises(ValueError):
            PixelGrid(width=3, height=2, pixels=np.zeros((2, 3, 4), dtype=np.uint8))

    def test_not_ndarray(self):
        """pixels must be an ndarray"""
        with pytest.raises(TypeError):
            PixelGrid(width=1, height=1, pixels=[[[0, 0, 0]]])

    def test_pixels_read_only(self):
        """A grid cannot be modified in place once built"""
        grid = PixelGrid.from_rows(GRID_ROWS)
        with pytest.raises(ValueError):
            grid.pixels[0, 0, 0] = 255
        decoded = decode_raster(make_gif())
        with pytest.raises(ValueError):
            decoded.pixels[0, 0] = [0, 0, 0]
        assert decoded.rgb_at(0, 0) == RGB(10, 20, 30)

    def test_flat_buffer(self):
        """tobytes() is row-major RGB"""
        grid = PixelGrid.from_rows(GRID_ROWS)
        buf = grid.tobytes()
        assert len(buf) == 3 * 2 * 3
        assert list(buf[3:6]) == [40, 50, 60]
