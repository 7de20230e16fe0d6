from __future__ import annotations

import io

import numpy as np
from PIL import Image

from common.errors import DecodeFailure
from common.types import PixelGrid


def decode_raster(data: bytes) -> PixelGrid:
    """
    Decode GIF/PNG/JPEG bytes into an RGB PixelGrid.
    Palette, grayscale and alpha images are converted to plain RGB (alpha dropped).
    """
    if not data:
        raise DecodeFailure("empty artifact")
    try:
        with Image.open(io.BytesIO(data)) as img:
            # kmoni GIFs are single frame; take the first if there are more
            img.seek(0)
            rgb = img.convert("RGB")
            arr = np.asarray(rgb, dtype=np.uint8)
    except Exception as e:
        raise DecodeFailure(f"cannot decode artifact: {e}") from e
    if arr.ndim != 3 or arr.shape[0] == 0 or arr.shape[1] == 0:
        raise DecodeFailure(f"unexpected decoded shape {arr.shape}")
    return PixelGrid(width=int(arr.shape[1]), height=int(arr.shape[0]), pixels=arr.copy())


def encode_png(grid: PixelGrid) -> bytes:
    """PNG bytes for the raw-image route."""
    buf = io.BytesIO()
    Image.fromarray(grid.pixels).save(buf, format="PNG")
    return buf.getvalue()
