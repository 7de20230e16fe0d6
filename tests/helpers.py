"""
Builders shared by the unit and integration tests.
"""

import io
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from unittest.mock import Mock

import numpy as np
from PIL import Image

from common.types import CacheSnapshot, PixelGrid, StationDefinition
from kmoni.config import RasterClassConfig
from kmoni.decoder import encode_png
from kmoni.sampler import sample_stations

# 2025-07-21 20:21:59.500 JST
FIXED_NOW = datetime(2025, 7, 21, 11, 21, 59, 500000, tzinfo=timezone.utc)

# The 3x2 grid used throughout: two rows of three RGB pixels
GRID_ROWS = [
    [[10, 20, 30], [40, 50, 60], [70, 80, 90]],
    [[1, 2, 3], [4, 5, 6], [7, 8, 9]],
]

INTENSITY = RasterClassConfig(
    name="intensity",
    path_template="jma_s/{date}/{stamp}.{suffix}",
    suffix="jma_s.gif",
    period_s=1.0,
    clock_offset_ms=-1000,
)
ACCELERATION = RasterClassConfig(
    name="acceleration",
    path_template="acmap_s/{date}/{stamp}.{suffix}",
    suffix="acmap_s.gif",
    period_s=1.0,
    clock_offset_ms=-1000,
)

# Candidates INTENSITY resolves for FIXED_NOW (primary, then one second older)
INTENSITY_PRIMARY = "jma_s/20250721/20250721202158.jma_s.gif"
INTENSITY_FALLBACK = "jma_s/20250721/20250721202157.jma_s.gif"


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_gif(rows=GRID_ROWS) -> bytes:
    """Palette GIF whose palette holds exactly the colors in `rows`."""
    arr = np.asarray(rows, dtype=np.uint8)
    h, w = arr.shape[:2]
    colors: List[tuple] = []
    index = np.zeros((h, w), dtype=np.uint8)
    for y in range(h):
        for x in range(w):
            c = tuple(int(v) for v in arr[y, x])
            if c not in colors:
                colors.append(c)
            index[y, x] = colors.index(c)
    img = Image.new("P", (w, h))
    img.putdata(index.flatten().tolist())
    palette = [v for c in colors for v in c]
    img.putpalette(palette + [0] * (768 - len(palette)))
    buf = io.BytesIO()
    img.save(buf, format="GIF")
    return buf.getvalue()


def make_png(arr: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def station(name, x, y, lat="35.0", lon="139.0", ox=None, oy=None) -> StationDefinition:
    return StationDefinition(name=name, latitude=lat, longitude=lon, pixel_x=x, pixel_y=y, offset_x=ox, offset_y=oy)


def make_snapshot(
    raster_class: str = "intensity",
    rows=GRID_ROWS,
    stations: Optional[Sequence[StationDefinition]] = None,
    identifier: str = INTENSITY_PRIMARY,
    fetched_at: datetime = FIXED_NOW,
) -> CacheSnapshot:
    grid = PixelGrid.from_rows(rows)
    stations = stations if stations is not None else [station("A", 1, 0)]
    return CacheSnapshot(
        raster_class=raster_class,
        stations=tuple(sample_stations(grid, stations)),
        raw_image=grid,
        image_png=encode_png(grid),
        fetched_at=fetched_at,
        source_identifier=identifier,
    )


def mock_response(status_code: int = 200, content: bytes = b"", content_type: str = "image/gif") -> Mock:
    r = Mock()
    r.status_code = status_code
    r.content = content
    r.headers = {"Content-Type": content_type}
    return r


def mock_session(responses: Dict[str, object]) -> Mock:
    """
    requests.Session stand-in. `responses` maps a URL suffix to either a
    response Mock or an exception instance to raise; unknown URLs get a 404.
    """
    session = Mock()
    session.headers = {}

    def _get(url, timeout=None):
        for suffix, resp in responses.items():
            if url.endswith(suffix):
                if isinstance(resp, BaseException):
                    raise resp
                return resp
        return mock_response(404)

    session.get.side_effect = _get
    return session
