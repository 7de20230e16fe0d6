from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from common.types import PixelGrid, SampledStation, StationDefinition
from common.utils import parse_number, round_half_up


log = logging.getLogger(__name__)


def corrected_pixel(st: StationDefinition) -> Optional[tuple]:
    """
    Rounded (x, y) after adding the station's offsets, or None if any
    coordinate field does not parse as a finite number.
    """
    px = parse_number(st.pixel_x)
    py = parse_number(st.pixel_y)
    if px is None or py is None:
        return None
    # a blank offset means no correction; a non-numeric one is a bad row
    ox = 0.0 if _blank(st.offset_x) else parse_number(st.offset_x)
    oy = 0.0 if _blank(st.offset_y) else parse_number(st.offset_y)
    if ox is None or oy is None:
        return None
    x, y = px + ox, py + oy
    # two huge finite values can still sum to inf
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return round_half_up(x), round_half_up(y)


def _blank(v) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def sample_station(grid: PixelGrid, st: StationDefinition) -> Optional[SampledStation]:
    lat = parse_number(st.latitude)
    lon = parse_number(st.longitude)
    xy = corrected_pixel(st)
    if lat is None or lon is None or xy is None:
        log.debug("station %r excluded: non-numeric field", st.name)
        return None
    x, y = xy
    if not grid.contains(x, y):
        return None
    return SampledStation(
        name=st.name,
        latitude=lat,
        longitude=lon,
        pixel_x=x,
        pixel_y=y,
        color=grid.rgb_at(x, y),
    )


def sample_stations(grid: PixelGrid, stations: Iterable[StationDefinition]) -> List[SampledStation]:
    """
    Read the pixel under every station that lands on the grid.

    Stations off the grid or with unparsable fields are skipped; output keeps
    input order. No interpolation: the color is the single pixel at the
    corrected coordinate.
    """
    out: List[SampledStation] = []
    for st in stations:
        s = sample_station(grid, st)
        if s is not None:
            out.append(s)
    return out
