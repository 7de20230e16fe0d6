from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np


IsoTime = str
RawValue = Union[str, float, int, None]


@dataclass(frozen=True)
class StationDefinition:
    """
    One sample point, loaded once at startup.

    Attributes:
        name: station label (not guaranteed unique).
        latitude, longitude: WGS84 degrees, as loaded.
        pixel_x, pixel_y: pixel coordinate on the published map, as loaded.
        offset_x, offset_y: optional sub-pixel correction added before rounding.

    Values are kept as they came from the station file; numeric parsing is
    deferred to the sampler so a malformed row only drops that station.
    """
    name: str
    latitude: RawValue
    longitude: RawValue
    pixel_x: RawValue
    pixel_y: RawValue
    offset_x: RawValue = None
    offset_y: RawValue = None


@dataclass(frozen=True)
class RGB:
    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        for ch in (self.r, self.g, self.b):
            if not 0 <= int(ch) <= 255:
                raise ValueError("RGB channel out of range [0,255]")

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def to_dict(self) -> Dict[str, int]:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class SampledStation:
    """Color reading for one station, produced fresh each refresh cycle."""
    name: str
    latitude: float
    longitude: float
    pixel_x: int
    pixel_y: int
    color: RGB

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "lat": self.latitude,
            "lon": self.longitude,
            "x": self.pixel_x,
            "y": self.pixel_y,
            "color": self.color.to_dict(),
            "hex": self.color.hex,
        }


@dataclass(slots=True)
class PixelGrid:
    """
    Decoded raster, normalized to RGB.

    Attributes:
        width, height: image dimensions in pixels.
        pixels: np.ndarray of shape (H,W,3), dtype uint8.
    """
    width: int
    height: int
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.pixels, np.ndarray):
            raise TypeError("pixels must be a numpy ndarray")
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 3:
            raise ValueError("pixels must have shape (H,W,3)")
        if self.pixels.shape[0] != self.height or self.pixels.shape[1] != self.width:
            raise ValueError("width/height do not match pixel shape")
        if self.pixels.dtype != np.uint8:
            self.pixels = self.pixels.astype(np.uint8, copy=False)
        # published snapshots share this array with every reader
        self.pixels.flags.writeable = False

    @classmethod
    def from_rows(cls, rows) -> "PixelGrid":
        """Build a grid from nested [[r,g,b], ...] rows (top row first)."""
        arr = np.asarray(rows, dtype=np.uint8)
        return cls(width=int(arr.shape[1]), height=int(arr.shape[0]), pixels=arr)

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def rgb_at(self, x: int, y: int) -> RGB:
        r, g, b = self.pixels[y, x]
        return RGB(int(r), int(g), int(b))

    def tobytes(self) -> bytes:
        """Flat row-major RGB buffer."""
        return self.pixels.tobytes()


@dataclass(frozen=True)
class CacheSnapshot:
    """
    Result of one successful refresh cycle for a raster class.

    `stations` were sampled from `raw_image`, which was decoded from the
    artifact named by `source_identifier`. The store only ever swaps whole
    snapshots, so these fields are always observed together.
    """
    raster_class: str
    stations: Tuple[SampledStation, ...]
    raw_image: PixelGrid = field(repr=False)
    image_png: bytes = field(repr=False)
    fetched_at: datetime
    source_identifier: str

    @property
    def station_count(self) -> int:
        return len(self.stations)

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without image bytes (safe to log/serialize)."""
        return {
            "raster_class": self.raster_class,
            "source_identifier": self.source_identifier,
            "fetched_at": to_iso(self.fetched_at),
            "count": self.station_count,
            "width": self.raw_image.width,
            "height": self.raw_image.height,
        }


# Refresh cycle states
IDLE = "IDLE"
FETCHING = "FETCHING"
PUBLISHING = "PUBLISHING"
FAILED = "FAILED"


@dataclass(frozen=True)
class ClassStatus:
    """Observability record for one raster class; replaced whole on every change."""
    raster_class: str
    state: str = IDLE
    last_success_at: Optional[datetime] = None
    last_attempted_identifier: Optional[str] = None
    last_source_identifier: Optional[str] = None
    station_count: int = 0
    last_error: Optional[Dict[str, Any]] = None
    cycles_ok: int = 0
    cycles_failed: int = 0
    ticks_skipped: int = 0
    cycle_ms_mean: float = 0.0
    cycle_ms_std: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "last_success_at": to_iso(self.last_success_at),
            "last_attempted_identifier": self.last_attempted_identifier,
            "last_source_identifier": self.last_source_identifier,
            "station_count": self.station_count,
            "last_error": self.last_error,
            "cycles_ok": self.cycles_ok,
            "cycles_failed": self.cycles_failed,
            "ticks_skipped": self.ticks_skipped,
            "cycle_ms_mean": round(self.cycle_ms_mean, 3),
            "cycle_ms_std": round(self.cycle_ms_std, 3),
        }


def to_iso(ts: Optional[datetime]) -> Optional[IsoTime]:
    if ts is None:
        return None
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")
