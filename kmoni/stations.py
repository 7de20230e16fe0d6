from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from common.types import StationDefinition


# Column letters used by the published kmoni station table
DEFAULT_COLUMNS: Dict[str, str] = {
    "name": "E",
    "longitude": "I",
    "latitude": "J",
    "pixel_x": "K",
    "pixel_y": "L",
}


def load_stations(path: str, columns: Optional[Mapping[str, str]] = None) -> List[StationDefinition]:
    """
    Load station definitions from a CSV file with a header row.

    `columns` maps StationDefinition fields to CSV header names; `offset_x` and
    `offset_y` are optional. Values are kept as strings so a bad row only drops
    that station at sampling time. Fully blank rows are skipped.
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Station CSV not found: {path}")
    cols = dict(DEFAULT_COLUMNS)
    cols.update(columns or {})

    out: List[StationDefinition] = []
    with open(path, newline="", encoding="utf-8-sig") as f:
        r = csv.DictReader(f)
        for row in r:
            if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
                continue
            out.append(
                StationDefinition(
                    name=(row.get(cols["name"]) or "").strip(),
                    latitude=row.get(cols["latitude"]),
                    longitude=row.get(cols["longitude"]),
                    pixel_x=row.get(cols["pixel_x"]),
                    pixel_y=row.get(cols["pixel_y"]),
                    offset_x=row.get(cols["offset_x"]) if "offset_x" in cols else None,
                    offset_y=row.get(cols["offset_y"]) if "offset_y" in cols else None,
                )
            )
    return out
