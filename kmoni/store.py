from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

from common.errors import UnknownRasterClass
from common.types import CacheSnapshot


class CacheStore:
    """
    Latest good snapshot per raster class, held in memory for the process lifetime.

        slots: { "intensity": CacheSnapshot | None, "acceleration": ... }

    `publish` swaps a slot's reference in one assignment, so a concurrent
    `read` gets either the old snapshot or the new one, never a mix. Readers
    take no lock. The writer lock only serializes publishers.
    """
    def __init__(self, raster_classes: Iterable[str]):
        self._slots: Dict[str, Optional[CacheSnapshot]] = {str(c): None for c in raster_classes}
        if not self._slots:
            raise ValueError("CacheStore needs at least one raster class")
        self._write_lock = threading.Lock()

    # -------- public API --------

    def publish(self, raster_class: str, snapshot: CacheSnapshot) -> None:
        self._check(raster_class)
        if snapshot.raster_class != raster_class:
            raise ValueError(
                f"snapshot for {snapshot.raster_class!r} published into {raster_class!r}"
            )
        with self._write_lock:
            self._slots[raster_class] = snapshot

    def read(self, raster_class: str) -> Optional[CacheSnapshot]:
        """Current snapshot, or None if the class has never been populated."""
        self._check(raster_class)
        return self._slots[raster_class]

    def is_populated(self, raster_class: str) -> bool:
        return self.read(raster_class) is not None

    def classes(self) -> List[str]:
        return list(self._slots)

    def stats(self) -> Dict[str, Dict]:
        out: Dict[str, Dict] = {}
        for c in self._slots:
            snap = self._slots[c]
            out[c] = {"populated": False} if snap is None else {"populated": True, **snap.to_meta()}
        return out

    # -------- internals --------

    def _check(self, raster_class: str) -> None:
        if raster_class not in self._slots:
            raise UnknownRasterClass(raster_class)
