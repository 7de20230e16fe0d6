"""
Unit tests for the snapshot cache store
"""

import os
import sys
import threading

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import UnknownRasterClass
from common.types import CacheSnapshot, PixelGrid
from kmoni.sampler import sample_stations
from kmoni.store import CacheStore
from tests.helpers import make_snapshot, station


class TestCacheStore:
    """Test cases for CacheStore"""

    def test_starts_empty(self):
        """Every class reads as not populated before the first publish"""
        store = CacheStore(["intensity", "acceleration"])
        assert store.read("intensity") is None
        assert store.read("acceleration") is None
        assert not store.is_populated("intensity")

    def test_publish_then_read(self):
        """read returns exactly the published snapshot"""
        store = CacheStore(["intensity"])
        snap = make_snapshot()
        store.publish("intensity", snap)
        assert store.read("intensity") is snap

    def test_publish_replaces(self):
        """A later publish replaces the slot whole"""
        store = CacheStore(["intensity"])
        first = make_snapshot(identifier="a")
        second = make_snapshot(identifier="b")
        store.publish("intensity", first)
        store.publish("intensity", second)
        assert store.read("intensity") is second

    def test_classes_are_independent(self):
        """Publishing one class leaves the others alone"""
        store = CacheStore(["intensity", "acceleration"])
        store.publish("intensity", make_snapshot())
        assert store.read("acceleration") is None

    def test_unknown_class(self):
        """Unknown classes raise UnknownRasterClass on read and publish"""
        store = CacheStore(["intensity"])
        with pytest.raises(UnknownRasterClass):
            store.read("nope")
        with pytest.raises(UnknownRasterClass):
            store.publish("nope", make_snapshot(raster_class="nope"))

    def test_class_mismatch(self):
        """A snapshot can only go into its own class slot"""
        store = CacheStore(["intensity", "acceleration"])
        with pytest.raises(ValueError):
            store.publish("acceleration", make_snapshot(raster_class="intensity"))
        assert store.read("acceleration") is None

    def test_needs_a_class(self):
        """An empty class list is rejected"""
        with pytest.raises(ValueError):
            CacheStore([])

    def test_stats(self):
        """stats() reports population and snapshot metadata"""
        store = CacheStore(["intensity", "acceleration"])
        store.publish("intensity", make_snapshot(identifier="jma_s/x.gif"))
        s = store.stats()
        assert s["acceleration"] == {"populated": False}
        assert s["intensity"]["populated"] is True
        assert s["intensity"]["source_identifier"] == "jma_s/x.gif"
        assert s["intensity"]["count"] == 1
        assert (s["intensity"]["width"], s["intensity"]["height"]) == (3, 2)

    def test_concurrent_publish_read_never_tears(self):
        """Readers racing a publisher always see stations, image and identifier from one cycle"""
        store = CacheStore(["intensity"])
        sts = [station("A", 0, 0), station("B", 1, 1)]

        def snap_for(i: int) -> CacheSnapshot:
            v = i % 256
            g = PixelGrid(width=2, height=2, pixels=np.full((2, 2, 3), v, dtype=np.uint8))
            return CacheSnapshot(
                raster_class="intensity",
                stations=tuple(sample_stations(g, sts)),
                raw_image=g,
                image_png=b"png-%d" % i,
                fetched_at=None,
                source_identifier=f"id-{i}",
            )

        snaps = [snap_for(i) for i in range(300)]
        stop = threading.Event()
        errors = []

        def writer():
            for s in snaps:
                store.publish("intensity", s)
            stop.set()

        def reader():
            while not stop.is_set():
                s = store.read("intensity")
                if s is None:
                    continue
                i = int(s.source_identifier.split("-")[1])
                v = int(s.raw_image.pixels[0, 0, 0])
                for st in s.stations:
                    if st.color.r != v:
                        errors.append(("color", i, st.color.r, v))
                if v != i % 256 or s.image_png != b"png-%d" % i:
                    errors.append(("image", i, v))

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        w = threading.Thread(target=writer)
        w.start()
        w.join(timeout=10)
        stop.set()
        for t in readers:
            t.join(timeout=10)

        assert errors == []
        assert store.read("intensity") is snaps[-1]
