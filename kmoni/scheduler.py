from __future__ import annotations

"""
Background refresh of every raster class.

One ticker thread per class fires on a fixed period (first tick immediately).
Each tick starts a refresh cycle on its own worker thread unless the previous
cycle for that class is still running, in which case the tick is skipped:

    IDLE -> FETCHING -> PUBLISHING -> IDLE
    IDLE -> FETCHING -> FAILED -> IDLE

A failed cycle never touches the store, so readers keep the last good
snapshot. Classes share nothing but the store object; each has its own guard
and status record.

Usage:
    sched = RefreshScheduler(store, fetcher, cfg.enabled_classes, stations)
    sched.start()
    ...
    sched.stop()
"""

import dataclasses
import logging
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from common.errors import FallbackExhausted, NotYetPublished, RefreshError, UnknownRasterClass
from common.types import (
    FAILED,
    FETCHING,
    IDLE,
    PUBLISHING,
    CacheSnapshot,
    ClassStatus,
    PixelGrid,
    SampledStation,
    StationDefinition,
)
from common.utils import Clock, RunningStats, Stopwatch, utc_now
from kmoni.config import RasterClassConfig
from kmoni.decoder import decode_raster, encode_png
from kmoni.fetcher import SourceFetcher
from kmoni.sampler import sample_stations
from kmoni.store import CacheStore
from kmoni.timestamps import TimestampResolver


log = logging.getLogger(__name__)

Decoder = Callable[[bytes], PixelGrid]
Sampler = Callable[[PixelGrid, Sequence[StationDefinition]], List[SampledStation]]
Encoder = Callable[[PixelGrid], bytes]


class _ClassWorker:
    """Per-class state. Nothing here is shared with other classes."""

    def __init__(self, cfg: RasterClassConfig):
        self.cfg = cfg
        self.resolver = TimestampResolver(cfg)
        self.guard = threading.Lock()          # held for the whole cycle
        self.status_lock = threading.Lock()    # serializes status replacement
        self.status = ClassStatus(raster_class=cfg.name)
        self.durations = RunningStats()
        self.ticker: Optional[threading.Thread] = None
        self.cycle_thread: Optional[threading.Thread] = None

    def update(self, **changes) -> ClassStatus:
        with self.status_lock:
            self.status = dataclasses.replace(self.status, **changes)
            return self.status


class RefreshScheduler:
    def __init__(
        self,
        store: CacheStore,
        fetcher: SourceFetcher,
        classes: Mapping[str, RasterClassConfig],
        stations: Sequence[StationDefinition],
        *,
        clock: Clock = utc_now,
        decoder: Decoder = decode_raster,
        sampler: Sampler = sample_stations,
        encoder: Encoder = encode_png,
    ):
        """
        Params:
            store: cache the scheduler publishes into (sole writer)
            fetcher: upstream fetcher shared by all classes (stateless apart from its session)
            classes: raster class configs to refresh, keyed by name
            stations: station definitions sampled on every cycle
            clock: returns "now" as an aware datetime; injectable for tests
        """
        self.store = store
        self.fetcher = fetcher
        self.stations = tuple(stations)
        self.clock = clock
        self.decoder = decoder
        self.sampler = sampler
        self.encoder = encoder
        self._workers: Dict[str, _ClassWorker] = {name: _ClassWorker(c) for name, c in classes.items()}
        self._stop = threading.Event()
        self._start_lock = threading.Lock()
        self._started = False

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def start(self) -> None:
        with self._start_lock:
            if self._started:
                return
            self._started = True
            self._stop.clear()
            for name, w in self._workers.items():
                w.ticker = threading.Thread(target=self._tick_loop, args=(w,), name=f"refresh-{name}", daemon=True)
                w.ticker.start()
        log.info("refresh scheduler started", extra={"extra": {"classes": list(self._workers)}})

    def stop(self, timeout: float = 5.0) -> None:
        """Stop ticking; cycles already in flight are allowed to finish (bounded by `timeout`)."""
        with self._start_lock:
            if not self._started:
                return
            self._stop.set()
            for w in self._workers.values():
                if w.ticker is not None:
                    w.ticker.join(timeout=timeout)
                t = w.cycle_thread
                if t is not None and t.is_alive():
                    t.join(timeout=timeout)
            self._started = False
        log.info("refresh scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started

    # ----------------------------
    # Ticks & cycles
    # ----------------------------
    def tick(self, raster_class: str) -> bool:
        """
        Start a cycle on a worker thread unless one is already in flight.
        Returns True if a cycle was started, False if the tick was skipped.
        """
        w = self._worker(raster_class)
        if not w.guard.acquire(blocking=False):
            self._skipped(w)
            return False

        def _run() -> None:
            try:
                self._cycle(w)
            finally:
                w.guard.release()

        w.cycle_thread = threading.Thread(target=_run, name=f"cycle-{raster_class}", daemon=True)
        w.cycle_thread.start()
        return True

    def run_cycle(self, raster_class: str) -> bool:
        """Run one guarded cycle on the calling thread. True if a snapshot was published."""
        w = self._worker(raster_class)
        if not w.guard.acquire(blocking=False):
            self._skipped(w)
            return False
        try:
            return self._cycle(w)
        finally:
            w.guard.release()

    def _tick_loop(self, w: _ClassWorker) -> None:
        period = float(w.cfg.period_s)
        next_t = time.monotonic()
        while not self._stop.is_set():
            self.tick(w.cfg.name)
            next_t += period
            # behind schedule (e.g. suspended process): realign instead of bursting
            now = time.monotonic()
            if next_t < now:
                next_t = now
            if self._stop.wait(next_t - now):
                break

    def _cycle(self, w: _ClassWorker) -> bool:
        name = w.cfg.name
        with Stopwatch() as sw:
            try:
                candidates = w.resolver.candidates(self.clock())
                w.update(state=FETCHING, last_attempted_identifier=candidates[0])

                res = self.fetcher.fetch(candidates)
                fetched_at = self.clock()
                w.update(last_attempted_identifier=res.identifier)

                grid = self.decoder(res.content)
                sampled = tuple(self.sampler(grid, self.stations))
                snapshot = CacheSnapshot(
                    raster_class=name,
                    stations=sampled,
                    raw_image=grid,
                    image_png=self.encoder(grid),
                    fetched_at=fetched_at,
                    source_identifier=res.identifier,
                )

                w.update(state=PUBLISHING)
                self.store.publish(name, snapshot)
            except RefreshError as e:
                error = e
            except Exception as e:
                log.exception("unexpected error refreshing %s", name)
                error = e
            else:
                error = None

        w.durations.add(sw.ms)
        if error is None:
            st = w.update(
                state=IDLE,
                last_success_at=snapshot.fetched_at,
                last_source_identifier=snapshot.source_identifier,
                station_count=snapshot.station_count,
                cycles_ok=w.status.cycles_ok + 1,
                cycle_ms_mean=w.durations.mean,
                cycle_ms_std=w.durations.std,
            )
            log.debug(
                "published %s from %s (%d stations)", name, snapshot.source_identifier, st.station_count
            )
            return True

        self._failed(w, error)
        return False

    # ----------------------------
    # Status
    # ----------------------------
    def status(self) -> Dict[str, ClassStatus]:
        return {name: w.status for name, w in self._workers.items()}

    def classes(self) -> List[str]:
        return list(self._workers)

    def _worker(self, raster_class: str) -> _ClassWorker:
        try:
            return self._workers[raster_class]
        except KeyError:
            raise UnknownRasterClass(raster_class) from None

    def _skipped(self, w: _ClassWorker) -> None:
        with w.status_lock:
            w.status = dataclasses.replace(w.status, ticks_skipped=w.status.ticks_skipped + 1)
        log.debug("tick skipped for %s: previous cycle still running", w.cfg.name)

    def _failed(self, w: _ClassWorker, error: Exception) -> None:
        if isinstance(error, RefreshError):
            detail = error.to_dict()
        else:
            detail = {"kind": "unexpected", "message": f"{type(error).__name__}: {error}"}

        changes = {}
        if isinstance(error, FallbackExhausted) and error.identifiers:
            changes["last_attempted_identifier"] = error.identifiers[-1]

        w.update(state=FAILED, last_error=detail, **changes)
        w.update(
            state=IDLE,
            cycles_failed=w.status.cycles_failed + 1,
            cycle_ms_mean=w.durations.mean,
            cycle_ms_std=w.durations.std,
        )

        # nothing published yet upstream is routine; anything else is worth a warning
        routine = isinstance(error, FallbackExhausted) and all(
            isinstance(e, NotYetPublished) for _, e in error.attempts
        )
        log.log(
            logging.INFO if routine else logging.WARNING,
            "refresh failed for %s: %s",
            w.cfg.name,
            error,
            extra={"extra": {"raster_class": w.cfg.name, "error": detail}},
        )
