from __future__ import annotations

"""
Read API over the station color cache.

Every route only reads the CacheStore; none of them ever waits on the
upstream publisher. Before a class's first successful refresh its routes
answer 503 "not_ready"; after that they serve the last good snapshot.

Run:
    python -m kmoni.server
    uvicorn kmoni.server:create_app --factory --port 3000
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from common.errors import UnknownRasterClass
from common.logging_setup import get_logger, setup_logging
from common.types import CacheSnapshot, to_iso
from kmoni.config import ServiceConfig, load_config
from kmoni.fetcher import SourceFetcher
from kmoni.scheduler import RefreshScheduler
from kmoni.stations import load_stations
from kmoni.store import CacheStore


log = get_logger("kmoni.server")


def build_service(cfg: ServiceConfig) -> Tuple[CacheStore, RefreshScheduler]:
    """Wire store + scheduler from config (loads the station table)."""
    stations = load_stations(cfg.stations_csv, cfg.station_columns)
    classes = cfg.enabled_classes
    store = CacheStore(classes)
    fetcher = SourceFetcher(
        base_url=cfg.upstream.base_url,
        timeout=cfg.upstream.timeout_s,
        user_agent=cfg.upstream.user_agent,
    )
    scheduler = RefreshScheduler(store, fetcher, classes, stations)
    log.info(
        "service configured",
        extra={"extra": {"stations": len(stations), "classes": list(classes), "config": cfg.source_path}},
    )
    return store, scheduler


def _not_ready(raster_class: str) -> JSONResponse:
    return JSONResponse({"error": "not_ready", "raster_class": raster_class}, status_code=503)


def _unknown(raster_class: str) -> JSONResponse:
    return JSONResponse({"error": "unknown_raster_class", "raster_class": raster_class}, status_code=404)


def _stations_body(snap: CacheSnapshot) -> dict:
    return {
        "raster_class": snap.raster_class,
        "source_identifier": snap.source_identifier,
        "fetched_at": to_iso(snap.fetched_at),
        "count": snap.station_count,
        "stations": [s.to_dict() for s in snap.stations],
    }


def create_app(
    cfg: Optional[ServiceConfig] = None,
    *,
    store: Optional[CacheStore] = None,
    scheduler: Optional[RefreshScheduler] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI app. Pass `store`/`scheduler` to reuse existing ones
    (tests do); otherwise they are built from `cfg` (or the loaded config).
    """
    cfg = cfg or load_config()
    setup_logging(cfg.log_level)
    if store is None or scheduler is None:
        store, scheduler = build_service(cfg)
    default_class = cfg.default_class if cfg.default_class in store.classes() else store.classes()[0]

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            # joins threads; keep it off the event loop
            await asyncio.to_thread(scheduler.stop)

    app = FastAPI(title="kmoni station colors", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"status": "ok", "scheduler_running": scheduler.running, "cache": store.stats()}

    @app.get("/status")
    def status():
        return {name: st.to_dict() for name, st in scheduler.status().items()}

    @app.get("/stations/{raster_class}")
    def stations(raster_class: str):
        try:
            snap = store.read(raster_class)
        except UnknownRasterClass:
            return _unknown(raster_class)
        if snap is None:
            return _not_ready(raster_class)
        return _stations_body(snap)

    @app.get("/stations-color")
    def stations_color():
        """Default class as a bare list, the shape the single-route service returned."""
        snap = store.read(default_class)
        if snap is None:
            return _not_ready(default_class)
        return [s.to_dict() for s in snap.stations]

    @app.get("/image/{raster_class}")
    def image(raster_class: str):
        try:
            snap = store.read(raster_class)
        except UnknownRasterClass:
            return _unknown(raster_class)
        if snap is None:
            return _not_ready(raster_class)
        headers = {
            "X-Source-Identifier": snap.source_identifier,
            "X-Fetched-At": to_iso(snap.fetched_at) or "",
            "Cache-Control": "no-store",
        }
        return Response(content=snap.image_png, media_type="image/png", headers=headers)

    return app


# -------- local dev entrypoint --------
def main() -> None:
    cfg = load_config()
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
