from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from common.errors import ConfigError
from kmoni.stations import DEFAULT_COLUMNS


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "upstream": {
        "base_url": "http://www.kmoni.bosai.go.jp/data/map_img/RealTimeImg",
        "timeout_s": 5.0,
        "user_agent": "kmoni-station-colors/0.1",
    },
    "stations": {
        "csv_path": "data/stations.csv",
        "columns": dict(DEFAULT_COLUMNS),
    },
    "raster_classes": {
        "intensity": {"path_template": "jma_s/{date}/{stamp}.{suffix}", "suffix": "jma_s.gif"},
        "acceleration": {"path_template": "acmap_s/{date}/{stamp}.{suffix}", "suffix": "acmap_s.gif"},
    },
    "server": {"host": "0.0.0.0", "port": 3000, "default_class": "intensity"},
    "logging": {"level": "INFO"},
}


@dataclass(frozen=True)
class RasterClassConfig:
    """
    Per-class refresh settings.

    clock_offset_ms: lead/lag against the publisher clock (negative = behind).
    publisher_utc_offset_hours: publisher's clock domain (JST = +9).
    fallback_count / fallback_step_s: older candidates tried after the primary.
    """
    name: str
    path_template: str
    suffix: str = ""
    period_s: float = 1.0
    clock_offset_ms: int = -1000
    publisher_utc_offset_hours: float = 9.0
    fallback_count: int = 1
    fallback_step_s: int = 1
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.path_template:
            raise ConfigError(f"{self.name}: path_template is required")
        if self.period_s <= 0:
            raise ConfigError(f"{self.name}: period_s must be > 0")
        if self.fallback_count < 0:
            raise ConfigError(f"{self.name}: fallback_count must be >= 0")
        if self.fallback_step_s <= 0:
            raise ConfigError(f"{self.name}: fallback_step_s must be > 0")
        if not -24 < self.publisher_utc_offset_hours < 24:
            raise ConfigError(f"{self.name}: publisher_utc_offset_hours must be within (-24, 24)")


@dataclass(frozen=True)
class UpstreamConfig:
    base_url: str
    timeout_s: float = 5.0
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class ServiceConfig:
    upstream: UpstreamConfig
    stations_csv: str
    station_columns: Dict[str, str]
    raster_classes: Dict[str, RasterClassConfig]
    host: str = "0.0.0.0"
    port: int = 3000
    default_class: str = "intensity"
    log_level: str = "INFO"
    source_path: Optional[str] = field(default=None, compare=False)

    @property
    def enabled_classes(self) -> Dict[str, RasterClassConfig]:
        return {k: v for k, v in self.raster_classes.items() if v.enabled}


def _merge(base: Dict, override: Dict) -> Dict:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _load_yaml(path: str) -> Dict:
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def from_dict(P: Dict[str, Any], source_path: Optional[str] = None) -> ServiceConfig:
    """Build a ServiceConfig from a (partial) params dict layered over DEFAULTS."""
    user_classes = (P or {}).get("raster_classes")
    P = _merge(DEFAULTS, P)
    if user_classes is not None:
        # an explicit class table replaces the defaults
        P["raster_classes"] = user_classes
    up = P.get("upstream", {})
    st = P.get("stations", {})
    srv = P.get("server", {})

    classes: Dict[str, RasterClassConfig] = {}
    for name, c in (P.get("raster_classes") or {}).items():
        if not isinstance(c, dict):
            raise ConfigError(f"raster_classes.{name} must be a mapping")
        try:
            classes[str(name)] = RasterClassConfig(name=str(name), **c)
        except TypeError as e:
            raise ConfigError(f"raster_classes.{name}: {e}") from e
    if not classes:
        raise ConfigError("at least one raster class is required")
    if not any(c.enabled for c in classes.values()):
        raise ConfigError("at least one raster class must be enabled")

    default_class = str(srv.get("default_class", "intensity"))
    if default_class not in classes:
        default_class = next(iter(classes))

    try:
        port = int(os.environ.get("PORT") or srv.get("port", 3000))
        timeout_s = float(up.get("timeout_s", 5.0))
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e

    return ServiceConfig(
        upstream=UpstreamConfig(
            base_url=str(up["base_url"]).rstrip("/"),
            timeout_s=timeout_s,
            user_agent=up.get("user_agent"),
        ),
        stations_csv=str(st.get("csv_path", "data/stations.csv")),
        station_columns=dict(st.get("columns") or {}),
        raster_classes=classes,
        host=str(srv.get("host", "0.0.0.0")),
        port=port,
        default_class=default_class,
        log_level=str(os.environ.get("LOG_LEVEL") or P.get("logging", {}).get("level", "INFO")),
        source_path=source_path,
    )


def load_config(path: Optional[str] = None) -> ServiceConfig:
    """
    Load config from `path`, env KMONI_CONFIG, or config/params.yaml.
    A missing file falls back to the built-in defaults.
    """
    path = path or os.environ.get("KMONI_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return from_dict({})
    return from_dict(_load_yaml(path), source_path=path)
