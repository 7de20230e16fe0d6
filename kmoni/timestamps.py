from __future__ import annotations

"""
Resolve which upstream artifact to request for a given instant.

The publisher stamps each map with its own (JST) wall clock and releases it
a little after that second has passed, so the primary candidate is "now"
shifted into the publisher's clock domain and pulled back by a configured
lag. Older candidates follow for when the primary is not out yet.

Usage:
    resolver = TimestampResolver(cfg)
    resolver.candidates(datetime.now(timezone.utc))
    # ('jma_s/20250721/20250721202157.jma_s.gif', 'jma_s/20250721/20250721202156.jma_s.gif')
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Tuple

from common.utils import as_utc
from kmoni.config import RasterClassConfig


def template_fields(ts: datetime, suffix: str = "") -> Dict[str, str]:
    """Calendar fields usable in a path template."""
    return {
        "year": f"{ts.year:04d}",
        "month": f"{ts.month:02d}",
        "day": f"{ts.day:02d}",
        "hour": f"{ts.hour:02d}",
        "minute": f"{ts.minute:02d}",
        "second": f"{ts.second:02d}",
        "date": ts.strftime("%Y%m%d"),
        "stamp": ts.strftime("%Y%m%d%H%M%S"),
        "suffix": suffix,
    }


@dataclass(frozen=True)
class TimestampResolver:
    cfg: RasterClassConfig

    @property
    def publisher_tz(self) -> timezone:
        return timezone(timedelta(hours=self.cfg.publisher_utc_offset_hours))

    def primary_instant(self, now: datetime) -> datetime:
        """`now` in the publisher's clock, shifted by the class offset, truncated to the second."""
        local = as_utc(now).astimezone(self.publisher_tz)
        local = local + timedelta(milliseconds=self.cfg.clock_offset_ms)
        return local.replace(microsecond=0)

    def instants(self, now: datetime) -> List[datetime]:
        first = self.primary_instant(now)
        step = timedelta(seconds=self.cfg.fallback_step_s)
        return [first - k * step for k in range(self.cfg.fallback_count + 1)]

    def identifier_for(self, ts: datetime) -> str:
        return self.cfg.path_template.format(**template_fields(ts, self.cfg.suffix))

    def candidates(self, now: datetime) -> Tuple[str, ...]:
        """Candidate identifiers for `now`, most recent first; never empty."""
        out: List[str] = []
        for ts in self.instants(now):
            ident = self.identifier_for(ts)
            # templates coarser than a second can collapse neighbours
            if ident not in out:
                out.append(ident)
        return tuple(out)
