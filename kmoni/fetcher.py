from __future__ import annotations

"""
Upstream map fetcher.

Tries candidate identifiers in order, one request each, and returns the first
artifact the publisher actually has. A 404 is the normal answer while a map
is not published yet, so it is only logged at DEBUG; anything else that goes
wrong on the wire is a TransportFailure. When the whole chain fails the
caller gets FallbackExhausted with every attempt attached.

Usage:
    fetcher = SourceFetcher(base_url="http://www.kmoni.bosai.go.jp/data/map_img/RealTimeImg")
    res = fetcher.fetch(resolver.candidates(now))
    res.identifier, len(res.content)
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import requests

from common.errors import FallbackExhausted, NotYetPublished, RefreshError, TransportFailure


log = logging.getLogger(__name__)

NOT_FOUND_CODES = (404, 410)


@dataclass
class FetchResult:
    identifier: str
    url: str
    content: bytes = field(repr=False)
    content_type: Optional[str] = None


class SourceFetcher:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: prefix joined with each identifier
            timeout: per-request timeout (seconds)
            user_agent: optional User-Agent header
            session: optional requests.Session for connection reuse
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def build_url(self, identifier: str) -> str:
        return f"{self.base_url}/{identifier.lstrip('/')}"

    def fetch_one(self, identifier: str) -> FetchResult:
        """Single attempt for one identifier; raises NotYetPublished or TransportFailure."""
        url = self.build_url(identifier)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportFailure(identifier, f"{type(e).__name__}: {e}") from e

        if r.status_code in NOT_FOUND_CODES:
            raise NotYetPublished(identifier, r.status_code)
        if r.status_code != 200:
            raise TransportFailure(identifier, f"HTTP {r.status_code}", status_code=r.status_code)
        if not r.content:
            raise TransportFailure(identifier, "empty body", status_code=r.status_code)
        return FetchResult(
            identifier=identifier,
            url=url,
            content=r.content,
            content_type=r.headers.get("Content-Type"),
        )

    def fetch(self, candidates: Sequence[str]) -> FetchResult:
        """Return the first candidate that succeeds; raise FallbackExhausted otherwise."""
        if not candidates:
            raise ValueError("at least one candidate identifier is required")

        attempts: List[Tuple[str, RefreshError]] = []
        for identifier in candidates:
            try:
                res = self.fetch_one(identifier)
            except NotYetPublished as e:
                log.debug("not published yet: %s", identifier)
                attempts.append((identifier, e))
                continue
            except TransportFailure as e:
                log.warning("fetch failed: %s", e)
                attempts.append((identifier, e))
                continue
            if attempts:
                log.debug("fell back to %s after %d miss(es)", identifier, len(attempts))
            return res
        raise FallbackExhausted(attempts)

    def close(self) -> None:
        self.session.close()
