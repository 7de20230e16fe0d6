from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple


class RefreshError(Exception):
    """Base for every failure a refresh cycle can hit; never reaches the read path."""
    kind = "refresh_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class NotYetPublished(RefreshError):
    """Upstream explicitly reports the candidate absent (steady state while waiting)."""
    kind = "not_yet_published"

    def __init__(self, identifier: str, status_code: int = 404):
        super().__init__(f"{identifier}: not published (HTTP {status_code})")
        self.identifier = identifier
        self.status_code = status_code


class TransportFailure(RefreshError):
    kind = "transport_failure"

    def __init__(self, identifier: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"{identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason
        self.status_code = status_code


class DecodeFailure(RefreshError):
    kind = "decode_failure"


class FallbackExhausted(RefreshError):
    """
    Every candidate in one cycle failed.

    `attempts` keeps the per-candidate errors in the order they were tried.
    """
    kind = "fallback_exhausted"

    def __init__(self, attempts: Sequence[Tuple[str, RefreshError]]):
        self.attempts: List[Tuple[str, RefreshError]] = list(attempts)
        ids = ", ".join(i for i, _ in self.attempts) or "<none>"
        super().__init__(f"all {len(self.attempts)} candidates failed: {ids}")

    @property
    def identifiers(self) -> List[str]:
        return [i for i, _ in self.attempts]

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["attempts"] = [
            {"identifier": i, "kind": e.kind, "message": str(e)} for i, e in self.attempts
        ]
        return d


class UnknownRasterClass(KeyError):
    pass


class ConfigError(ValueError):
    pass
