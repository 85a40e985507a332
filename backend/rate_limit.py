"""
Per-client request rate limiting.

- Every client address owns one RateWindow (window start, request count).
- The first request after a window has elapsed opens a new window with count 1.
- Every further request increments the count; once it passes the ceiling the
  request is rejected until the window expires. Retrying does not help.
- Windows live in an explicit store owned by the limiter. MemoryWindowStore
  keeps them in-process behind a lock so concurrent hits never lose updates.

NOTE:
  For a multi-worker deployment swap MemoryWindowStore for a shared store
  (e.g. Redis INCR + EXPIRE) exposing the same hit()/reset() methods.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from flask import Response, g, jsonify, request

from config import RateLimitPolicy

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass
class RateWindow:
    started_at: float
    count: int = 0


class RateLimitExceeded(Exception):
    """The client used up its quota for the current window."""

    def __init__(self, decision: "RateDecision"):
        self.decision = decision
        super().__init__(RATE_LIMIT_MESSAGE)

    @property
    def retry_after(self) -> int:
        return self.decision.retry_after


@dataclass(frozen=True)
class RateDecision:
    key: str
    allowed: bool
    limit: int
    count: int
    window_s: int
    reset_at: float
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    def headers(self) -> Dict[str, str]:
        """Standard RateLimit-* fields; legacy X-RateLimit-* are never emitted."""
        headers = {
            "RateLimit-Policy": f"{self.limit};w={self.window_s}",
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.retry_after),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class MemoryWindowStore:
    """
    In-process window store: client key -> RateWindow.

    hit() is the only mutation path; it runs under a single lock so the
    expire-or-increment step is atomic for every key.
    """

    def __init__(self) -> None:
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._last_prune = 0.0

    def hit(self, key: str, now: float, window_s: int) -> RateWindow:
        with self._lock:
            if now - self._last_prune >= window_s:
                self._prune(now, window_s)
            window = self._windows.get(key)
            if window is None or now - window.started_at >= window_s:
                window = RateWindow(started_at=now)
                self._windows[key] = window
            window.count += 1
            # Snapshot, callers never see the live record
            return RateWindow(started_at=window.started_at, count=window.count)

    def get(self, key: str) -> Optional[RateWindow]:
        with self._lock:
            window = self._windows.get(key)
            return RateWindow(window.started_at, window.count) if window else None

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _prune(self, now: float, window_s: int) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started_at >= window_s]
        for k in expired:
            del self._windows[k]
        self._last_prune = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


def client_address() -> str:
    return request.remote_addr or "unknown"


class RateLimiter:
    """
    Fixed-window limiter keyed by client address.

    `clock` defaults to time.time() looked up at call time, so tests can either
    inject a fake clock or monkeypatch rate_limit.time.time.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: Optional[MemoryWindowStore] = None,
        clock: Optional[Callable[[], float]] = None,
        key_func: Callable[[], str] = client_address,
    ):
        self.policy = policy
        self.store = store if store is not None else MemoryWindowStore()
        self._clock = clock
        self._key_func = key_func

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    def hit(self, key: str) -> RateDecision:
        """Count one request for `key` and decide whether it may pass."""
        now = self._now()
        window = self.store.hit(key, now, self.policy.window_s)
        reset_at = window.started_at + self.policy.window_s
        return RateDecision(
            key=key,
            allowed=window.count <= self.policy.max_requests,
            limit=self.policy.max_requests,
            count=window.count,
            window_s=self.policy.window_s,
            reset_at=reset_at,
            retry_after=max(int(math.ceil(reset_at - now)), 0),
        )

    def check(self, key: str) -> RateDecision:
        """Like hit(), but raises RateLimitExceeded on rejection."""
        decision = self.hit(key)
        if not decision.allowed:
            raise RateLimitExceeded(decision)
        return decision

    # -----------------------------
    # Pipeline stage hooks
    # -----------------------------

    def before_request(self) -> Optional[Response]:
        key = self._key_func()
        try:
            g.rate_limit = self.check(key)
        except RateLimitExceeded as e:
            logger.info("Rate limit exceeded for %s (retry in %ss)", key, e.retry_after)
            g.rate_limit = e.decision
            resp = jsonify({"error": RATE_LIMIT_MESSAGE})
            resp.status_code = 429
            return resp
        return None

    def after_request(self, response: Response) -> Response:
        decision = getattr(g, "rate_limit", None)
        if decision is not None:
            response.headers.update(decision.headers())
        return response
