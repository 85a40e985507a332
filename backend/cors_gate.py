"""
CORS admission.

Only the single configured origin is accepted, compared by exact string
equality (no patterns, no "*"). Allowed responses echo that origin with
credentials enabled; flask-cors writes the Access-Control-* headers.

The gate itself runs first in the admission pipeline: denied origins get an
empty 403, and preflight requests are answered before the rate limiter or any
route handler sees them. Requests without an Origin header are not
cross-origin and pass untouched.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Pattern

from flask import Flask, Response, g, make_response, request
from flask_cors import CORS

from config import CorsPolicy

logger = logging.getLogger(__name__)


class CorsDenied(Exception):
    """Origin is not allowed. Surfaced to browsers as a response without CORS headers."""

    def __init__(self, decision: "CorsDecision"):
        self.decision = decision
        self.origin = decision.origin
        super().__init__(f"Origin not allowed: {decision.origin}")


@dataclass(frozen=True)
class CorsDecision:
    allowed: bool
    origin: Optional[str]


def origin_pattern(origin: str) -> Pattern[str]:
    """
    Anchored, case-sensitive pattern for one literal origin.
    flask-cors compares plain strings case-insensitively, a compiled pattern is
    matched as-is.
    """
    return re.compile(re.escape(origin) + r"\Z")


def is_preflight() -> bool:
    return request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers


class CorsGate:
    def __init__(self, policy: CorsPolicy):
        self.policy = policy

    def is_allowed(self, origin: Optional[str]) -> bool:
        return origin is not None and origin != "*" and origin == self.policy.origin

    def decide(self, origin: Optional[str]) -> CorsDecision:
        return CorsDecision(allowed=self.is_allowed(origin), origin=origin)

    def require(self, origin: Optional[str]) -> CorsDecision:
        """Like decide(), but raises CorsDenied on rejection."""
        decision = self.decide(origin)
        if not decision.allowed:
            raise CorsDenied(decision)
        return decision

    def options(self) -> Dict[str, Any]:
        """flask-cors resource options for the configured policy."""
        return {
            "origins": [origin_pattern(self.policy.origin)],
            "supports_credentials": True,
            "methods": list(self.policy.methods),
            "allow_headers": list(self.policy.headers),
        }

    def init_app(self, app: Flask) -> None:
        CORS(app, resources={r"/*": self.options()})

    # -----------------------------
    # Pipeline stage hook
    # -----------------------------

    def before_request(self) -> Optional[Response]:
        origin = request.headers.get("Origin")
        if origin is None:
            return None

        try:
            g.cors = self.require(origin)
        except CorsDenied as e:
            logger.warning(
                "CORS denied for origin %r (%s %s from %s)",
                e.origin,
                request.method,
                request.path,
                request.remote_addr,
            )
            g.cors = e.decision
            return make_response("", 403)

        # flask-cors adds the allow lists on the way out
        if is_preflight():
            return make_response("", 204)
        return None
