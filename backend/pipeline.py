"""
Request admission pipeline.

The order every request goes through is declared here once, as a list of
named stages, instead of following from hook registration order:

    cors -> rate_limit -> security_headers -> sanitize -> route handler

A stage's `before` hook returns None to let the request continue, or a
response to end it there. Every stage's `after` hook runs on every response,
including ones produced by an earlier stage's rejection.
A stage's `setup` runs once, when the pipeline is installed on the app.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from flask import Flask, Response, g

from config import Config
from cors_gate import CorsGate
from rate_limit import MemoryWindowStore, RateLimiter
from sanitize import SanitizationChain
from security_headers import HeaderPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    name: str
    before: Optional[Callable[[], Optional[Response]]] = None
    after: Optional[Callable[[Response], Response]] = None
    setup: Optional[Callable[[Flask], None]] = None


class AdmissionPipeline:
    def __init__(self, stages: Sequence[Stage]):
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names: {names}")
        self.stages: List[Stage] = list(stages)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.stages]

    def stage(self, name: str) -> Stage:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def admit(self) -> Optional[Response]:
        for s in self.stages:
            if s.before is None:
                continue
            rv = s.before()
            if rv is not None:
                g.admission_stage = s.name
                return rv
        return None

    def finish(self, response: Response) -> Response:
        for s in self.stages:
            if s.after is not None:
                response = s.after(response)
        return response

    def install(self, app: Flask) -> None:
        """Register the pipeline as one before_request and one after_request hook."""
        for s in self.stages:
            if s.setup is not None:
                s.setup(app)
        app.before_request(self.admit)
        app.after_request(self.finish)
        app.extensions["admission_pipeline"] = self


def build_pipeline(
    config: Config,
    store: Optional[MemoryWindowStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> AdmissionPipeline:
    """Wire the four stages from the validated config."""
    cors = CorsGate(config.cors)
    limiter = RateLimiter(config.rate_limit, store=store, clock=clock)
    headers = HeaderPolicy()
    chain = SanitizationChain()

    logger.debug(
        "Admission pipeline: origin=%s limit=%s/%ss",
        config.cors.origin,
        config.rate_limit.max_requests,
        config.rate_limit.window_s,
    )
    return AdmissionPipeline(
        [
            Stage("cors", before=cors.before_request, setup=cors.init_app),
            Stage("rate_limit", before=limiter.before_request, after=limiter.after_request),
            Stage("security_headers", after=headers.after_request),
            Stage("sanitize", before=chain.before_request, setup=chain.init_app),
        ]
    )
