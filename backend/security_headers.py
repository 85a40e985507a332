"""
Response header policy.

Adds the same hardening headers to every response, including responses that
were rejected earlier in the pipeline. No per-request branching.

Cross-Origin-Embedder-Policy is deliberately never set: the client embeds
third-party images that do not send CORP headers.
"""

from typing import Dict, Mapping, Sequence, Tuple

from flask import Response

# (directive, sources) in output order
CSP_DIRECTIVES: Tuple[Tuple[str, Sequence[str]], ...] = (
    ("default-src", ("'self'",)),
    ("base-uri", ("'self'",)),
    ("font-src", ("'self'", "https:", "data:")),
    ("form-action", ("'self'",)),
    ("frame-ancestors", ("'self'",)),
    ("img-src", ("'self'", "data:", "https:")),
    ("object-src", ("'none'",)),
    ("script-src", ("'self'",)),
    ("script-src-attr", ("'none'",)),
    ("style-src", ("'self'", "'unsafe-inline'")),
    ("upgrade-insecure-requests", ()),
)

SECURE_HEADERS: Dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

# Headers that leak implementation details
STRIPPED_HEADERS = ("X-Powered-By",)


def build_csp(directives: Sequence[Tuple[str, Sequence[str]]] = CSP_DIRECTIVES) -> str:
    parts = []
    for name, sources in directives:
        parts.append(" ".join((name, *sources)) if sources else name)
    return "; ".join(parts)


class HeaderPolicy:
    """Fixed set of response headers, computed once."""

    def __init__(
        self,
        directives: Sequence[Tuple[str, Sequence[str]]] = CSP_DIRECTIVES,
        extra: Mapping[str, str] = SECURE_HEADERS,
    ):
        self.headers: Dict[str, str] = {"Content-Security-Policy": build_csp(directives)}
        self.headers.update(extra)

    def after_request(self, response: Response) -> Response:
        for name in STRIPPED_HEADERS:
            response.headers.pop(name, None)
        for name, value in self.headers.items():
            response.headers[name] = value
        return response
