import pytest
from flask import Flask

from config import CorsPolicy
from cors_gate import CorsDenied, CorsGate, origin_pattern

ORIGIN = "http://localhost:5173"


@pytest.fixture
def gate():
    return CorsGate(CorsPolicy(origin=ORIGIN))


def _split(value):
    return {part.strip().lower() for part in value.split(",") if part.strip()}


@pytest.mark.parametrize(
    "origin",
    [
        "http://localhost:5174",
        "https://localhost:5173",
        "http://localhost:5173/",
        "HTTP://LOCALHOST:5173",
        "http://localhost:5173.evil.com",
        "*",
        "null",
        "",
    ],
)
def test_only_exact_origin_allowed(gate, origin):
    decision = gate.decide(origin)
    assert not decision.allowed
    with pytest.raises(CorsDenied) as exc:
        gate.require(origin)
    assert exc.value.origin == origin


def test_exact_origin_allowed(gate):
    decision = gate.require(ORIGIN)
    assert decision.allowed
    assert decision.origin == ORIGIN


def test_wildcard_policy_never_matches():
    gate = CorsGate(CorsPolicy(origin="*"))
    assert not gate.decide("*").allowed
    assert not gate.decide("http://anything.example").allowed


def test_origin_pattern_is_literal_and_anchored():
    pattern = origin_pattern("http://app.example:8080")
    assert pattern.match("http://app.example:8080")
    assert not pattern.match("http://appXexample:8080")
    assert not pattern.match("http://app.example:8080.evil.com")
    assert not pattern.match("HTTP://APP.EXAMPLE:8080")


def test_options_for_flask_cors(gate):
    opts = gate.options()
    assert opts["supports_credentials"] is True
    assert opts["methods"] == ["GET", "POST", "PUT", "DELETE", "PATCH"]
    assert opts["allow_headers"] == ["Content-Type", "Authorization", "X-Requested-With"]
    assert [p.pattern for p in opts["origins"]] == [origin_pattern(ORIGIN).pattern]


def test_init_app_registers_flask_cors(gate):
    app = Flask(__name__)
    gate.init_app(app)

    @app.get("/ping")
    def _ping():
        return "pong"

    r = app.test_client().get("/ping", headers={"Origin": ORIGIN})
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert r.headers["Access-Control-Allow-Credentials"] == "true"


# ----- HTTP tests ----- #


def test_http_allowed_origin_echoed(client):
    r = client.get("/api/health", headers={"Origin": ORIGIN})
    assert r.status_code == 200
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert r.headers["Access-Control-Allow-Credentials"] == "true"
    assert "Origin" in r.headers.get("Vary", "")
    assert "Access-Control-Allow-Methods" not in r.headers


def test_http_denied_origin_blocked_without_cors_headers(client):
    r = client.get("/api/health", headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert "Access-Control-Allow-Origin" not in r.headers
    assert "Access-Control-Allow-Credentials" not in r.headers
    assert r.data == b""


def test_http_case_variant_origin_denied(client):
    r = client.get("/api/health", headers={"Origin": ORIGIN.upper()})
    assert r.status_code == 403
    assert "Access-Control-Allow-Origin" not in r.headers


def test_http_no_origin_passes_without_cors_headers(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert "Access-Control-Allow-Origin" not in r.headers


def test_http_preflight_answered_without_downstream(app, client):
    hits = []

    @app.route("/api/_preflight_target", methods=["PUT"])
    def _target():
        hits.append(1)
        return {"ok": True}

    r = client.options(
        "/api/_preflight_target",
        headers={
            "Origin": ORIGIN,
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "Content-Type, Authorization, X-Requested-With",
        },
        environ_base={"REMOTE_ADDR": "10.9.9.9"},
    )
    assert r.status_code == 204
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert r.headers["Access-Control-Allow-Credentials"] == "true"
    assert _split(r.headers["Access-Control-Allow-Methods"]) == {"get", "post", "put", "delete", "patch"}
    assert _split(r.headers["Access-Control-Allow-Headers"]) == {
        "content-type",
        "authorization",
        "x-requested-with",
    }
    # Rate limiter never saw it
    assert "RateLimit-Limit" not in r.headers
    assert hits == []


def test_http_preflight_drops_unlisted_request_headers(client):
    r = client.options(
        "/api/health",
        headers={
            "Origin": ORIGIN,
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "Content-Type, X-Secret",
        },
    )
    assert r.status_code == 204
    assert _split(r.headers["Access-Control-Allow-Headers"]) == {"content-type"}


def test_http_preflight_from_denied_origin(client):
    r = client.options(
        "/api/health",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "GET"},
    )
    assert r.status_code == 403
    assert "Access-Control-Allow-Origin" not in r.headers
    assert "Access-Control-Allow-Methods" not in r.headers
