import pytest
from flask import jsonify
from flask_jwt_extended import create_access_token

from app import create_app
from config import load_config
from sanitize import get_sanitized

ALLOWED_ORIGIN = "http://localhost:5173"

VALID_ENV = {
    "NODE_ENV": "test",
    "DATABASE_URI": "mongodb://localhost:27017/library",
    "JWT_SECRET": "test-secret",
    "ADMIN_EMAIL": "admin@library.test",
    "ADMIN_PASSWORD": "Admin123!",
    "ADMIN_NAME": "Library Admin",
    "CORS_ORIGIN": ALLOWED_ORIGIN,
}


class FakeClock:
    """Manually advanced clock for rate-limit tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def valid_env():
    return dict(VALID_ENV)


@pytest.fixture
def config(valid_env):
    return load_config(valid_env)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(config, clock):
    app = create_app(config, clock=clock)
    app.config.update(TESTING=True)

    # Echo route: shows what a handler receives after the pipeline
    @app.route("/api/_echo/<item>", methods=["GET", "POST", "PUT"])
    def _echo(item):
        clean = get_sanitized()
        return jsonify({"item": item, "body": clean.body, "query": clean.query, "params": clean.params})

    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_token(app):
    """
    JWT generator for tests.
    identity: user id (as string), claims: email, role
    """

    def _make(user_id: int, role: str = "member", email: str = "member@library.test") -> str:
        with app.app_context():
            return create_access_token(
                identity=str(user_id),
                additional_claims={"role": role, "email": email},
            )

    return _make
