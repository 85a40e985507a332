"""
Startup configuration for the backend.

load_config() turns the raw environment into an immutable Config value exactly
once. Every violation is collected and reported together in a single
ConfigurationError; no Config is produced in that case and the server must not
start.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Mapping, Optional, Tuple

from parse_utils import ParseError, parse_duration, parse_email, parse_int, require_fields

ENVIRONMENTS = ("development", "production", "test")

DEFAULT_PORT = 5000
DEFAULT_JWT_EXPIRES_IN = "7d"
DEFAULT_CORS_ORIGIN = "http://localhost:5173"

# Library policy defaults
DEFAULT_FINE_PER_DAY = 5
DEFAULT_MAX_BORROW_DAYS = 14
DEFAULT_MAX_BOOKS_PER_USER = 5

# Request admission defaults (15 min window, 100 requests per client)
DEFAULT_RATE_LIMIT_WINDOW_S = 900
DEFAULT_RATE_LIMIT_MAX = 100

CORS_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "PATCH")
CORS_HEADERS: Tuple[str, ...] = ("Content-Type", "Authorization", "X-Requested-With")

TEST_DATABASE_SUFFIX = "-test"

REQUIRED_KEYS = ("DATABASE_URI", "JWT_SECRET", "ADMIN_EMAIL", "ADMIN_PASSWORD", "ADMIN_NAME")
SECRET_KEYS = frozenset({"JWT_SECRET", "ADMIN_PASSWORD", "EMAIL_PASS"})


class ConfigurationError(Exception):
    """Raised when the environment cannot produce a valid Config."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "Invalid configuration:\n" + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass(frozen=True)
class AdminIdentity:
    """Bootstrap administrator, only used on first run."""

    email: str
    password: str = field(repr=False)
    name: str


@dataclass(frozen=True)
class MailSettings:
    host: str
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class LibraryPolicy:
    fine_per_day: int = DEFAULT_FINE_PER_DAY
    max_borrow_days: int = DEFAULT_MAX_BORROW_DAYS
    max_books_per_user: int = DEFAULT_MAX_BOOKS_PER_USER


@dataclass(frozen=True)
class RateLimitPolicy:
    window_s: int = DEFAULT_RATE_LIMIT_WINDOW_S
    max_requests: int = DEFAULT_RATE_LIMIT_MAX


@dataclass(frozen=True)
class CorsPolicy:
    origin: str = DEFAULT_CORS_ORIGIN
    methods: Tuple[str, ...] = CORS_METHODS
    headers: Tuple[str, ...] = CORS_HEADERS


@dataclass(frozen=True)
class Config:
    env: str
    port: int
    database_uri: str
    jwt_secret: str = field(repr=False)
    jwt_expires_in: str
    token_lifetime: timedelta
    cors: CorsPolicy
    admin: AdminIdentity
    mail: Optional[MailSettings] = None
    library: LibraryPolicy = LibraryPolicy()
    rate_limit: RateLimitPolicy = RateLimitPolicy()

    @property
    def is_development(self) -> bool:
        return self.env == "development"


def _clean(environ: Mapping[str, str]) -> dict:
    """
    Keep non-blank values only; blank counts as absent.
    Surrounding whitespace is trimmed except on secrets, which are kept verbatim.
    """
    return {
        k: (v if k in SECRET_KEYS else v.strip())
        for k, v in environ.items()
        if isinstance(v, str) and v.strip()
    }


def isolated_database_uri(uri: str) -> str:
    """
    Suffix the database name so test runs never touch dev/prod data.
    "mongodb://h/library?retryWrites=true" -> "mongodb://h/library-test?retryWrites=true"
    """
    base, sep, query = uri.partition("?")
    return f"{base}{TEST_DATABASE_SUFFIX}{sep}{query}"


def load_config(environ: Mapping[str, str]) -> Config:
    """
    Build a Config from an environment mapping.

    Unknown keys are ignored. Declared keys are validated strictly and every
    problem is reported at once via ConfigurationError.
    """
    env = _clean(environ)
    if "DATABASE_URI" not in env and "MONGODB_URI" in env:
        env["DATABASE_URI"] = env["MONGODB_URI"]

    errors: List[str] = []

    def check(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ParseError as e:
            errors.append(e.message)
            return None

    mode = env.get("NODE_ENV") or env.get("APP_ENV") or "development"
    if mode not in ENVIRONMENTS:
        errors.append(f"NODE_ENV must be one of {', '.join(ENVIRONMENTS)} (got {mode!r}).")

    port = check(parse_int, env.get("PORT", DEFAULT_PORT), field="PORT", minimum=0)

    check(require_fields, env, list(REQUIRED_KEYS))
    admin_email = None
    if "ADMIN_EMAIL" in env:
        admin_email = check(parse_email, env["ADMIN_EMAIL"], field="ADMIN_EMAIL")

    # Credentialed CORS never allows a wildcard origin
    if env.get("CORS_ORIGIN") == "*":
        errors.append("CORS_ORIGIN must be an exact origin, not '*'.")

    jwt_expires_in = env.get("JWT_EXPIRES_IN", DEFAULT_JWT_EXPIRES_IN)
    token_lifetime = check(parse_duration, jwt_expires_in, field="JWT_EXPIRES_IN")

    # Mail relay is optional; only validate what is present
    mail_port = None
    if "EMAIL_PORT" in env:
        mail_port = check(parse_int, env["EMAIL_PORT"], field="EMAIL_PORT", minimum=0)
    mail = None
    if "EMAIL_HOST" in env:
        mail = MailSettings(
            host=env["EMAIL_HOST"],
            port=mail_port,
            user=env.get("EMAIL_USER"),
            password=env.get("EMAIL_PASS"),
        )

    def positive(key: str, default: int) -> Optional[int]:
        return check(
            parse_int,
            env.get(key, default),
            field=key,
            minimum=1,
            message=f"{key} must be a positive integer.",
        )

    library = LibraryPolicy(
        fine_per_day=positive("FINE_PER_DAY", DEFAULT_FINE_PER_DAY),
        max_borrow_days=positive("MAX_BORROW_DAYS", DEFAULT_MAX_BORROW_DAYS),
        max_books_per_user=positive("MAX_BOOKS_PER_USER", DEFAULT_MAX_BOOKS_PER_USER),
    )
    rate_limit = RateLimitPolicy(
        window_s=positive("RATE_LIMIT_WINDOW_S", DEFAULT_RATE_LIMIT_WINDOW_S),
        max_requests=positive("RATE_LIMIT_MAX", DEFAULT_RATE_LIMIT_MAX),
    )

    if errors:
        raise ConfigurationError(errors)

    database_uri = env["DATABASE_URI"]
    if mode == "test":
        database_uri = isolated_database_uri(database_uri)

    return Config(
        env=mode,
        port=port,
        database_uri=database_uri,
        jwt_secret=env["JWT_SECRET"],
        jwt_expires_in=jwt_expires_in,
        token_lifetime=token_lifetime,
        cors=CorsPolicy(origin=env.get("CORS_ORIGIN", DEFAULT_CORS_ORIGIN)),
        admin=AdminIdentity(
            email=admin_email,
            password=env["ADMIN_PASSWORD"],
            name=env["ADMIN_NAME"],
        ),
        mail=mail,
        library=library,
        rate_limit=rate_limit,
    )
