from functools import wraps
from typing import Any, Callable, Dict

from flask import g
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from response_utils import unauthorized


def _ensure_jwt_verified() -> bool:
    """
    Verify the bearer token once per request; repeated calls reuse the result.
    """
    if getattr(g, "_jwt_verified", False):
        return True
    try:
        verify_jwt_in_request()
        g._jwt_verified = True
        return True
    except Exception:
        return False


def login_required(fn: Callable) -> Callable:
    """
    Require a valid JWT for accessing the endpoint.
    Unified 401 error JSON if missing / invalid.
    """

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any):
        if not _ensure_jwt_verified():
            return unauthorized()
        return fn(*args, **kwargs)

    return wrapper


def get_current_user() -> Dict[str, Any]:
    """
    Return current user info from the JWT (user_id, email, role).

    Assumes verify_jwt_in_request() has already occurred via wrapper.
    """
    cached = getattr(g, "_current_user_claims", None)
    if cached:
        return cached

    claims = get_jwt()
    result = {
        "user_id": get_jwt_identity(),
        "email": claims.get("email"),
        "role": claims.get("role"),
    }
    g._current_user_claims = result
    return result
