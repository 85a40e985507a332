from typing import Tuple

from flask import Blueprint, Response, jsonify

from auth_utils import get_current_user, login_required

auth_bp = Blueprint("auth", __name__)


@auth_bp.get("/me")
@login_required
def me() -> Tuple[Response, int]:
    """
    GET /api/me
    Return current user information extracted from the JWT claims.
    """
    user = get_current_user()
    return (
        jsonify(
            {
                "user_id": user["user_id"],
                "email": user["email"],
                "role": user["role"],
            }
        ),
        200,
    )
