# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

from .responses import alert, error_response
from .services import auth_service
from .validation import ApiError


_MIN_TOKEN_LENGTH = 10


def _unauthorized(code: str, message: str, title: str, user_message: str):
    return error_response(
        ApiError(code, message, status_code=401),
        alert("error", title, user_message),
    )


def require_auth(f):
    """
    Require a bearer token from either realm.

    Sets the following Flask g attributes:
    - g.current_user_id: `id` claim of the token
    - g.auth_realm: "users" or "admin"

    Returns 401 with an alert block if:
    - No Authorization header (UNAUTHORIZED)
    - Header is not "Bearer <token>" (INVALID_TOKEN_FORMAT)
    - Token is empty or too short to be a JWT (EMPTY_TOKEN)
    - Neither the users nor the admin verifier accepts it (INVALID_TOKEN)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header:
            return _unauthorized(
                "UNAUTHORIZED",
                "Authorization header is required",
                "Не авторизовано",
                "Будь ласка, увійдіть в систему",
            )

        if not auth_header.startswith("Bearer "):
            return _unauthorized(
                "INVALID_TOKEN_FORMAT",
                "Invalid authorization format. Expected: Bearer <token>",
                "Не авторизовано",
                "Будь ласка, увійдіть в систему",
            )

        token = auth_header[len("Bearer "):].strip()
        if len(token) < _MIN_TOKEN_LENGTH:
            return _unauthorized(
                "EMPTY_TOKEN",
                "Token is empty or invalid",
                "Не авторизовано",
                "Будь ласка, увійдіть в систему",
            )

        identity = auth_service.verify_token(token)
        if identity is None:
            return _unauthorized(
                "INVALID_TOKEN",
                "Invalid or expired token",
                "Сесія закінчилась",
                "Будь ласка, увійдіть знову",
            )

        g.current_user_id = identity.user_id
        g.auth_realm = identity.realm

        return f(*args, **kwargs)

    return decorated_function
