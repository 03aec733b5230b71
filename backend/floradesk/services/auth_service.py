# Overview: Service-layer operations for auth; password hashing, JWT issue/verify and login.

"""
Authentication Service (two token realms)

WHY: The back office is used by shop staff (users realm) and by
administrators (admin realm). Both sign in through the same login endpoint
and both tokens are accepted on protected routes.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Tokens are HS256 JWTs; each realm has its own secret
- Verification tries the users realm first, then the admin realm
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import User, AdminUser
from ..time_utils import utcnow
from ..validation import ApiError


USERS_REALM = "users"
ADMIN_REALM = "admin"


class AuthError(ApiError):
    """Login failure (400 for missing input, 401 for bad credentials/state)."""
    status_code = 401


@dataclass(frozen=True)
class TokenIdentity:
    """Decoded bearer token: who and which realm signed it."""
    user_id: int
    realm: str


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    """Hash password using bcrypt."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify password against bcrypt hash (False for accounts without one)."""
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


# =============================================================================
# TOKENS
# =============================================================================

def _realm_settings(realm: str) -> tuple[str, int]:
    if realm == ADMIN_REALM:
        return current_app.config["ADMIN_JWT_SECRET"], current_app.config["ADMIN_JWT_EXPIRES_DAYS"]
    return current_app.config["JWT_SECRET"], current_app.config["JWT_EXPIRES_DAYS"]


def issue_token(user_id: int, realm: str = USERS_REALM) -> str:
    """Sign a JWT carrying `id` for the given realm."""
    secret, days = _realm_settings(realm)
    now = utcnow().replace(tzinfo=timezone.utc)
    payload = {
        "id": user_id,
        "iat": now,
        "exp": now + timedelta(days=days),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _decode(token: str, realm: str) -> TokenIdentity | None:
    secret, _ = _realm_settings(realm)
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return None
    user_id = payload.get("id")
    if user_id is None:
        return None
    return TokenIdentity(user_id=user_id, realm=realm)


def verify_token(token: str) -> TokenIdentity | None:
    """
    Verify a bearer token against the users realm, then the admin realm.

    Returns None when neither verifier accepts it (bad signature, expired,
    or missing `id`).
    """
    identity = _decode(token, USERS_REALM)
    if identity:
        return identity
    identity = _decode(token, ADMIN_REALM)
    if identity:
        current_app.logger.debug("Accepted admin-realm token for admin user %s", identity.user_id)
    return identity


# =============================================================================
# ACCOUNTS
# =============================================================================

def create_user(username: str, email: str, password: str, *, role: str = "authenticated") -> User:
    user = User(
        username=username,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        confirmed=True,
        blocked=False,
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def create_admin_user(email: str, password: str, *, firstname: str | None = None,
                      lastname: str | None = None, username: str | None = None) -> AdminUser:
    admin = AdminUser(
        email=email.strip().lower(),
        username=username,
        firstname=firstname,
        lastname=lastname,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(admin)
    db.session.commit()
    return admin


def _find_user(email: str) -> User | None:
    normalized = email.strip().lower()
    user = db.session.query(User).filter(func.lower(User.email) == normalized).first()
    if user is None:
        user = db.session.query(User).filter_by(email=email).first()
    return user


def login(email: str | None, password: str | None) -> dict:
    """
    Authenticate against the users realm, falling back to the admin realm.

    Returns:
        {"token": ..., "user": {...}} where `user` carries `role` for staff
        and `firstname` / `lastname` for administrators.

    Raises:
        AuthError: missing fields (400), unknown email / wrong password or
        an account that may not sign in (401)
    """
    if not email or not password:
        raise AuthError("MISSING_CREDENTIALS", "Email та пароль обов'язкові", status_code=400)

    user = _find_user(email)
    if user is not None:
        if not user.confirmed:
            raise AuthError("USER_NOT_CONFIRMED", "Користувач не підтверджений")
        if user.blocked:
            raise AuthError("USER_BLOCKED", "Користувач заблокований")
        if not user.password_hash:
            raise AuthError("AUTH_ERROR", "Помилка аутентифікації")
        if not verify_password(password, user.password_hash):
            raise AuthError("INVALID_CREDENTIALS", "Невірний email або пароль")
        current_app.logger.info("User %s signed in", user.id)
        return {"token": issue_token(user.id, USERS_REALM), "user": user.to_dict()}

    admin = db.session.query(AdminUser).filter(func.lower(AdminUser.email) == email.strip().lower()).first()
    if admin is None or not verify_password(password, admin.password_hash):
        raise AuthError("INVALID_CREDENTIALS", "Невірний email або пароль")
    if not admin.is_active:
        raise AuthError("USER_INACTIVE", "Користувач неактивний")

    current_app.logger.info("Admin user %s signed in", admin.id)
    return {
        "token": issue_token(admin.id, ADMIN_REALM),
        "user": {
            "id": admin.id,
            "email": admin.email,
            "username": admin.username,
            "firstname": admin.firstname,
            "lastname": admin.lastname,
        },
    }
