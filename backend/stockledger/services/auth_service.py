# Overview: Users and API tokens; resolves a bearer token to the acting user.

"""
Authentication Service

Every purchase, sale and movement is attributed to a user id. The REST API
authenticates with bearer tokens issued from the CLI (flask users create /
flask users issue-token); there is no login endpoint.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Tokens: 32 random bytes, hex encoded; only the SHA-256 hash is stored
- Revoked tokens and inactive users never authenticate
"""

from __future__ import annotations

import hashlib
import re
import secrets

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import ApiToken, User
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_user(*, name: str, email: str, password: str) -> User:
    email = email.strip().lower()
    if db.session.query(User.id).filter_by(email=email).first() is not None:
        raise ConflictError(f"User with email '{email}' already exists")
    user = User(name=name.strip(), email=email, password_hash=hash_password(password), is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


def get_user_by_email(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if user is None:
        raise NotFoundError(f"User '{email}' not found")
    return user


def issue_api_token(user: User, name: str = "default") -> tuple[ApiToken, str]:
    """
    Create a token for user.

    Returns (token_record, plaintext_token). Only the hash is stored.
    """
    plaintext = generate_token()
    record = ApiToken(user_id=user.id, name=name, token_hash=hash_token(plaintext))
    db.session.add(record)
    db.session.commit()
    return record, plaintext


def revoke_api_token(plaintext: str) -> bool:
    record = db.session.query(ApiToken).filter_by(token_hash=hash_token(plaintext)).first()
    if record is None or record.revoked_at is not None:
        return False
    record.revoked_at = utcnow()
    db.session.commit()
    return True


def resolve_token(plaintext: str) -> User | None:
    """Return the active user behind a token, or None."""
    if not plaintext:
        return None
    record = (
        db.session.query(ApiToken)
        .filter_by(token_hash=hash_token(plaintext))
        .filter(ApiToken.revoked_at.is_(None))
        .first()
    )
    if record is None or not record.user or not record.user.is_active:
        return None

    record.last_used_at = utcnow()
    db.session.commit()
    return record.user
