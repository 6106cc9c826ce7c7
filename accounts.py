import logging
from typing import Optional

import bcrypt
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import settings
from database import get_session, transaction
from errors import AuthenticationError, NotFoundError, ValidationError
from orm import User

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "address", "avatar", "language", "currency")
# Preferences always hold a value
REQUIRED_PROFILE_FIELDS = ("language", "currency")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def login(session: Session, email: str, password: str) -> User:
    """Check credentials and return the matching user."""
    if not email or not password:
        raise ValidationError("Missing required fields")

    user = session.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(password, user.password_hash):
        logger.info(f"Failed login attempt for {email}")
        raise AuthenticationError("Invalid credentials")

    logger.info(f"User {user.id} logged in")
    return user


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the authenticated caller from the X-User-Id header."""
    if not x_user_id:
        raise AuthenticationError("Authentication required")
    user = session.get(User, x_user_id)
    if user is None:
        raise AuthenticationError("Unknown user")
    return user


def get_profile(caller: User, user_id: str) -> User:
    if user_id != caller.id:
        raise NotFoundError("User", user_id)
    return caller


def update_profile(session: Session, caller: User, user_id: str, changes: dict) -> User:
    """Apply profile edits. Fields left out of ``changes`` are untouched."""
    if user_id != caller.id:
        raise NotFoundError("User", user_id)

    unknown = set(changes) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported profile fields: {', '.join(sorted(unknown))}")
    cleared = [key for key in REQUIRED_PROFILE_FIELDS if key in changes and not changes[key]]
    if cleared:
        raise ValidationError(f"Profile fields cannot be empty: {', '.join(cleared)}")

    with transaction(session, "profile update"):
        for key, value in changes.items():
            setattr(caller, key, value)

    logger.info(f"Profile updated for user {caller.id}: {', '.join(sorted(changes))}")
    return caller
