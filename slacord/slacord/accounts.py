from __future__ import annotations

import logging
import secrets

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db.models import User, UserKey, utcnow
from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def new_api_token() -> str:
    return secrets.token_hex(16)


async def issue_key(db: AsyncSession, user: User) -> UserKey:
    """Create a fresh API key for ``user`` and disable every older one."""

    await db.execute(
        update(UserKey).where(UserKey.user_id == user.id).values(enabled=False)
    )
    key = UserKey(user_id=user.id, token=new_api_token(), enabled=True)
    db.add(key)
    await db.flush()
    logger.info("Issued API key %s for user %s", key.id, user.id)
    return key


async def register_user(
    db: AsyncSession, *, email: str, username: str, profile_image: str | None = None
) -> tuple[User, UserKey]:
    email = email.strip().lower()
    username = username.strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not username:
        raise ValidationError("username is required")

    existing = await db.scalar(select(User).where(User.email == email))
    if existing is not None:
        raise ConflictError("Email already registered")

    user = User(email=email, username=username, profile_image=profile_image)
    db.add(user)
    await db.flush()
    key = await issue_key(db, user)
    await db.commit()
    logger.info("Registered user %s (%s)", user.id, email)
    return user, key


async def touch_login(db: AsyncSession, user: User, key: UserKey) -> None:
    """Record an authenticated request against the user and the key used."""
    now = utcnow()
    user.last_login_at = now
    key.last_used_at = now
    await db.commit()
