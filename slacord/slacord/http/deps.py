from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..accounts import touch_login
from ..db.models import User, UserKey
from ..db.session import get_session
from ..services import RelayServices


@dataclass
class RequestContext:
    user: User
    key: UserKey


async def get_db() -> AsyncSession:
    async with get_session() as session:
        yield session


def get_services(request: Request) -> RelayServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay services are not configured",
        )
    return services


async def api_key_auth(
    request: Request = None,
    x_api_key: str | None = Header(None, alias="X-Api-Key"),
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    stmt = (
        select(User, UserKey)
        .join(UserKey, User.id == UserKey.user_id)
        .where(UserKey.token == x_api_key, UserKey.enabled, User.is_active)
    )
    result = await db.execute(stmt)
    row = result.one_or_none()
    client_ip = request.client.host if request and request.client else "unknown"
    logging.debug(
        "API key auth client=%s result=%s", client_ip, "hit" if row else "miss"
    )
    if not row:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    user, key = row
    await touch_login(db, user, key)
    logging.info(
        "API %s %s user=%s",
        request.method if request else "?",
        request.url.path if request else "?",
        user.id,
    )
    return RequestContext(user=user, key=key)
