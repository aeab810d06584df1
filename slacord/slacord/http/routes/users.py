from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...accounts import issue_key, register_user
from ..deps import RequestContext, api_key_auth, get_db
from ..schemas import ApiKeyDto, RegisterBody, UserDto

router = APIRouter(prefix="/api/users")


@router.post("", response_model=ApiKeyDto, status_code=201)
async def register(body: RegisterBody, db: AsyncSession = Depends(get_db)):
    """Create an account and return its first API key."""
    user, key = await register_user(
        db, email=body.email, username=body.username, profile_image=body.profile_image
    )
    return ApiKeyDto(user=UserDto.model_validate(user), api_key=key.token)


@router.get("/me", response_model=UserDto)
async def me(ctx: RequestContext = Depends(api_key_auth)):
    return UserDto.model_validate(ctx.user)


@router.post("/me/keys", response_model=ApiKeyDto)
async def rotate_key(
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    """Issue a new key; every previous key of the caller stops working."""
    key = await issue_key(db, ctx.user)
    await db.commit()
    return ApiKeyDto(user=UserDto.model_validate(ctx.user), api_key=key.token)
