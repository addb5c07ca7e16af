"""
Session authentication for the studio API.

Every non-public route requires `Authorization: Bearer <supabase access token>`.
The token is resolved through Supabase auth; sign-up, sign-in and sign-out
stay in the browser client.
"""

import asyncio

from fastapi import Depends, Header, HTTPException

from .models import SessionUser, UserRole
from .services import Services, get_services


async def current_user(
    authorization: str = Header(default=""),
    services: Services = Depends(get_services),
) -> SessionUser:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    user = await asyncio.to_thread(services.store.get_user, token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user


async def require_admin(
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
) -> SessionUser:
    profile = await asyncio.to_thread(services.store.get_profile, user.id)
    if profile is None or profile.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
