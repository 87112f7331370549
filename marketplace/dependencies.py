from typing import Optional

from fastapi import Depends, Header, Request

from shared.utils import (
    require_auth, verify_token, ForbiddenException
)

ADMIN = "admin"
VENDOR = "vendor"


# --- Services (built at startup, kept on app.state) ---

def get_services(request: Request):
    return request.app.state.services


# --- Auth ---

async def get_current_user(request: Request, payload: dict = Depends(require_auth)) -> dict:
    user = await request.app.state.services.users.authenticate(payload)
    request.state.user_id = user.get("sub")
    return user


async def get_optional_user(request: Request, authorization: Optional[str] = Header(None)) -> Optional[dict]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    user = await request.app.state.services.users.authenticate(verify_token(token))
    request.state.user_id = user.get("sub")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != ADMIN:
        raise ForbiddenException("Admin access required")
    return user


async def require_vendor_or_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") not in (VENDOR, ADMIN):
        raise ForbiddenException("Vendor or admin access required")
    return user


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == ADMIN


async def acting_vendor_id(request: Request, user: dict) -> Optional[str]:
    """None for admins (no ownership restriction), else the caller's vendor id."""
    if is_admin(user):
        return None
    vendor = await request.app.state.services.vendors.require_vendor_for_user(user["sub"])
    return vendor["id"]
