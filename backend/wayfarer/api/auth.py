"""API key guards for the system and admin endpoints."""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException

from wayfarer.context import AppContext, get_context


def _matches(provided: Optional[str], expected: str) -> bool:
    return provided is not None and hmac.compare_digest(provided, expected)


def has_admin_key(ctx: AppContext, provided: Optional[str]) -> bool:
    expected = ctx.settings.admin_api_key or ctx.settings.system_api_key
    return bool(expected) and _matches(provided, expected)


async def require_system_key(
    x_api_key: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    # Only enforced when a key is configured
    expected = ctx.settings.system_api_key
    if expected and not _matches(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_admin_key(
    x_api_key: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    if not has_admin_key(ctx, x_api_key):
        raise HTTPException(status_code=401, detail="Unauthorized - Admin access required")
