from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from curator.core.auth import Principal, Role
from curator.core.config import Settings, get_settings

_VIEWER_SCOPES = {"migrations:read", "moderation:read", "interests:read"}
_MODERATOR_SCOPES = _VIEWER_SCOPES | {"migrations:write", "moderation:write"}

ROLE_SCOPES: dict[Role, set[str]] = {
    Role.VIEWER: _VIEWER_SCOPES,
    Role.MODERATOR: _MODERATOR_SCOPES,
    Role.SUPER_ADMIN: _MODERATOR_SCOPES | {"migrations:admin", "interests:write"},
}


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="admin auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_role(user)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin role required")

    return Principal(subject=user_id, role=role, scopes=set(ROLE_SCOPES[role]))


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_role(user: dict[str, Any]) -> Role | None:
    for key in ("app_metadata", "user_metadata"):
        metadata = user.get(key)
        if not isinstance(metadata, dict):
            continue
        role = metadata.get("role")
        if isinstance(role, str) and role:
            try:
                return Role(role)
            except ValueError:
                return None
    return None
