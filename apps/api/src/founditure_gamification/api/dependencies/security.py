from fastapi import Header, HTTPException, status

from founditure_gamification.core.settings import settings


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.admin_api_key:
        return

    if x_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def optional_actor_id(x_actor_id: str | None = Header(None, alias="X-Actor-Id")) -> str | None:
    """Identifier of the operator or service issuing a mutation, for audit columns."""

    if x_actor_id is None:
        return None
    actor = x_actor_id.strip()
    return actor[:64] or None
