import structlog
from fastapi import Depends, Header, HTTPException, status

from app.schemas.auth import Identity, Role

logger = structlog.get_logger(__name__)


async def get_current_identity(
    x_user_id: str = Header(..., alias="X-User-Id"),
    x_user_role: Role = Header(Role.CLIENT, alias="X-User-Role"),
) -> Identity:
    """
    Get the caller identity.

    Authentication happens at the gateway, which forwards the verified user id
    and role as headers.
    """
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity"
        )
    return Identity(user_id=user_id, role=x_user_role)


async def require_admin(
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    if not identity.is_admin:
        logger.warning("Non-admin attempted admin access", user_id=identity.user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return identity
