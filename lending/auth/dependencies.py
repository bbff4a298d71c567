import uuid

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lending.auth.actor import Actor, Role
from lending.auth.jwt import JWTError, decode_token
from lending.services.policy import Action, Decision, authorize

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    """Build the request's :class:`Actor` from the ``sub`` and ``role`` claims."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials)
        actor_id = uuid.UUID(payload["sub"])
        role = Role(str(payload["role"]).upper())
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return Actor(id=actor_id, role=role)


def require_action(action: Action) -> Depends:
    """Route dependency: 403 unless the access policy allows *action* for the caller."""

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if authorize(actor, action) is Decision.DENY:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return Depends(_dep)
