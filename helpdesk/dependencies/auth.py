from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.tickets.models import Actor
from helpdesk.tickets.state import Level

# Credential verification belongs to the external auth service. These demo
# tokens stand in for it during local development.
TOKEN_ACTOR_MAP: dict[str, Actor] = {
    "l1-token": Actor(id="agent-l1", role=Level.L1),
    "l2-token": Actor(id="agent-l2", role=Level.L2),
    "l3-token": Actor(id="agent-l3", role=Level.L3),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(token: str | None) -> Actor | None:
    """Return the actor associated with the bearer token, or ``None`` when absent."""

    if token is None:
        return None

    actor = TOKEN_ACTOR_MAP.get(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor | None:
    """Resolve the calling actor.

    A missing token yields ``None`` and the ticket service rejects the call as
    unauthenticated. Unknown tokens are rejected here.
    """

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(token)
    request.state.actor = actor
    return actor


CurrentActor = Annotated[Actor | None, Depends(get_current_actor)]
