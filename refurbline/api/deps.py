from dataclasses import dataclass
from typing import Annotated, Optional
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from refurbline.config import settings
from refurbline.core.errors import OverrideNotPermitted
from refurbline.database import get_db


logger = logging.getLogger(__name__)


@dataclass
class Actor:
    """
    Caller identity as forwarded by the gateway.

    Authentication happens upstream; the engine only records who acted and
    checks the role for forced transitions.
    """
    id: str
    name: Optional[str] = None
    role: Optional[str] = None

    @property
    def can_override(self) -> bool:
        return bool(self.role) and self.role.strip().upper() in settings.OVERRIDE_ROLES


async def get_actor(
    x_actor_id: Annotated[Optional[str], Header()] = None,
    x_actor_name: Annotated[Optional[str], Header()] = None,
    x_actor_role: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """Dependency to get the acting user from the X-Actor-* headers."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return Actor(id=x_actor_id.strip(), name=x_actor_name, role=x_actor_role)


async def require_override_role(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    """Dependency that only admits actors allowed to force a stage."""
    if not actor.can_override:
        logger.warning("Actor %s (role %s) attempted an override", actor.id, actor.role)
        raise OverrideNotPermitted(
            f"Role '{actor.role or 'NONE'}' may not override job stages",
            actor=actor.id,
        )
    return actor


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
OverrideActor = Annotated[Actor, Depends(require_override_role)]
