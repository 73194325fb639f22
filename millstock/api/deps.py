"""
API Dependencies
Common dependencies for API endpoints
"""

from typing import Optional
from fastapi import Header, HTTPException, status

from millstock.core.database import get_db
from millstock.services.ledger.admission import Actor, ROLES
from millstock.services.ledger.projection_cache import ProjectionCache

# Process-wide projection cache
projection_cache = ProjectionCache.from_settings()


def get_cache() -> ProjectionCache:
    return projection_cache


async def get_actor(
    x_actor_id: Optional[int] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """
    Acting user as forwarded by the authenticating gateway.
    """
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Actor headers are required",
        )

    role = x_actor_role.strip().lower()
    if role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {x_actor_role}",
        )
    return Actor(user_id=x_actor_id, role=role)


__all__ = ["get_db", "get_cache", "get_actor", "projection_cache"]
