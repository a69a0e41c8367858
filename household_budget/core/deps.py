from fastapi import Header, HTTPException, status
from typing import Optional
import uuid

from household_budget.core.database import get_db

__all__ = ["get_db", "get_household_id", "get_actor_id"]


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} must be a UUID",
        )


async def get_household_id(
    x_household_id: Optional[str] = Header(None, alias="X-Household-ID")
) -> uuid.UUID:
    """Household the request acts on. Membership checks happen upstream."""
    if not x_household_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Household-ID header is required",
        )
    return _parse_uuid(x_household_id, "X-Household-ID")


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-ID")
) -> Optional[uuid.UUID]:
    """Household member performing the change, when the caller supplies one"""
    if not x_actor_id:
        return None
    return _parse_uuid(x_actor_id, "X-Actor-ID")
