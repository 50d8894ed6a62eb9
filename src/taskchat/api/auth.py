"""
Request identity for API endpoints.

Authentication happens upstream; the gateway forwards the authenticated user
name in the X-Username header. Write endpoints require it because the user
name drives broadcast attribution and unread bookkeeping.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status


@dataclass
class Identity:
    """
    The user behind an API request.

    Attributes:
        username: Authenticated user name
    """

    username: str


def get_identity(
    x_username: Optional[str] = Header(
        None,
        description="Authenticated user name (required)",
        alias="X-Username",
    ),
) -> Identity:
    """
    FastAPI dependency resolving the acting user.

    Raises:
        HTTPException(401): If the X-Username header is missing or blank
    """
    username = (x_username or "").strip()
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Username header is required",
        )
    return Identity(username=username)

