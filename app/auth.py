"""
Caller identity for the memorial quota API.

Authentication happens upstream: the auth gateway verifies the session and
forwards the user id in a header (X-User-ID unless USER_ID_HEADER says
otherwise). This module only reads that header.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from memorial_quota.config import get_settings
from memorial_quota.utils.logging import set_request_context, short_id

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

USER_ID_HEADER = APIKeyHeader(
    name=get_settings().security.user_id_header,
    scheme_name="UserId",
    auto_error=False,
)

MAX_USER_ID_LENGTH = 128


async def get_current_user_id(
    request: Request,
    user_id: Optional[str] = Depends(USER_ID_HEADER),
) -> str:
    """
    Get the authenticated user id for the request.

    Args:
        request: The FastAPI request object
        user_id: The user id header value

    Returns:
        The user id

    Raises:
        AuthenticationError: If the header is missing or malformed
    """
    user_id = (user_id or "").strip()
    if not user_id:
        logger.warning(
            f"Missing user id in request from {request.client.host if request.client else 'unknown'}"
        )
        raise AuthenticationError("User identity is required")

    if len(user_id) > MAX_USER_ID_LENGTH:
        logger.warning(f"Rejecting oversized user id header ({len(user_id)} chars)")
        raise AuthenticationError("Invalid user identity")

    request.state.user_id = user_id
    set_request_context(user_id=short_id(user_id))
    return user_id
