"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Optional access token extraction from the Authorization header
- Auth service lookup from app state
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.auth.service import AuthService


def get_token_from_header(request: Request) -> str | None:
    """Extract an optional Bearer token from the Authorization header.

    A missing header means an anonymous request.

    Args:
        request: FastAPI request

    Returns:
        Token string or None if no header was sent

    Raises:
        HTTPException(400): If the header is present but not ``Bearer <token>``
    """
    auth_header = request.headers.get("Authorization")
    if auth_header is None:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid request parameters: malformed Authorization header.",
        )

    return parts[1]


async def get_auth_service(request: Request) -> AuthService:
    """Get auth service from app state.

    Raises:
        HTTPException(503): If the database was not available at startup
    """
    app_state = request.app.state
    if not getattr(app_state, "auth_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User service not available",
        )
    return app_state.auth_service


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

# Optional access token (anonymous when absent)
OptionalToken = Annotated[str | None, Depends(get_token_from_header)]

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
