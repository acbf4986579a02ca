import hmac

from fastapi import HTTPException, Request


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate the admin token for protected endpoints.

    The expected token comes from the settings the app was created with.
    Admin endpoints are disabled entirely while no token is configured.

    Raises:
        HTTPException: 404 if no admin token is configured,
            401 if the token is missing or invalid
    """
    expected_token = (request.app.state.settings.admin_token or "").strip()
    if not expected_token:
        raise HTTPException(status_code=404, detail="Not Found")

    token = get_bearer_token(request) or ""

    # Constant-time comparison
    if not hmac.compare_digest(token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"
