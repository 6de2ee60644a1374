"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from pdash.config import get_settings
from pdash.session import Credential, DashboardSession, get_sessions


def credential_from_request(request: Request, cookie_name: str) -> Credential | None:
    """Bearer token first, then the identity provider's session cookie."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return Credential("bearer", token.strip())
    cookie = request.cookies.get(cookie_name)
    if cookie:
        return Credential("cookie", cookie)
    return None


async def get_dashboard_session(request: Request) -> DashboardSession:
    """Resolve the caller's dashboard session (FastAPI dependency)."""
    credential = credential_from_request(request, get_settings().session_cookie_name)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please log in")
    return await get_sessions().get(credential)
