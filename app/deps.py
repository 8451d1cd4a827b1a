"""Shared FastAPI dependencies."""

from fastapi import Header, Request

from app.core.exceptions import ForbiddenError, NotAuthenticatedError
from app.core.logging import bind_owner_id
from app.core.security import load_session_cookie, normalize_idempotency_key, verify_worker_token
from app.models.owner import Owner
from app.services.registry import Services

SESSION_COOKIE_NAME = "advisorpro_session"


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_owner(request: Request) -> Owner:
    """Dependency: resolve the signed-in owner from the session cookie."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise NotAuthenticatedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise NotAuthenticatedError("Invalid or expired session")
    owner_id = payload.get("owner_id")
    if not owner_id:
        raise NotAuthenticatedError("Invalid session")
    bind_owner_id(owner_id)
    return Owner(id=owner_id, email=payload.get("email") or "", role=payload.get("role") or "user")


async def require_admin(request: Request) -> Owner:
    """Dependency: require current owner to have role admin."""
    owner = await get_current_owner(request)
    if not owner.is_admin:
        raise ForbiddenError("Admin only")
    return owner


async def require_worker(x_worker_token: str | None = Header(None, alias="X-Worker-Token")) -> None:
    """Dependency: the package worker authenticates with a shared token."""
    if not verify_worker_token(x_worker_token):
        raise ForbiddenError("Invalid worker token")


async def idempotency_key(idempotency_key: str | None = Header(None, alias="Idempotency-Key")) -> str | None:
    return normalize_idempotency_key(idempotency_key)
