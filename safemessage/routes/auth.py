"""
auth.py — Session routes and the authenticated-caller dependency.

Routes:
  POST /auth/logout  — revoke every session of the current account

Sessions are opened by the OAuth callback via SessionService.open_session;
there is no password login.

CurrentAccount is re-exported for routes that require a signed-in caller.
It answers 401 with the same message whether the token was forged,
expired, revoked, or points at a deleted account.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from safemessage.core.config import settings
from safemessage.models.identity import ResolvedIdentity
from safemessage.routes.deps import credentials_from_request, get_resolver, get_session_service
from safemessage.services.identity import CredentialResolver
from safemessage.services.sessions import SessionService

router = APIRouter(prefix="/auth", tags=["auth"])


async def _get_current_account(
    request: Request,
    resolver: CredentialResolver = Depends(get_resolver),
) -> ResolvedIdentity:
    """
    FastAPI dependency — authenticate the request from its bearer
    credential (header, cookie or query param) and live Session Marker.
    """
    resolved = await resolver.authenticate(credentials_from_request(request))
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return resolved


# Re-export so other routes can depend on it
CurrentAccount = Annotated[ResolvedIdentity, Depends(_get_current_account)]


@router.post("/logout")
async def logout(
    current: CurrentAccount,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
):
    """Delete the Session Marker; all tokens for the account stop working."""
    await sessions.close_session(current.account.account_id)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"ok": True}
