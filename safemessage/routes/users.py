"""
users.py — Account linking and profile routes.

Routes:
  POST /api/user/signup  — fold anonymous usage into the signed-in account
  GET  /api/user/profile — account snapshot with a safety score

Both require a valid session (see routes/auth.CurrentAccount).
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from safemessage.core.config import settings
from safemessage.core.errors import NoValidCredential
from safemessage.core.rate_limit import limiter
from safemessage.models.account import AccountOut
from safemessage.models.identity import anonymous_identity
from safemessage.models.usage import LinkRequest, LinkResponse, ProfileOut
from safemessage.routes.auth import CurrentAccount
from safemessage.routes.deps import get_ledger
from safemessage.services.usage_ledger import MigrationStatus, UsageLedger

router = APIRouter(prefix="/api/user", tags=["users"])

_MESSAGES = {
    MigrationStatus.MIGRATED: "Account linked successfully",
    MigrationStatus.ALREADY_MIGRATED: "Account already linked",
    MigrationStatus.NOTHING_TO_MIGRATE: "No anonymous usage to link",
}


@router.post("/signup", response_model=LinkResponse)
@limiter.limit(settings.public_rate_limit)
async def link_account(
    request: Request,
    payload: LinkRequest,
    current: CurrentAccount,
    ledger: UsageLedger = Depends(get_ledger),
):
    """Migrate the caller's anonymous history (fingerprint or cookie id) once."""
    raw_id = (payload.anonymous_id or request.cookies.get(settings.anon_cookie_name) or "").strip()
    if not raw_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="anonymous_id is required")

    try:
        result = await ledger.migrate(anonymous_identity(raw_id), current.account.account_id)
    except NoValidCredential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return LinkResponse(
        status=result.status.value,
        message=_MESSAGES[result.status],
        migrated_scans=result.migrated_scans,
        bonus_uses=result.bonus_uses,
        user=AccountOut.from_account(result.account),
    )


@router.get("/profile", response_model=ProfileOut)
@limiter.limit(settings.public_rate_limit)
async def get_profile(request: Request, current: CurrentAccount):
    """Return the signed-in account with its safety score."""
    account = current.account
    total = account.total_scans + account.total_flags
    safety_score = round(100 * account.total_scans / total) if total else 0
    return ProfileOut(**AccountOut.from_account(account).model_dump(), safety_score=safety_score)
