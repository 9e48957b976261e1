"""
usage.py — Free-use counter for the current caller.

Routes:
  GET  /api/usage — usage for the token / anonymous cookie
  POST /api/usage — same, body may carry { fingerprint }

Read-only: nothing here consumes a use or touches rate windows. A new
anonymous cookie is still issued on first visit so later scans count
against a stable id.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from safemessage.core.config import settings
from safemessage.core.rate_limit import limiter
from safemessage.models.usage import UsageRequest, UsageResponse
from safemessage.routes.deps import credentials_from_request, get_ledger, get_resolver, set_identity_cookie
from safemessage.services.identity import CredentialResolver
from safemessage.services.usage_ledger import UsageLedger

router = APIRouter(prefix="/api/usage", tags=["usage"])


async def _usage(
    request: Request,
    response: Response,
    fingerprint: Optional[str],
    resolver: CredentialResolver,
    ledger: UsageLedger,
) -> UsageResponse:
    resolved = await resolver.resolve(credentials_from_request(request, fingerprint))
    set_identity_cookie(response, resolved)
    snapshot = await ledger.snapshot(resolved)
    return UsageResponse(
        used=snapshot.used,
        limit=snapshot.limit,
        premium=snapshot.premium,
        authenticated=snapshot.authenticated,
    )


@router.get("", response_model=UsageResponse)
@limiter.limit(settings.public_rate_limit)
async def get_usage(
    request: Request,
    response: Response,
    resolver: CredentialResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
):
    return await _usage(request, response, None, resolver, ledger)


@router.post("", response_model=UsageResponse)
@limiter.limit(settings.public_rate_limit)
async def post_usage(
    request: Request,
    response: Response,
    payload: Optional[UsageRequest] = None,
    resolver: CredentialResolver = Depends(get_resolver),
    ledger: UsageLedger = Depends(get_ledger),
):
    fingerprint = payload.fingerprint if payload else None
    return await _usage(request, response, fingerprint, resolver, ledger)
