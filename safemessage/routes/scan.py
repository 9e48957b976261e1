"""
scan.py — Metered message-scanning endpoint.

Routes:
  POST /api/v1/scan — check a message for scam red flags

HOW A SCAN IS ADMITTED
──────────────────────
1. The Gate resolves the caller (token → fingerprint → anonymous cookie).
2. The tiered rate limiter counts the request (anonymous 5, free 10,
   premium 100 per minute).
3. The usage ledger spends one free use (skipped for premium).
4. Only then is the analyzer called.

Denials:
  401 unauthenticated   — only when settings.scan_requires_auth is on
  402 quota_exceeded    — free uses exhausted, body carries an upgrade hint
  429 rate_limited      — Retry-After + X-RateLimit-{Limit,Remaining,Reset}
  503 store_unavailable — quota could not be recorded, fail closed
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from safemessage.core.config import settings
from safemessage.core.errors import StoreUnavailable
from safemessage.models.scan import GateDenial, RedFlagOut, ScanRequest, ScanResponse
from safemessage.routes.deps import credentials_from_request, get_analyzer, get_gate, set_identity_cookie
from safemessage.services.gate import Allow, Gate, QuotaExceeded, RateLimited, Unauthenticated, Verdict
from safemessage.services.red_flags import RedFlagAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scan"])


def _denial_response(verdict: Verdict) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(verdict, RateLimited):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        headers.update(verdict.rate.headers())
        headers["Retry-After"] = str(verdict.retry_after)
    elif isinstance(verdict, QuotaExceeded):
        status_code = status.HTTP_402_PAYMENT_REQUIRED
        if verdict.rate is not None:
            headers.update(verdict.rate.headers())
    elif isinstance(verdict, Unauthenticated):
        status_code = status.HTTP_401_UNAUTHORIZED
        headers["WWW-Authenticate"] = "Bearer"
    else:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        headers["Retry-After"] = str(verdict.retry_after)

    body = GateDenial(error=verdict.reason, detail=verdict.hint)
    response = JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)
    set_identity_cookie(response, verdict.identity)
    return response


@router.post(
    "/api/v1/scan",
    response_model=ScanResponse,
    responses={401: {"model": GateDenial}, 402: {"model": GateDenial},
               429: {"model": GateDenial}, 503: {"model": GateDenial}},
)
async def scan_message(
    payload: ScanRequest,
    request: Request,
    response: Response,
    gate: Gate = Depends(get_gate),
    analyzer: RedFlagAnalyzer = Depends(get_analyzer),
):
    verdict = await gate.admit(
        credentials_from_request(request, payload.fingerprint),
        require_auth=settings.scan_requires_auth,
    )
    if not isinstance(verdict, Allow):
        return _denial_response(verdict)

    set_identity_cookie(response, verdict.identity)
    if verdict.rate is not None:
        response.headers.update(verdict.rate.headers())

    analysis = await analyzer.analyze(payload.sender, payload.body, payload.context)

    if analysis.verdict == "UNSAFE" and verdict.identity.authenticated:
        try:
            await gate.ledger.record_flag(verdict.identity.identity)
        except StoreUnavailable as exc:
            logger.warning("Could not record flagged scan: %s", exc)

    return ScanResponse(
        verdict=analysis.verdict,
        threat_level=analysis.threat_level,
        red_flags=[RedFlagOut(**vars(f)) for f in analysis.red_flags],
        remaining_uses=verdict.remaining_uses,
    )
