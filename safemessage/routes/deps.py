"""
deps.py — FastAPI dependencies shared by the routers.

Components are built per request around the process-wide store; they hold
no state of their own, so construction is just attribute assignment.
Tests override get_store / get_clock / get_analyzer through
app.dependency_overrides.
"""

import time
from typing import Callable, Optional

from fastapi import Depends, Request, Response

from safemessage.core.config import settings
from safemessage.core.kv import KVStore, get_store
from safemessage.core.tokens import TokenCodec
from safemessage.models.identity import ResolvedIdentity
from safemessage.services.gate import Gate, build_gate
from safemessage.services.identity import CredentialResolver, RequestCredentials
from safemessage.services.red_flags import RedFlagAnalyzer
from safemessage.services.sessions import SessionService
from safemessage.services.usage_ledger import UsageLedger

_analyzer = RedFlagAnalyzer()


def get_clock() -> Callable[[], float]:
    return time.time


def get_gate(store: KVStore = Depends(get_store), clock=Depends(get_clock)) -> Gate:
    return build_gate(store, clock)


def get_resolver(store: KVStore = Depends(get_store), clock=Depends(get_clock)) -> CredentialResolver:
    return CredentialResolver(store, TokenCodec(clock=clock))


def get_ledger(store: KVStore = Depends(get_store), clock=Depends(get_clock)) -> UsageLedger:
    return UsageLedger(store, clock=clock)


def get_session_service(store: KVStore = Depends(get_store), clock=Depends(get_clock)) -> SessionService:
    return SessionService(store, TokenCodec(clock=clock), clock=clock)


def get_analyzer() -> RedFlagAnalyzer:
    return _analyzer


def credentials_from_request(request: Request, fingerprint: Optional[str] = None) -> RequestCredentials:
    return RequestCredentials(
        authorization=request.headers.get("authorization"),
        session_cookie=request.cookies.get(settings.session_cookie_name),
        session_query=request.query_params.get(settings.session_cookie_name),
        fingerprint=fingerprint,
        anonymous_cookie=request.cookies.get(settings.anon_cookie_name),
    )


def set_identity_cookie(response: Response, resolved: Optional[ResolvedIdentity]) -> None:
    """Persist a freshly minted anonymous id (HTTP-only, SameSite=Lax, ~1 year)."""
    if resolved is None or not resolved.issued_cookie:
        return
    response.set_cookie(
        settings.anon_cookie_name,
        resolved.issued_cookie,
        max_age=settings.anon_cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
