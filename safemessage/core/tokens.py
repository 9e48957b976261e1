"""
tokens.py — Session token codec.

Two schemes are accepted for bearer credentials:

  Current  — HS256 JWT via python-jose. Claims: sub (account id), email,
             iat, exp (unix seconds).
  Legacy   — base64(JSON) with google_id, email and exp in *milliseconds*,
             as minted by the pre-JWT OAuth callback. Unsigned, so it is
             only as trustworthy as its Session Marker. TEMPORARY: remove
             this path (and settings.legacy_tokens_enabled) once no legacy
             token can still be unexpired.

classify_token() decides which scheme a raw string belongs to by shape
alone; verification then runs exactly one scheme. A JWT is never
re-tried as legacy and vice versa.

Expiry is checked against an injectable clock rather than by python-jose,
so tests can move time without sleeping.
"""

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Union

from jose import JWTError, jwt

from safemessage.core.config import settings
from safemessage.core.errors import Expired, InvalidSignature, NoValidCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    account_id: str
    email: Optional[str]
    issued_at: Optional[int]
    expires_at: int  # unix seconds
    legacy: bool = False


# ── Classification ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CurrentToken:
    raw: str


@dataclass(frozen=True)
class LegacyToken:
    payload: dict


ClassifiedToken = Union[CurrentToken, LegacyToken]

# Three dot-separated segments. Standard base64 never contains ".", so a
# tampered JWT stays in the current scheme and fails its signature check.
_JWT_SHAPE = re.compile(r"^[^.]+\.[^.]+\.[^.]*$")


def classify_token(raw: str) -> Optional[ClassifiedToken]:
    """
    Pure structural classification of a bearer string.

    Returns CurrentToken for anything with the three dot-separated
    segments of a compact JWS, whatever characters they hold,
    LegacyToken when the string is strict base64 of a JSON object holding
    both ``google_id`` and a numeric ``exp``, otherwise None.
    """
    if not raw:
        return None
    if _JWT_SHAPE.match(raw):
        return CurrentToken(raw)
    payload = _decode_legacy(raw)
    if payload is not None:
        return LegacyToken(payload)
    return None


def _decode_legacy(raw: str) -> Optional[dict]:
    try:
        payload = json.loads(base64.b64decode(raw, validate=True))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if not payload.get("google_id") or isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return payload


def encode_legacy_token(account_id: str, email: Optional[str], expires_at_ms: int) -> str:
    """Build a legacy-format token. Only used to fabricate fixtures."""
    body = json.dumps({"google_id": account_id, "email": email, "exp": expires_at_ms})
    return base64.b64encode(body.encode("utf-8")).decode("ascii")


# ── Codec ─────────────────────────────────────────────────────────────────────

class TokenCodec:
    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        lifetime: timedelta | None = None,
        legacy_enabled: bool | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = settings.jwt_secret if secret is None else secret
        self.algorithm = settings.jwt_algorithm if algorithm is None else algorithm
        self.lifetime = timedelta(hours=settings.jwt_expiry_hours) if lifetime is None else lifetime
        self.legacy_enabled = settings.legacy_tokens_enabled if legacy_enabled is None else legacy_enabled
        self._clock = clock

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def issue(self, account_id: str, email: Optional[str] = None) -> tuple[str, TokenClaims]:
        """Sign a current-scheme token for *account_id*."""
        issued_at = int(self._clock())
        claims = TokenClaims(
            account_id=account_id,
            email=email,
            issued_at=issued_at,
            expires_at=issued_at + self.lifetime_seconds,
        )
        payload = {"sub": account_id, "email": email, "iat": issued_at, "exp": claims.expires_at}
        return jwt.encode(payload, self.secret, algorithm=self.algorithm), claims

    def verify(self, raw: str) -> TokenClaims:
        """
        Verify a bearer string under whichever scheme it belongs to.

        Raises InvalidSignature, Expired, or plain NoValidCredential for
        anything unrecognisable (or legacy tokens once disabled).
        """
        token = classify_token(raw)
        if isinstance(token, CurrentToken):
            return self._verify_current(token.raw)
        if isinstance(token, LegacyToken):
            if not self.legacy_enabled:
                raise NoValidCredential("legacy tokens are no longer accepted")
            return self._verify_legacy(token.payload)
        raise NoValidCredential("unrecognised credential")

    def _verify_current(self, raw: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                raw,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        account_id = payload.get("sub")
        exp = payload.get("exp")
        if not account_id or not isinstance(exp, int):
            raise NoValidCredential("token is missing required claims")
        if self._clock() >= exp:
            raise Expired("token expired")
        return TokenClaims(
            account_id=str(account_id),
            email=payload.get("email"),
            issued_at=payload.get("iat"),
            expires_at=exp,
        )

    def _verify_legacy(self, payload: dict) -> TokenClaims:
        expires_at = int(payload["exp"] // 1000)
        if self._clock() * 1000 >= payload["exp"]:
            raise Expired("legacy token expired")
        logger.debug("Accepted legacy token for account %s", payload["google_id"])
        return TokenClaims(
            account_id=str(payload["google_id"]),
            email=payload.get("email"),
            issued_at=None,
            expires_at=expires_at,
            legacy=True,
        )
