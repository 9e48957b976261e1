"""
usage.py — Request / response bodies for usage, account-linking and profile.
"""

from typing import Optional

from pydantic import BaseModel, Field

from safemessage.models.account import AccountOut


class UsageRequest(BaseModel):
    fingerprint: Optional[str] = None


class UsageResponse(BaseModel):
    used: int
    limit: int
    premium: bool
    authenticated: bool


class LinkRequest(BaseModel):
    """Client-known anonymous id (fingerprint or cookie value) to fold in."""

    anonymous_id: Optional[str] = Field(default=None, max_length=256)


class LinkResponse(BaseModel):
    success: bool = True
    status: str  # migrated | already_migrated | nothing_to_migrate
    message: str
    migrated_scans: int
    bonus_uses: int
    user: AccountOut


class ProfileOut(AccountOut):
    safety_score: int  # % of scans that were not flagged, 0 when no activity
