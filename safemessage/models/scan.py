"""
scan.py — Pydantic models for the message-scanning endpoint.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    """Message submitted for analysis."""

    sender: str = Field(default="", max_length=500, description="Sender / From line, if known")
    body: str = Field(..., min_length=1, max_length=5000, description="Message text to analyse")
    context: str = Field(default="", max_length=2000, description="Where the message arrived")
    fingerprint: Optional[str] = Field(default=None, description="Client device fingerprint")


class RedFlagOut(BaseModel):
    category: str
    description: str
    severity: str  # low | medium | high


class ScanResponse(BaseModel):
    verdict:        str                 # SAFE | UNSAFE | UNKNOWN
    threat_level:   str
    red_flags:      list[RedFlagOut]
    remaining_uses: Optional[int]       # None = unlimited (premium)


class GateDenial(BaseModel):
    """Body of 401 / 402 / 429 / 503 responses from metered endpoints."""

    error:  str   # machine-readable reason
    detail: str   # human-readable retry / upgrade hint
