# model/token.py
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class CachedToken(BaseModel):
    """Superseded on refresh, never mutated."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expiry: float  # epoch seconds
    cached_at: datetime


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float  # epoch seconds


class SourceCredentials(BaseModel):
    """Supplied by the session layer alongside a job request."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds

    @property
    def usable(self) -> bool:
        return bool(self.refresh_token)


class CachedTokenInfo(BaseModel):
    key: str
    expiry: datetime
    cached_at: datetime


class TokenCacheStats(BaseModel):
    total_tokens: int
    tokens: list[CachedTokenInfo]
