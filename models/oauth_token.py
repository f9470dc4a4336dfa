"""SQLModel table holding OAuth credentials per user and provider."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class OAuthToken(SQLModel, table=True):
    """Encrypted OAuth token pair; at most one row per (user_id, provider)."""

    __tablename__ = "oauth_token"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="ux_oauth_token_user_provider"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    provider: str = Field(default="google")
    access_token: str = Field(description="Fernet-encrypted access token")
    refresh_token: str = Field(description="Fernet-encrypted refresh token")
    expires_at: datetime
    scope: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["OAuthToken"]
