"""Persistence of OAuth token records, one per (user, provider)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlmodel import select

from datetime_utils import ensure_utc, utc_now
from models.oauth_token import OAuthToken
from services.token_crypto import TokenCipher
from storage.db import get_session


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: List[str] = field(default_factory=list)

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        moment = ensure_utc(now) or utc_now()
        remaining = (ensure_utc(self.expires_at) - moment).total_seconds()
        return remaining <= seconds


class CredentialStore:
    """Wrapper around SQLModel session for :class:`OAuthToken` rows.

    Tokens are encrypted before they reach the database and decrypted on read.
    """

    def __init__(self, cipher: TokenCipher, session_factory=get_session) -> None:
        self.cipher = cipher
        self._session_factory = session_factory

    def _find(self, session, user_id: int, provider: str) -> Optional[OAuthToken]:
        stmt = select(OAuthToken).where(
            OAuthToken.user_id == user_id, OAuthToken.provider == provider
        )
        return session.exec(stmt).first()

    def exists(self, user_id: int, provider: str) -> bool:
        with self._session_factory() as session:
            return self._find(session, user_id, provider) is not None

    def get(self, user_id: int, provider: str) -> Optional[OAuthTokens]:
        with self._session_factory() as session:
            record = self._find(session, user_id, provider)
            if record is None:
                return None
            return OAuthTokens(
                access_token=self.cipher.decrypt(record.access_token),
                refresh_token=self.cipher.decrypt(record.refresh_token),
                expires_at=ensure_utc(record.expires_at),
                scope=[s for s in (record.scope or "").split(" ") if s],
            )

    def upsert(self, user_id: int, provider: str, tokens: OAuthTokens) -> None:
        now = utc_now()
        with self._session_factory() as session:
            record = self._find(session, user_id, provider)
            if record is None:
                record = OAuthToken(user_id=user_id, provider=provider, created_at=now,
                                    access_token="", refresh_token="", expires_at=now)
            record.access_token = self.cipher.encrypt(tokens.access_token)
            record.refresh_token = self.cipher.encrypt(tokens.refresh_token)
            record.expires_at = ensure_utc(tokens.expires_at)
            record.scope = " ".join(tokens.scope or [])
            record.updated_at = now
            session.add(record)
            session.commit()

    def delete(self, user_id: int, provider: str) -> bool:
        with self._session_factory() as session:
            record = self._find(session, user_id, provider)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True


__all__ = ["CredentialStore", "OAuthTokens"]
