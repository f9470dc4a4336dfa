# lifemanager/services/google_auth.py
from __future__ import annotations

import json
import os
from datetime import timedelta
from typing import Any, Dict, Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from core.logging_setup import get_sync_logger
from core.settings import GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import ensure_utc, utc_now
from services.credential_store import CredentialStore, OAuthTokens
from services.errors import (
    TRANSIENT,
    AuthExchangeError,
    OAuthConfigError,
    ProviderError,
    ReauthRequiredError,
)
from services.sync_locks import REFRESH_LOCKS, KeyedLocks

_DEFAULT_LIFETIME = timedelta(hours=1)


def load_client_config(settings: GoogleSyncSettings = GOOGLE_SYNC) -> Dict[str, Any]:
    """Build a ``web`` client config from env settings or ``client_secret.json``."""

    if settings.client_id and settings.client_secret:
        return {
            "web": {
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "auth_uri": settings.auth_uri,
                "token_uri": settings.token_uri,
                "redirect_uris": [settings.redirect_uri],
            }
        }
    path = settings.client_secret_path
    if path and path.exists():
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise OAuthConfigError(f"Unreadable OAuth client file {path}: {exc}") from exc
    raise OAuthConfigError(
        "Missing Google OAuth credentials. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET "
        f"or place a client secret JSON at {path}."
    )


def _client_section(config: Dict[str, Any]) -> Dict[str, Any]:
    section = config.get("web") or config.get("installed")
    if not section:
        raise OAuthConfigError("OAuth client config must contain a 'web' or 'installed' section")
    return section


class TokenManager:
    """Owns the OAuth2 code exchange, refresh and revocation for Google."""

    def __init__(
        self,
        store: CredentialStore,
        client_config: Optional[Dict[str, Any]] = None,
        *,
        settings: GoogleSyncSettings = GOOGLE_SYNC,
        locks: KeyedLocks = REFRESH_LOCKS,
        http_post=requests.post,
    ) -> None:
        self.store = store
        self.settings = settings
        self.client_config = client_config or load_client_config(settings)
        self._client = _client_section(self.client_config)
        self._locks = locks
        self._http_post = http_post
        self.logger = get_sync_logger("auth")

    # ----- consent flow -----
    def _flow(self) -> Flow:
        redirect_uris = self._client.get("redirect_uris") or [self.settings.redirect_uri]
        return Flow.from_client_config(
            self.client_config,
            scopes=list(self.settings.scopes),
            redirect_uri=redirect_uris[0],
            # the exchange may run in another process, so no PKCE verifier to carry over
            autogenerate_code_verifier=False,
        )

    def initiate_auth(self, state: Optional[str] = None) -> str:
        kwargs: Dict[str, Any] = {
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if state:
            kwargs["state"] = state
        url, _ = self._flow().authorization_url(**kwargs)
        return url

    def exchange_code(self, code: str) -> OAuthTokens:
        if not code or not code.strip():
            raise AuthExchangeError("Authorization code is required")
        flow = self._flow()
        # Google may grant a superset of the requested scopes (include_granted_scopes)
        os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
        try:
            flow.fetch_token(code=code.strip())
        except (OAuth2Error, requests.RequestException, ValueError) as exc:
            self.logger.warning("Authorization code exchange failed: %s", exc)
            raise AuthExchangeError(f"Failed to exchange authorization code: {exc}") from exc

        creds = flow.credentials
        if not creds.token or not creds.refresh_token:
            raise AuthExchangeError("Invalid token response from Google: missing access or refresh token")
        scopes = getattr(creds, "granted_scopes", None) or creds.scopes or self.settings.scopes
        return OAuthTokens(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=ensure_utc(creds.expiry) or utc_now() + _DEFAULT_LIFETIME,
            scope=sorted(set(scopes)),
        )

    def store_tokens(self, user_id: int, provider: str, tokens: OAuthTokens) -> None:
        self.store.upsert(user_id, provider, tokens)
        self.logger.info("Stored %s tokens for user %s", provider, user_id)

    def has_tokens(self, user_id: int, provider: Optional[str] = None) -> bool:
        return self.store.exists(user_id, provider or self.settings.provider)

    # ----- live credentials -----
    def get_live_credential(self, user_id: int, provider: Optional[str] = None) -> Credentials:
        provider = provider or self.settings.provider
        margin = self.settings.refresh_margin_sec
        tokens = self._load(user_id, provider)
        if tokens.expires_within(margin):
            with self._locks.hold((user_id, provider)):
                # another caller may have refreshed while we waited
                tokens = self._load(user_id, provider)
                if tokens.expires_within(margin):
                    tokens = self._refresh(user_id, provider, tokens)
        return self._to_credentials(tokens)

    def _load(self, user_id: int, provider: str) -> OAuthTokens:
        try:
            tokens = self.store.get(user_id, provider)
        except ValueError as exc:
            raise ReauthRequiredError(f"Stored {provider} tokens are unreadable: {exc}") from exc
        if tokens is None:
            raise ReauthRequiredError(f"No {provider} tokens for user {user_id}; connect the account first")
        return tokens

    def _refresh(self, user_id: int, provider: str, tokens: OAuthTokens) -> OAuthTokens:
        creds = self._to_credentials(tokens)
        self.logger.info("Refreshing %s access token for user %s", provider, user_id)
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            self.logger.warning("Refresh token rejected for user %s: %s", user_id, exc)
            raise ReauthRequiredError(f"Google rejected the refresh token: {exc}") from exc
        except TransportError as exc:
            self.logger.warning("Token refresh transport error for user %s: %s", user_id, exc)
            raise ProviderError(TRANSIENT, f"Token refresh failed: {exc}") from exc

        refreshed = OAuthTokens(
            access_token=creds.token,
            refresh_token=creds.refresh_token or tokens.refresh_token,
            expires_at=ensure_utc(creds.expiry) or utc_now() + _DEFAULT_LIFETIME,
            scope=tokens.scope,
        )
        self.store.upsert(user_id, provider, refreshed)
        return refreshed

    def _to_credentials(self, tokens: OAuthTokens) -> Credentials:
        expiry = ensure_utc(tokens.expires_at)
        return Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=self._client.get("token_uri") or self.settings.token_uri,
            client_id=self._client.get("client_id"),
            client_secret=self._client.get("client_secret"),
            scopes=tokens.scope or list(self.settings.scopes),
            # google-auth compares expiry against naive UTC
            expiry=expiry.replace(tzinfo=None) if expiry else None,
        )

    # ----- disconnect -----
    def revoke_tokens(self, user_id: int, provider: Optional[str] = None) -> bool:
        """Revoke remotely (best effort) and always delete the local record.

        Returns whether Google confirmed the revocation.
        """

        provider = provider or self.settings.provider
        revoked = False
        try:
            tokens = self.store.get(user_id, provider)
        except ValueError as exc:
            self.logger.warning("Cannot decrypt tokens of user %s for revocation: %s", user_id, exc)
            tokens = None

        if tokens is not None:
            try:
                response = self._http_post(
                    self.settings.revoke_uri,
                    params={"token": tokens.refresh_token or tokens.access_token},
                    headers={"content-type": "application/x-www-form-urlencoded"},
                    timeout=self.settings.http_timeout_sec,
                )
                revoked = response.status_code == 200
                if not revoked:
                    self.logger.warning(
                        "Google revoke returned %s for user %s", response.status_code, user_id
                    )
            except requests.RequestException as exc:
                self.logger.warning("Failed to revoke token with Google: %s", exc)

        self.store.delete(user_id, provider)
        self.logger.info("Disconnected %s for user %s (remote revoke: %s)", provider, user_id, revoked)
        return revoked


__all__ = ["TokenManager", "load_client_config"]
