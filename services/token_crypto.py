"""Symmetric encryption of OAuth tokens at rest."""

from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from services.errors import OAuthConfigError


class TokenCipher:
    """Fernet wrapper used by the credential store.

    The key is either a urlsafe base64 Fernet key or, when absent, derived from
    the OAuth client secret with SHA-256.
    """

    def __init__(self, key: Optional[str] = None, *, client_secret: Optional[str] = None) -> None:
        if key:
            raw = key.encode("ascii")
        elif client_secret:
            raw = base64.urlsafe_b64encode(hashlib.sha256(client_secret.encode("utf-8")).digest())
        else:
            raise OAuthConfigError("No token encryption key or client secret configured")
        try:
            self._fernet = Fernet(raw)
        except ValueError as exc:
            raise OAuthConfigError(f"Invalid token encryption key: {exc}") from exc

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored token cannot be decrypted with the configured key") from exc


__all__ = ["TokenCipher"]
