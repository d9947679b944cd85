"""Auth token storage for the dashboard client.

Holds the auth token, refresh token, and sanitized user data that the
browser dashboard keeps in cookies. Two implementations share one API:

- TokenStore: in-memory, used by tests and short-lived processes.
- FileTokenStore: persists the same payload as a Fernet-encrypted JSON
  file so a restart keeps the session.

The price stream treats the auth token as opaque and only checks that one
is present. The REST client additionally checks the JWT shape with
validate_token_format() before attaching a bearer header.

Usage:
    from btcdash.auth.tokens import TokenStore

    store = TokenStore()
    store.set_auth_token(login.token)
    token = store.get_auth_token()
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from cryptography.fernet import InvalidToken

from btcdash.common.encryption import decrypt_secret, encrypt_secret
from btcdash.common.logging import get_logger

logger = get_logger("AUTH")

AUTH_TOKEN = "auth_token"
REFRESH_TOKEN = "refresh_token"
USER_DATA = "user_data"

TOKEN_NAMES = (AUTH_TOKEN, REFRESH_TOKEN, USER_DATA)

TOKEN_MIN_LENGTH = 10
JWT_PARTS_COUNT = 3

_USER_FIELDS = ("id", "username", "email", "created_at", "updated_at")


def validate_token_format(token: str | None) -> bool:
    """Check that a token looks like a JWT (min length, three dot-separated parts)."""
    if not token or not isinstance(token, str):
        return False
    if len(token) < TOKEN_MIN_LENGTH:
        return False
    return len(token.split(".")) == JWT_PARTS_COUNT


def sanitize_user_data(user_data: Any) -> dict | None:
    """Keep only the safe user fields; None if id, username or email is missing."""
    if not isinstance(user_data, dict):
        return None
    if not all(user_data.get(field) for field in ("id", "username", "email")):
        return None
    return {field: user_data.get(field) for field in _USER_FIELDS}


class TokenStore:
    """In-memory token store.

    Subclasses override _load() and _save() to persist the payload.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    # ─── Auth Token ───

    def set_auth_token(self, token: str) -> None:
        self._set(AUTH_TOKEN, token)

    def get_auth_token(self) -> str | None:
        return self._get(AUTH_TOKEN)

    def has_auth_token(self) -> bool:
        return bool(self._get(AUTH_TOKEN))

    # ─── Refresh Token ───

    def set_refresh_token(self, token: str) -> None:
        self._set(REFRESH_TOKEN, token)

    def get_refresh_token(self) -> str | None:
        return self._get(REFRESH_TOKEN)

    def has_refresh_token(self) -> bool:
        return bool(self._get(REFRESH_TOKEN))

    # ─── User Data ───

    def set_user_data(self, user_data: Any) -> None:
        """Store sanitized user data; invalid payloads are ignored."""
        sanitized = sanitize_user_data(user_data)
        if sanitized is None:
            logger.warning("Ignoring user data without id, username or email")
            return
        self._set(USER_DATA, sanitized)

    def get_user_data(self) -> dict | None:
        return self._get(USER_DATA)

    def has_user_data(self) -> bool:
        return self._get(USER_DATA) is not None

    def is_authenticated(self) -> bool:
        """True when both an auth token and user data are stored."""
        return self.has_auth_token() and self.has_user_data()

    def ensure_valid_session(self) -> bool:
        """Check the stored session at startup, clearing it when it is unusable.

        A session is usable when user data is present and the auth token is
        a well-formed JWT.
        """
        if self.has_user_data() and validate_token_format(self.get_auth_token()):
            return True
        if self._load():
            logger.info("Stored session invalid, clearing credentials")
            self.clear_all()
        return False

    # ─── Clearing ───

    def clear(self, name: str) -> None:
        """Remove a single entry (auth_token, refresh_token or user_data).

        Raises:
            KeyError: If name is not a known token name.
        """
        if name not in TOKEN_NAMES:
            raise KeyError(name)
        values = self._load()
        values.pop(name, None)
        self._save(values)

    def clear_all(self) -> None:
        """Remove every stored entry."""
        self._save({})
        logger.info("Cleared stored credentials")

    # ─── Storage ───

    def _get(self, name: str) -> Any:
        return self._load().get(name)

    def _set(self, name: str, value: Any) -> None:
        values = self._load()
        values[name] = value
        self._save(values)

    def _load(self) -> dict[str, Any]:
        return dict(self._values)

    def _save(self, values: dict[str, Any]) -> None:
        self._values = dict(values)


class FileTokenStore(TokenStore):
    """Token store persisted as a Fernet-encrypted JSON file.

    A missing file reads as empty. A file that cannot be decrypted (key
    rotated, corrupted) is logged and also reads as empty; the next write
    replaces it.

    Args:
        path: Location of the encrypted token file.
        encryption_key: Optional Fernet key; defaults to settings.encryption_key.
    """

    def __init__(self, path: str | Path, encryption_key: str | None = None) -> None:
        super().__init__()
        self.path = Path(path)
        self._encryption_key = encryption_key

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = decrypt_secret(self.path.read_text(), key=self._encryption_key)
            values = json.loads(payload)
        except (InvalidToken, ValueError) as exc:
            logger.warning(
                "Unreadable token file, treating as empty",
                extra={"data": {"path": str(self.path), "error": type(exc).__name__}},
            )
            return {}
        return values if isinstance(values, dict) else {}

    def _save(self, values: dict[str, Any]) -> None:
        """Write the encrypted payload atomically, owner-readable only."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        ciphertext = encrypt_secret(json.dumps(values), key=self._encryption_key)

        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        tmp_path.unlink(missing_ok=True)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(ciphertext)
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
