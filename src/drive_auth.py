"""Service-account access tokens for the Drive metadata API.

The provider exchanges a signed JWT assertion for a short-lived bearer token
and keeps it in a cache until shortly before the issuer's declared expiry.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
import time
from typing import Any, Callable
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from google.auth import crypt, jwt

from .cache import CacheProtocol

logger = logging.getLogger(__name__)

DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_CACHE_KEY = "drive_sa_token"
ASSERTION_LIFETIME_SEC = 3600
DEFAULT_TOKEN_LIFETIME_SEC = 3600
TOKEN_EXPIRY_MARGIN_SEC = 120
MIN_TOKEN_CACHE_SEC = 60
TOKEN_TIMEOUT_SEC = 20.0
REQUIRED_KEY_FIELDS = ("client_email", "private_key", "token_uri")

PostForm = Callable[[str, dict[str, str], float], tuple[int, dict[str, Any]]]


class DriveAuthError(Exception):
    """Base class for failures while obtaining an access token."""


class CredentialsUnavailable(DriveAuthError):
    pass


class SigningFailed(DriveAuthError):
    pass


class TokenExchangeFailed(DriveAuthError):
    pass


class ServiceAccountTokenProvider:
    def __init__(
        self,
        key_file: str | Path,
        cache: CacheProtocol,
        post_form: PostForm | None = None,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        self._key_file = Path(key_file)
        self._cache = cache
        self._post_form = post_form or _http_post_form
        self._now_fn = now_fn or time.time

    def get_access_token(self) -> str:
        cached = self._cache.get(TOKEN_CACHE_KEY)
        if cached:
            return cached

        key_info = self._load_key_info()
        assertion = self._build_assertion(key_info)

        try:
            status, payload = self._post_form(
                key_info["token_uri"],
                {"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion},
                TOKEN_TIMEOUT_SEC,
            )
        except (OSError, ValueError) as exc:
            raise TokenExchangeFailed(f"token exchange request failed: {exc}") from exc
        if status != 200:
            raise TokenExchangeFailed(f"token endpoint returned status={status}")

        token = str(payload.get("access_token") or "").strip()
        if not token:
            raise TokenExchangeFailed("token response has no access_token")

        expires_in = _safe_int(payload.get("expires_in")) or DEFAULT_TOKEN_LIFETIME_SEC
        ttl_sec = max(MIN_TOKEN_CACHE_SEC, expires_in - TOKEN_EXPIRY_MARGIN_SEC)
        self._cache.put(TOKEN_CACHE_KEY, token, ttl_sec)
        logger.debug("Issued Drive access token (cached for %ss)", ttl_sec)
        return token

    def try_get_access_token(self) -> str | None:
        try:
            return self.get_access_token()
        except DriveAuthError as exc:
            logger.warning("Drive access token unavailable: %s", exc)
            return None

    def _load_key_info(self) -> dict[str, str]:
        if not self._key_file.exists() or not self._key_file.is_file():
            raise CredentialsUnavailable(f"Service account file not found: {self._key_file}")
        try:
            payload = json.loads(self._key_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CredentialsUnavailable(f"Service account file unreadable: {exc}") from exc
        if not isinstance(payload, dict):
            raise CredentialsUnavailable("service account file must contain a JSON object")

        missing = [name for name in REQUIRED_KEY_FIELDS if not str(payload.get(name) or "").strip()]
        if missing:
            raise CredentialsUnavailable(
                f"service account file is missing: {', '.join(missing)}"
            )
        return {name: str(payload[name]) for name in REQUIRED_KEY_FIELDS}

    def _build_assertion(self, key_info: dict[str, str]) -> str:
        now = int(self._now_fn())
        claims = {
            "iss": key_info["client_email"],
            "scope": DRIVE_READONLY_SCOPE,
            "aud": key_info["token_uri"],
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SEC,
        }
        try:
            signer = crypt.RSASigner.from_string(key_info["private_key"])
            encoded = jwt.encode(signer, claims)
        except Exception as exc:
            raise SigningFailed(f"could not sign token assertion: {exc}") from exc
        return encoded.decode("ascii") if isinstance(encoded, bytes) else str(encoded)


def _safe_int(value: Any) -> int | None:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _http_post_form(
    url: str, fields: dict[str, str], timeout_sec: float = TOKEN_TIMEOUT_SEC
) -> tuple[int, dict[str, Any]]:
    request = Request(
        url,
        method="POST",
        data=urlencode(fields).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    with urlopen(request, timeout=timeout_sec) as response:
        status = int(response.status)
        body = response.read().decode("utf-8")
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("token response is not a JSON object")
    return status, payload
