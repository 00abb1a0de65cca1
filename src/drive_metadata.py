"""Drive file id -> display name lookup with caching."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Protocol

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .cache import CacheProtocol

logger = logging.getLogger(__name__)

DEFAULT_NAME_CACHE_TTL_SEC = 86400
METADATA_TIMEOUT_SEC = 20


class MetadataLookupFailed(Exception):
    """Raised when the Drive API does not return a usable file name."""


class AccessTokenSourceProtocol(Protocol):
    def try_get_access_token(self) -> str | None:
        """Return a bearer token, or None when no token can be obtained."""


class DriveMetadataClientProtocol(Protocol):
    def fetch_name(self, file_id: str, access_token: str) -> str:
        """Return the display name of file_id or raise MetadataLookupFailed."""


class GoogleDriveMetadataClient(DriveMetadataClientProtocol):
    """Drive v3 files.get(fields=name) over google-api-python-client."""

    def __init__(self, service: Any) -> None:
        self._service = service

    @classmethod
    def build_default(cls, timeout_sec: int = METADATA_TIMEOUT_SEC) -> "GoogleDriveMetadataClient":
        # Bearer header is set per request, so the transport carries no credentials.
        service = build(
            "drive",
            "v3",
            http=httplib2.Http(timeout=timeout_sec),
            cache_discovery=False,
            static_discovery=True,
        )
        return cls(service=service)

    def fetch_name(self, file_id: str, access_token: str) -> str:
        request = self._service.files().get(
            fileId=file_id,
            fields="name",
            supportsAllDrives=True,
        )
        request.headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = request.execute()
        except HttpError as exc:
            raise MetadataLookupFailed(
                f"drive metadata status={exc.resp.status} file_id={file_id}"
            ) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise MetadataLookupFailed(f"drive metadata request failed: {exc}") from exc

        name = response.get("name") if isinstance(response, dict) else None
        if not isinstance(name, str) or not name.strip():
            raise MetadataLookupFailed(f"drive metadata has no name for file_id={file_id}")
        return name


class DriveFilenameResolver:
    def __init__(
        self,
        token_source: AccessTokenSourceProtocol,
        metadata_client: DriveMetadataClientProtocol,
        cache: CacheProtocol,
        cache_ttl_sec: int = DEFAULT_NAME_CACHE_TTL_SEC,
    ) -> None:
        self._token_source = token_source
        self._metadata_client = metadata_client
        self._cache = cache
        self._cache_ttl_sec = cache_ttl_sec

    def get_filename(self, file_id: str) -> str | None:
        cache_key = name_cache_key(file_id)
        cached = self._cache.get(cache_key)
        if cached:
            return cached

        token = self._token_source.try_get_access_token()
        if not token:
            return None

        try:
            name = self._metadata_client.fetch_name(file_id, token)
        except MetadataLookupFailed as exc:
            logger.warning("Drive filename lookup failed for %s: %s", file_id, exc)
            return None

        self._cache.put(cache_key, name, self._cache_ttl_sec)
        return name


def name_cache_key(file_id: str) -> str:
    digest = hashlib.md5(file_id.encode("utf-8")).hexdigest()
    return f"drive_name_{digest}"
