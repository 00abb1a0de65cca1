"""Find the locally hosted copy of a Drive image under the uploads base URL."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Any, Protocol, Sequence
from urllib.parse import quote
from urllib.request import HTTPRedirectHandler, OpenerDirector, Request, build_opener

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "webp")
PROBE_TIMEOUT_SEC = 10.0


@dataclass(frozen=True)
class CandidateAsset:
    url: str
    filename: str
    extension: str


class ExistenceProbeProtocol(Protocol):
    def exists(self, url: str) -> bool:
        """Return True when url answers 200."""


class _NoRedirectHandler(HTTPRedirectHandler):
    # A 3xx surfaces as HTTPError, so a redirect to another page is "missing".
    def redirect_request(
        self, req: Request, fp: Any, code: int, msg: str, headers: Any, newurl: str
    ) -> None:
        return None


class HttpExistenceProbe(ExistenceProbeProtocol):
    def __init__(
        self,
        timeout_sec: float = PROBE_TIMEOUT_SEC,
        opener: OpenerDirector | None = None,
    ) -> None:
        self._timeout_sec = timeout_sec
        self._opener = opener or build_opener(_NoRedirectHandler)

    def exists(self, url: str) -> bool:
        request = Request(url, method="HEAD")
        try:
            with self._opener.open(request, timeout=self._timeout_sec) as response:
                return int(response.status) == 200
        except (OSError, ValueError) as exc:
            logger.debug("Probe failed for %s: %s", url, exc)
            return False


class AssetLocator:
    def __init__(
        self,
        uploads_base: str,
        probe: ExistenceProbeProtocol,
        extensions: Sequence[str] = DEFAULT_IMAGE_EXTENSIONS,
    ) -> None:
        if not uploads_base.strip():
            raise ValueError("uploads base url is empty")
        self._uploads_base = uploads_base.strip()
        self._probe = probe
        self._extensions = tuple(ext.strip().lstrip(".").lower() for ext in extensions if ext.strip())
        if not self._extensions:
            raise ValueError("at least one image extension is required")

    @property
    def uploads_base(self) -> str:
        return self._uploads_base

    def candidates(self, filename: str) -> list[CandidateAsset]:
        stem = strip_extension(filename)
        result: list[CandidateAsset] = []
        for ext in self._extensions:
            candidate_name = f"{stem}.{ext}"
            result.append(
                CandidateAsset(
                    url=self._uploads_base + quote(candidate_name, safe=""),
                    filename=candidate_name,
                    extension=ext,
                )
            )
        return result

    def locate(self, filename: str) -> CandidateAsset | None:
        for candidate in self.candidates(filename):
            if self._probe.exists(candidate.url):
                return candidate
        return None

    def direct_url(self, filename: str) -> str:
        """URL of filename exactly as Drive reported it, without probing."""
        return self._uploads_base + quote(filename, safe="")

    def raw_url(self, filename: str) -> str:
        return self._uploads_base + filename


def strip_extension(filename: str) -> str:
    stem, _ = os.path.splitext(filename.strip())
    return stem or filename.strip()
