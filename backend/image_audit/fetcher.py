"""Retrieve raw bytes for an image reference, over HTTP or from local storage."""
import logging
from http.client import HTTPException
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from image_audit import config as app_config
from image_audit.errors import FetchError

logger = logging.getLogger("image_audit.fetcher")


def is_remote(reference: str) -> bool:
    return urlparse(reference).scheme in ("http", "https")


class Fetcher:
    """Single-attempt fetcher. No retries; the only timeout is the transport's."""

    def __init__(
        self,
        local_root: Optional[Path] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        self.local_root = Path(local_root) if local_root is not None else app_config.LOCAL_ROOT
        self.user_agent = user_agent or app_config.USER_AGENT
        self.timeout = timeout or app_config.FETCH_TIMEOUT
        self.max_bytes = max_bytes or app_config.FETCH_MAX_BYTES

    def fetch(self, reference: str) -> bytes:
        if is_remote(reference):
            data, _, _ = self._get(reference)
            return data
        return self._read_local(reference)

    def fetch_page(self, url: str) -> tuple[str, str]:
        """Fetch page markup. Returns (html, final_url) after redirects."""
        data, charset, final_url = self._get(url)
        return data.decode(charset or "utf-8", errors="replace"), final_url

    def resolve_local(self, reference: str) -> Path:
        """Leading-slash references are published relative to local_root; try that first.

        References may not climb out with "..", and a root-relative match must stay under local_root.
        """
        if ".." in PurePosixPath(reference.replace("\\", "/")).parts:
            raise FetchError(reference, "parent directory references are not allowed")
        root = self.local_root.resolve()
        candidate = (root / reference.lstrip("/")).resolve()
        if candidate.is_relative_to(root) and candidate.is_file():
            return candidate
        return Path(reference)

    def _read_local(self, reference: str) -> bytes:
        path = self.resolve_local(reference)
        try:
            return path.read_bytes()
        except OSError as e:
            raise FetchError(reference, e.strerror or str(e)) from e

    def _get(self, url: str) -> tuple[bytes, Optional[str], str]:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise FetchError(url, "only absolute http and https URLs are supported")
        req = Request(url, headers={"User-Agent": self.user_agent})
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                if resp.status >= 300:
                    raise FetchError(url, f"status {resp.status}")
                data = resp.read(self.max_bytes + 1)
                if len(data) > self.max_bytes:
                    raise FetchError(url, f"larger than {self.max_bytes} bytes")
                return data, resp.headers.get_content_charset(), resp.geturl()
        except FetchError:
            raise
        except HTTPError as e:
            raise FetchError(url, f"status {e.code}") from e
        except (URLError, HTTPException, OSError, ValueError) as e:
            reason = getattr(e, "reason", None) or str(e)
            raise FetchError(url, str(reason)) from e
