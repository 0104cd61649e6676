"""Discover images from a web page or a local directory and audit each one."""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Iterator, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from image_audit import config as app_config
from image_audit.audit.metadata import extract_metadata
from image_audit.audit.models import AuditReport, ImageRecord
from image_audit.errors import FetchError
from image_audit.fetcher import Fetcher

logger = logging.getLogger("image_audit.audit")


def chunked(items: list, size: int) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def find_image_sources(html: str, page_url: str) -> list[tuple[str, Optional[str]]]:
    """Return (absolute_src, alt) for every <img> in document order. Inline data: images are skipped."""
    soup = BeautifulSoup(html, "html.parser")
    base = page_url
    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        base = urljoin(page_url, base_tag["href"].strip())
    found = []
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src or src.lower().startswith("data:"):
            continue
        found.append((urljoin(base, src), img.get("alt")))
    return found


class ImageAuditor:
    """Audits images from a page URL or a directory into an AuditReport."""

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        local_root: Optional[Path] = None,
        batch_size: Optional[int] = None,
    ):
        self.fetcher = fetcher or Fetcher(local_root=local_root)
        self.local_root = Path(local_root).resolve() if local_root is not None else app_config.LOCAL_ROOT
        self.batch_size = max(1, batch_size or app_config.AUDIT_BATCH_SIZE)

    def audit(self, url: Optional[str] = None, path: Optional[str] = None) -> AuditReport:
        if bool(url) == bool(path):
            raise ValueError("Provide exactly one of url or path")
        if url:
            return self.audit_url(url)
        return self.audit_directory(path)

    # URL mode

    def audit_url(self, url: str) -> AuditReport:
        """A page that cannot be fetched or parsed yields an empty report, not an error."""
        source = {"url": url}
        try:
            html, final_url = self.fetcher.fetch_page(url)
            sources = find_image_sources(html, final_url)
        except Exception as e:
            logger.warning("Image audit of %s failed, returning empty report: %s", url, e)
            return AuditReport.empty(source)
        logger.info("Found %s images on %s", len(sources), url)
        images: list[ImageRecord] = []
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for batch in chunked(sources, self.batch_size):
                for record in pool.map(self._audit_remote_image, batch):
                    if record is not None:
                        images.append(record)
        return AuditReport(source=source, images=tuple(images))

    def _audit_remote_image(self, item: tuple[str, Optional[str]]) -> Optional[ImageRecord]:
        src, alt = item
        try:
            data = self.fetcher.fetch(src)
        except FetchError as e:
            logger.warning("Skipping image %s: %s", src, e.reason)
            return None
        return extract_metadata(data, src, alt)

    # Directory mode

    def audit_directory(self, path: str) -> AuditReport:
        source = {"path": path}
        root = Path(path)
        if not root.is_absolute():
            root = self.local_root / root
        if not root.is_dir():
            logger.warning("Image audit path %s is not a readable directory, returning empty report", root)
            return AuditReport.empty(source)
        images = [self._audit_local_file(p) for p in self._iter_image_files(root)]
        logger.info("Audited %s images under %s", len(images), root)
        return AuditReport(source=source, images=tuple(images))

    def _iter_image_files(self, root: Path) -> Iterable[Path]:
        found = []
        for dirpath, _dirnames, filenames in os.walk(root, onerror=self._log_walk_error):
            for name in filenames:
                if Path(name).suffix.lower() in app_config.IMAGE_EXTENSIONS:
                    found.append(Path(dirpath) / name)
        return sorted(found)

    @staticmethod
    def _log_walk_error(err: OSError) -> None:
        logger.warning("Could not list %s: %s", err.filename, err.strerror)

    def reference_for(self, file_path: Path) -> str:
        resolved = file_path.resolve()
        try:
            return "/" + resolved.relative_to(self.local_root).as_posix()
        except ValueError:
            return resolved.as_posix()

    def _audit_local_file(self, file_path: Path) -> ImageRecord:
        reference = self.reference_for(file_path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            logger.warning("Could not read %s: %s", file_path, e)
            return ImageRecord.degraded(reference)
        return extract_metadata(data, reference)


# Singleton
_image_auditor: Optional[ImageAuditor] = None


def get_image_auditor() -> ImageAuditor:
    global _image_auditor
    if _image_auditor is None:
        _image_auditor = ImageAuditor()
    return _image_auditor
