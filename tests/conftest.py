"""Shared fixtures: generated images and fake fetchers."""
import io
import os
import tempfile
import threading
import time

# Point output and history at throwaway locations before image_audit.config is imported
_TMP = tempfile.mkdtemp(prefix="image-audit-tests-")
os.environ.setdefault("OPTIMIZED_DIR", os.path.join(_TMP, "optimized"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOCAL_ROOT", _TMP)

import pytest
from PIL import Image

from image_audit.errors import FetchError
from image_audit.fetcher import Fetcher


def make_image_bytes(size=(200, 150), fmt="PNG", noise=False, color=(40, 120, 200), **save_kw) -> bytes:
    """Encode a generated image. noise=True gives incompressible content (large files)."""
    w, h = size
    if noise:
        img = Image.frombytes("RGB", size, os.urandom(w * h * 3))
    else:
        img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kw)
    return buf.getvalue()


class FakeFetcher(Fetcher):
    """Serves pages and images from dicts; unknown references are unreachable."""

    def __init__(self, pages=None, files=None, delay=0.0):
        super().__init__()
        self.pages = dict(pages or {})
        self.files = dict(files or {})
        self.delay = delay
        self.fetched: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch_page(self, url):
        if url not in self.pages:
            raise FetchError(url, "connection refused")
        return self.pages[url], url

    def fetch(self, reference):
        with self._lock:
            self.fetched.append(reference)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if reference not in self.files:
                raise FetchError(reference, "status 404")
            return self.files[reference]
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def webp_bytes():
    """Small WebP already within the skip-fast bounds."""
    return make_image_bytes((300, 200), "WEBP", quality=80)


@pytest.fixture
def big_jpeg_bytes():
    """JPEG wider than 2000px and far above 200KB."""
    return make_image_bytes((2100, 300), "JPEG", noise=True, quality=95)


@pytest.fixture
def png_bytes():
    """PNG under 200KB and 2000px."""
    return make_image_bytes((200, 200), "PNG", noise=True)
