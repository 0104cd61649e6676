"""Decode image bytes into an ImageRecord with quality flags."""
import io
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from image_audit.audit.models import ImageRecord, bytes_to_kb

logger = logging.getLogger("image_audit.metadata")

_SVG_SNIFF = re.compile(rb"^\s*(<\?xml[^>]*>\s*)?(<!--.*?-->\s*)*(<!DOCTYPE[^>]*>\s*)?<svg[\s>]", re.I | re.S)
_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$", re.I)


def looks_like_svg(data: bytes) -> bool:
    return bool(_SVG_SNIFF.match(data[:4096]))


def _parse_length(value: Optional[str]) -> Optional[int]:
    """Absolute lengths only; percentages and em sizes have no intrinsic size."""
    if not value:
        return None
    m = _LENGTH.match(value)
    if not m:
        return None
    return int(round(float(m.group(1))))


def svg_dimensions(data: bytes) -> tuple[int, int]:
    soup = BeautifulSoup(data, "html.parser")
    root = soup.find("svg")
    if root is None:
        raise ValueError("no <svg> root element")
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))
    if width is None or height is None:
        # html.parser lower-cases attribute names
        view_box = root.get("viewbox") or ""
        parts = view_box.replace(",", " ").split()
        if len(parts) != 4:
            raise ValueError("svg has neither width/height nor a viewBox")
        vb_w, vb_h = float(parts[2]), float(parts[3])
        width = width if width is not None else int(round(vb_w))
        height = height if height is not None else int(round(vb_h))
    return width, height


def decode_dimensions(data: bytes) -> tuple[int, int, str]:
    """Return (width, height, format) from image headers. Raises on undecodable bytes."""
    if looks_like_svg(data):
        width, height = svg_dimensions(data)
        return width, height, "svg"
    with Image.open(io.BytesIO(data)) as img:
        if not img.format:
            raise UnidentifiedImageError("no format detected")
        return img.width, img.height, img.format.lower()


def extract_metadata(data: bytes, reference: str, alt_text: Optional[str] = None) -> ImageRecord:
    """Build a flagged record. Corrupt or unsupported bytes give a degraded record
    (size 0, so it adds nothing to report totals), never an exception."""
    try:
        width, height, fmt = decode_dimensions(data)
    except Exception as e:
        logger.warning("Could not decode %s (%s bytes): %s", reference, len(data), e)
        return ImageRecord.degraded(reference, alt_text=alt_text)
    return ImageRecord.build(reference, width, height, bytes_to_kb(len(data)), fmt, alt_text)
