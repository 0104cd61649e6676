"""Downscale images to a maximum edge length, keeping aspect ratio."""
from PIL import Image


def fit_within(width: int, height: int, max_edge: int) -> tuple[int, int]:
    """
    Target size whose longer side is at most max_edge.
    Never upscales; an image already within bounds keeps its size.
    """
    longest = max(width, height)
    if longest <= max_edge or longest == 0:
        return width, height
    scale = max_edge / longest
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def prepare_for_webp(img: Image.Image) -> Image.Image:
    """WebP takes RGB or RGBA; palette and other modes are converted, keeping transparency."""
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("P", "LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def resize_max_edge(img: Image.Image, max_edge: int) -> Image.Image:
    w, h = img.size
    target = fit_within(w, h, max_edge)
    if target == (w, h):
        return img
    return img.resize(target, Image.Resampling.LANCZOS)
