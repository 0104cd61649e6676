"""Audit data model: image records, flags and reports."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Flag thresholds
OVERSIZE_KB = 200
OVERSIZE_PX = 2000
MIN_ALT_LENGTH = 5


class Flag(str, Enum):
    OVERSIZE = "OVERSIZE"
    MISSING_ALT = "MISSING_ALT"
    NOT_WEBP = "NOT_WEBP"


# Order used when serializing flags
FLAG_ORDER = (Flag.OVERSIZE, Flag.MISSING_ALT, Flag.NOT_WEBP)
DEGRADED_FLAGS = frozenset({Flag.OVERSIZE, Flag.NOT_WEBP})


def derive_flags(width: int, height: int, size_kb: float, fmt: str, alt_text: Optional[str]) -> frozenset:
    """Each rule is evaluated independently; an image can carry any combination."""
    flags = set()
    if size_kb > OVERSIZE_KB or max(width, height) > OVERSIZE_PX:
        flags.add(Flag.OVERSIZE)
    if alt_text is None or len(alt_text) < MIN_ALT_LENGTH:
        flags.add(Flag.MISSING_ALT)
    if (fmt or "").lower() != "webp":
        flags.add(Flag.NOT_WEBP)
    return frozenset(flags)


def bytes_to_kb(size: int) -> float:
    return round(size / 1024, 2)


@dataclass(frozen=True)
class ImageRecord:
    reference: str
    width: int
    height: int
    size_kb: float
    format: str
    alt_text: Optional[str] = None
    flags: frozenset = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        reference: str,
        width: int,
        height: int,
        size_kb: float,
        fmt: str,
        alt_text: Optional[str] = None,
    ) -> "ImageRecord":
        """Create a record whose flags follow from its fields."""
        return cls(
            reference=reference,
            width=width,
            height=height,
            size_kb=size_kb,
            format=fmt,
            alt_text=alt_text,
            flags=derive_flags(width, height, size_kb, fmt, alt_text),
        )

    @classmethod
    def degraded(cls, reference: str, size_kb: float = 0.0, alt_text: Optional[str] = None) -> "ImageRecord":
        """Record for bytes that could not be decoded: conservative flags, no dimensions."""
        return cls(
            reference=reference,
            width=0,
            height=0,
            size_kb=size_kb,
            format="unknown",
            alt_text=alt_text,
            flags=DEGRADED_FLAGS,
        )

    @property
    def sorted_flags(self) -> list[Flag]:
        return [f for f in FLAG_ORDER if f in self.flags]

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "width": self.width,
            "height": self.height,
            "sizeKB": self.size_kb,
            "format": self.format,
            "altText": self.alt_text,
            "flags": [f.value for f in self.sorted_flags],
        }


@dataclass(frozen=True)
class AuditReport:
    """Result of one audit request. source is {"url": ...} or {"path": ...}."""

    source: dict
    images: tuple = ()

    @property
    def total_original_size_kb(self) -> float:
        return round(float(sum(img.size_kb for img in self.images)), 2)

    @classmethod
    def empty(cls, source: dict) -> "AuditReport":
        return cls(source=dict(source), images=())

    def to_dict(self) -> dict:
        return {
            "source": dict(self.source),
            "images": [img.to_dict() for img in self.images],
            "totalOriginalSizeKB": self.total_original_size_kb,
        }
