"""Conversion options and per-image results."""
from dataclasses import dataclass

from image_audit import config as app_config
from image_audit.audit.models import ImageRecord


@dataclass(frozen=True)
class ConversionOptions:
    quality: int = app_config.DEFAULT_QUALITY
    max_width_px: int = app_config.DEFAULT_MAX_WIDTH

    def __post_init__(self):
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be between 1 and 100, got {self.quality}")
        if self.max_width_px < 1:
            raise ValueError(f"max_width_px must be positive, got {self.max_width_px}")


@dataclass(frozen=True)
class ConversionResult:
    """The source record plus where its optimized copy lives and what it saved."""

    record: ImageRecord
    optimized_reference: str
    optimized_size_kb: float
    savings_kb: float = 0.0
    savings_percent: float = 0.0

    @classmethod
    def unchanged(cls, record: ImageRecord) -> "ConversionResult":
        """Zero-savings result pointing at the original."""
        return cls(
            record=record,
            optimized_reference=record.reference,
            optimized_size_kb=record.size_kb,
        )

    @classmethod
    def from_sizes(cls, record: ImageRecord, optimized_reference: str, optimized_size_kb: float) -> "ConversionResult":
        savings_kb = round(record.size_kb - optimized_size_kb, 2)
        savings_percent = round(savings_kb / record.size_kb * 100, 1) if record.size_kb > 0 else 0.0
        return cls(
            record=record,
            optimized_reference=optimized_reference,
            optimized_size_kb=optimized_size_kb,
            savings_kb=savings_kb,
            savings_percent=savings_percent,
        )

    def to_dict(self) -> dict:
        out = self.record.to_dict()
        out.update({
            "optimizedReference": self.optimized_reference,
            "optimizedSizeKB": self.optimized_size_kb,
            "savingsKB": self.savings_kb,
            "savingsPercent": self.savings_percent,
        })
        return out


