from .models import ConversionOptions, ConversionResult
from .service import ConversionScheduler, ImageConverter

__all__ = ["ConversionOptions", "ConversionResult", "ConversionScheduler", "ImageConverter"]
