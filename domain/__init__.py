"""Rectangle model, geometry and pipeline interface for dynacrop."""

from domain.models import Rectangle, Offset, Margins, CropMeta
from domain.geometry import classify, compute_source, parse_ratios
from domain.pipeline import CropPipeline, RecordingPipeline
from domain.errors import CropError, DetectorUnavailableError, ConfigError

__all__ = [
    "Rectangle",
    "Offset",
    "Margins",
    "CropMeta",
    "classify",
    "compute_source",
    "parse_ratios",
    "CropPipeline",
    "RecordingPipeline",
    "CropError",
    "DetectorUnavailableError",
    "ConfigError",
]
