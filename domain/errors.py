"""Exceptions raised by the crop engine."""


class CropError(Exception):
    """Base class for crop engine errors."""


class DetectorUnavailableError(CropError):
    """The pipeline rejected the detector configuration."""


class ConfigError(CropError, ValueError):
    """Invalid option value."""
