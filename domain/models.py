"""
Domain models for crop rectangles.
"""
from dataclasses import dataclass
from typing import Optional, Mapping, Any, Tuple


# Keys published by the black-bar detector in its frame metadata
METADATA_KEYS = ("lavfi.cropdetect.w", "lavfi.cropdetect.h", "lavfi.cropdetect.x", "lavfi.cropdetect.y")


@dataclass(frozen=True)
class Rectangle:
    """Crop rectangle reported by the detector. Hashable, used as lookup key."""
    w: int
    h: int
    x: int
    y: int

    @property
    def is_invalid(self) -> bool:
        return self.w < 0 or self.h < 0

    def __str__(self) -> str:
        # Same layout as the crop filter parameters
        return f"w={self.w}:h={self.h}:x={self.x}:y={self.y}"

    @classmethod
    def from_metadata(cls, metadata: Optional[Mapping[str, Any]]) -> Optional["Rectangle"]:
        """
        Build a rectangle from detector metadata.

        Args:
            metadata: Mapping with either the detector keys (lavfi.cropdetect.*)
                or plain w/h/x/y keys

        Returns:
            Rectangle, or None when width or height is missing
        """
        if not metadata:
            return None
        if METADATA_KEYS[0] in metadata:
            keys = METADATA_KEYS
        else:
            keys = ("w", "h", "x", "y")
        if metadata.get(keys[0]) is None or metadata.get(keys[1]) is None:
            return None
        try:
            values = [int(float(metadata.get(k, 0) or 0)) for k in keys]
        except (TypeError, ValueError, OverflowError):
            # Non-numeric or infinite values
            return None
        return cls(*values)


@dataclass(frozen=True)
class Offset:
    """Displacement from a centered crop of the same size."""
    x: float
    y: float


@dataclass(frozen=True)
class Margins:
    """Distance from each source edge."""
    top: int
    bottom: int
    left: int
    right: int

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.top, self.bottom, self.left, self.right)


@dataclass(frozen=True)
class CropMeta:
    """Rectangle classified against the source frame."""
    rect: Rectangle
    offset: Offset
    margins: Margins
    is_source: bool = False
    is_invalid: bool = False
    is_known_ratio: bool = False

    @property
    def key(self) -> Rectangle:
        return self.rect

    @property
    def w(self) -> int:
        return self.rect.w

    @property
    def h(self) -> int:
        return self.rect.h

    def __str__(self) -> str:
        return str(self.rect)
