"""
Geometry utilities to classify crop rectangles against the source frame.
"""
import math
from typing import List, Sequence, Union

from domain.errors import ConfigError
from domain.models import Rectangle, Offset, Margins, CropMeta


# Candidates smaller than this share of the source are never matched to a ratio
KNOWN_RATIO_MIN_SIZE = 0.9


def parse_ratios(ratios: Union[str, Sequence[Union[str, float]]]) -> List[float]:
    """
    Parse a list of aspect ratios.

    Args:
        ratios: Space separated string ("2.4 2.39 16/9") or sequence of
            numbers / fraction strings

    Returns:
        List of ratios as floats, in the given order
    """
    if isinstance(ratios, str):
        tokens = ratios.split()
    else:
        tokens = list(ratios)

    parsed = []
    for token in tokens:
        if isinstance(token, (int, float)):
            value = float(token)
        else:
            try:
                if "/" in token:
                    num, den = token.split("/", 1)
                    value = float(num) / float(den)
                else:
                    value = float(token)
            except (ValueError, ZeroDivisionError):
                raise ConfigError(f"Invalid aspect ratio: {token!r}")
        if value <= 0 or not math.isfinite(value):
            raise ConfigError(f"Invalid aspect ratio: {token!r}")
        parsed.append(value)
    return parsed


def compute_source(width: int, height: int, detect_round: int) -> Rectangle:
    """
    Compute the baseline rectangle for a decoded frame.

    Width and height are floored to a multiple of detect_round and the
    remainder is split evenly on both sides.
    """
    w = (int(width) // detect_round) * detect_round
    h = (int(height) // detect_round) * detect_round
    return Rectangle(w, h, (int(width) - w) // 2, (int(height) - h) // 2)


def compute_offset(rect: Rectangle, source: Rectangle) -> Offset:
    return Offset(x=rect.x - (source.w - rect.w) / 2, y=rect.y - (source.h - rect.h) / 2)


def compute_margins(rect: Rectangle, source: Rectangle) -> Margins:
    return Margins(
        top=rect.y,
        bottom=source.h - rect.h - rect.y,
        left=rect.x,
        right=source.w - rect.w - rect.x,
    )


def is_known_ratio(rect: Rectangle, source: Rectangle, ratios: Sequence[float], tolerance: int) -> bool:
    """
    Check the rectangle height against the known aspect ratio list.

    Only large rectangles (near full width or full height) are checked,
    small regions would match some ratio by accident.

    Args:
        rect: Rectangle to check
        source: Source rectangle
        ratios: Known aspect ratios
        tolerance: Pixel tolerance (one extra pixel is allowed for odd sizes)

    Returns:
        True if the height matches width / ratio for one of the ratios
    """
    if rect.is_invalid:
        return False
    if rect.w < source.w * KNOWN_RATIO_MIN_SIZE and rect.h < source.h * KNOWN_RATIO_MIN_SIZE:
        return False
    for ratio in ratios:
        height = math.floor(rect.w / ratio + 0.5)
        if abs(height - rect.h) <= tolerance + 1:
            return True
    return False


def classify(rect: Rectangle, source: Rectangle, ratios: Sequence[float], tolerance: int) -> CropMeta:
    """
    Compute all derived fields of a rectangle.

    Args:
        rect: Raw rectangle from the detector
        source: Source rectangle of the current session
        ratios: Known aspect ratios
        tolerance: Pixel tolerance for the ratio check

    Returns:
        CropMeta record
    """
    return CropMeta(
        rect=rect,
        offset=compute_offset(rect, source),
        margins=compute_margins(rect, source),
        is_source=rect == source,
        is_invalid=rect.is_invalid,
        is_known_ratio=is_known_ratio(rect, source, ratios, tolerance),
    )


def is_near(a: Rectangle, b: Rectangle, px: int) -> bool:
    """Width and height both within px pixels."""
    return abs(a.w - b.w) <= px and abs(a.h - b.h) <= px
