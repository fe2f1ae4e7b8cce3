"""Correction of large unfamiliar candidates to the closest trusted rectangle."""

from typing import Optional

import numpy as np

from domain.models import Rectangle, CropMeta
from trust.trust_store import TrustStore, TrustedEntry


# A trusted entry is eligible once it shares this many margins with the candidate
MIN_SHARED_MARGINS = 2


def is_correctable(meta: CropMeta, source: Rectangle, correction: float) -> bool:
    """Only large valid rectangles are worth correcting."""
    if meta.is_invalid or correction >= 1:
        return False
    return meta.w > source.w * correction and meta.h > source.h * correction


def margin_diff(meta: CropMeta, entry: TrustedEntry) -> np.ndarray:
    """Absolute differences of top, bottom, left, right margins."""
    return np.abs(np.asarray(meta.margins.as_tuple()) - np.asarray(entry.meta.margins.as_tuple()))


def find_correction(meta: CropMeta, trust_store: TrustStore, tolerance: int,
                    applied_key: Optional[Rectangle] = None) -> Optional[TrustedEntry]:
    """
    Find the trusted rectangle closest to a candidate by margins.

    An entry is eligible when it shares at least two margins with the
    candidate, or when no margin is off by more than the pixel tolerance.
    Among eligible entries, one replaces the current best when it shares
    at least as many margins and is not farther on either axis.
    Two entries sitting symmetrically around the candidate cancel the
    correction.

    Args:
        meta: Candidate, not trusted
        trust_store: Trusted rectangles of the session
        tolerance: Pixel tolerance for near-identical margins
        applied_key: Rectangle currently applied, never returned

    Returns:
        The trusted entry to use instead of the candidate, or None
    """
    best = None
    best_diff = None
    best_count = 0

    for entry in trust_store:
        diff = margin_diff(meta, entry)
        count = int(np.count_nonzero(diff == 0))
        top, bottom, left, right = (int(v) for v in diff)

        if best is not None and count == best_count:
            b_top, b_bottom, b_left, b_right = (int(v) for v in best_diff)
            if abs(top - bottom) == abs(b_top - b_bottom) and abs(left - right) == abs(b_left - b_right):
                # In between two trusted rectangles, no guess
                return None

        eligible = count >= MIN_SHARED_MARGINS or int(diff.max()) <= tolerance
        if not eligible:
            continue
        if best is None or (count >= best_count and
                            top + bottom <= best_diff[0] + best_diff[1] and
                            left + right <= best_diff[2] + best_diff[3]):
            best, best_diff, best_count = entry, diff, count

    if best is None or best.key == applied_key:
        return None
    return best
