"""
Stabilization of near-identical trusted rectangles (hysteresis on observation time).
"""
from domain.geometry import is_near


STABILITY_MAX_ROUND = 4  # coarser rounding does not produce odd rectangles
STABILITY_PX = 4
STABILITY_TIME_RATIO = 1.1


def find_stable_entry(entry, trust_store, detect_round: int,
                      px: int = STABILITY_PX, time_ratio: float = STABILITY_TIME_RATIO):
    """
    Find a better observed trusted rectangle a few pixels away.

    Odd rounding makes the detector flip between rectangles that differ by
    a couple of pixels. The one observed longest wins, and a challenger must
    beat the current best by time_ratio to take over.

    Args:
        entry: Current TrustedEntry (None or untrusted means nothing to do)
        trust_store: TrustStore of the session
        detect_round: Detector rounding, coarse rounding is already stable
        px: Maximum width/height difference
        time_ratio: Required observation time advantage

    Returns:
        The TrustedEntry to use instead, or None to keep the current one
    """
    if entry is None or detect_round > STABILITY_MAX_ROUND or entry.meta.is_source:
        return None
    if trust_store.get(entry.key) is not entry:
        return None

    found = None
    for other in trust_store:
        if other is entry:
            continue
        reference = found if found is not None else entry
        if (other.total_dwell_time > reference.total_dwell_time * time_ratio and
                is_near(entry.meta.rect, other.meta.rect, px)):
            found = other
    return found
