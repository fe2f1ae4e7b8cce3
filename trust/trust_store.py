"""Trusted rectangles and trusted offsets of the current playback session."""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import numpy as np

from domain.models import Rectangle, Offset, CropMeta


@dataclass
class TrustedEntry:
    """Rectangle approved for this session, with its observation statistics."""
    meta: CropMeta
    applied_count: int = 0
    total_dwell_time: int = 0  # ms observed overall
    last_seen_time: int = 0  # ms, > 0 current for that long, < 0 unseen for that long

    @property
    def key(self) -> Rectangle:
        return self.meta.key


class TrustedOffsetSet:
    """Validated x/y offsets, an offset is trusted within the pixel tolerance of a member."""

    def __init__(self, tolerance: int, seed: Optional[Offset] = None):
        self.tolerance = tolerance
        self.x: List[float] = []
        self.y: List[float] = []
        if seed is not None:
            self.add(seed)

    def _contains(self, values: List[float], offset: float) -> bool:
        if not values:
            return False
        return bool(np.any(np.abs(np.asarray(values, dtype=np.float64) - offset) <= self.tolerance))

    def is_trusted_x(self, offset: float) -> bool:
        return self._contains(self.x, offset)

    def is_trusted_y(self, offset: float) -> bool:
        return self._contains(self.y, offset)

    def is_trusted(self, offset: Offset) -> bool:
        """Both axes must be trusted."""
        return self.is_trusted_x(offset.x) and self.is_trusted_y(offset.y)

    def add(self, offset: Offset) -> bool:
        """
        Add the axes that are not yet trusted.

        Returns:
            True if at least one axis was added
        """
        added = False
        if not self.is_trusted_x(offset.x):
            self.x.append(offset.x)
            added = True
        if not self.is_trusted_y(offset.y):
            self.y.append(offset.y)
            added = True
        return added


class TrustStore:
    """Owns every TrustedEntry of the session, keyed by rectangle."""

    def __init__(self):
        self._entries: Dict[Rectangle, TrustedEntry] = {}

    def __contains__(self, key: Rectangle) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TrustedEntry]:
        return iter(list(self._entries.values()))

    def get(self, key: Rectangle) -> Optional[TrustedEntry]:
        return self._entries.get(key)

    def add(self, entry: TrustedEntry) -> TrustedEntry:
        if entry.key in self._entries:
            raise KeyError(f"{entry.key} is already trusted")
        self._entries[entry.key] = entry
        return entry

    def seed(self, source: CropMeta) -> TrustedEntry:
        """Reset the store with the source as the only trusted rectangle."""
        self._entries.clear()
        return self.add(TrustedEntry(meta=source, applied_count=1))

    def cycle_last_seen(self, current_key: Rectangle, elapsed: int):
        """
        Advance last_seen counters by one processing step.

        The current rectangle counts up from 0, every other one counts down
        from 0 as soon as it stops being current.
        """
        for entry in self._entries.values():
            if entry.key == current_key:
                if entry.last_seen_time < 0:
                    entry.last_seen_time = 0
                entry.last_seen_time += elapsed
            else:
                if entry.last_seen_time > 0:
                    entry.last_seen_time = 0
                entry.last_seen_time -= elapsed

    def clear(self):
        self._entries.clear()
