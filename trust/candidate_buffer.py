"""Sliding ledger of observed rectangles with segmentation tolerance."""

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from domain.models import Rectangle, CropMeta


@dataclass
class BufferEntry:
    """Candidate that is not trusted yet."""
    meta: CropMeta
    buffered_dwell_time: int = 0  # ms inside the ledger window
    known_dwell_time: int = 0  # ms inside the known-ratio window
    overall_time: int = 0  # ms observed since first sight

    @property
    def key(self) -> Rectangle:
        return self.meta.key


class _LedgerEntry:
    """One run of consecutive observations of the same rectangle."""
    __slots__ = ("key", "owner", "duration", "is_known_ratio")

    def __init__(self, key: Rectangle, owner: Optional[BufferEntry], duration: int, is_known_ratio: bool):
        self.key = key
        self.owner = owner
        self.duration = duration
        self.is_known_ratio = is_known_ratio


class CandidateBuffer:
    """
    Time-ordered ledger of observations and the candidates it references.

    Every observation is appended to the ledger (trusted rectangles included,
    they consume window time), only untrusted rectangles own a BufferEntry.
    Two windows are kept over the ledger:
    - the main window, window_ms * (1 + segmentation) of total time
    - the known-ratio window, known_window_ms * (1 + segmentation) of
      known-ratio time
    Eviction only pops from the head of each window.
    """

    def __init__(self, window_ms: int, known_window_ms: int, segmentation: float):
        """
        Args:
            window_ms: Validation timer covered by the main window
            known_window_ms: Validation timer covered by the known-ratio window
            segmentation: Extra share of time tolerated for interruptions
        """
        self.window_ms = window_ms
        self.known_window_ms = known_window_ms
        self.segmentation = segmentation

        self._candidates: Dict[Rectangle, BufferEntry] = {}
        self._ledger: deque = deque()
        self._known_ledger: deque = deque()
        self.total_time = 0
        self.known_time = 0

    def __contains__(self, key: Rectangle) -> bool:
        return key in self._candidates

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[BufferEntry]:
        return iter(list(self._candidates.values()))

    @property
    def ledger_size(self) -> int:
        return len(self._ledger)

    @property
    def known_ledger_size(self) -> int:
        return len(self._known_ledger)

    def get(self, key: Rectangle) -> Optional[BufferEntry]:
        return self._candidates.get(key)

    def record(self, meta: CropMeta, elapsed: int, trusted: bool) -> Optional[BufferEntry]:
        """
        Account elapsed time to an observation.

        Args:
            meta: Observed rectangle
            elapsed: ms since the previous observation
            trusted: Whether the rectangle is owned by the trust store

        Returns:
            The BufferEntry of the rectangle, None for trusted rectangles
        """
        entry = None
        if not trusted:
            entry = self._candidates.get(meta.key)
            if entry is None:
                entry = BufferEntry(meta=meta)
                self._candidates[meta.key] = entry

        tail = self._ledger[-1] if self._ledger else None
        if tail is not None and meta.is_known_ratio and not (self._known_ledger and self._known_ledger[-1] is tail):
            # Already popped from the known-ratio window, start a new run
            tail = None
        if tail is not None and tail.key == meta.key and tail.owner is entry:
            tail.duration += elapsed
        else:
            tail = _LedgerEntry(meta.key, entry, elapsed, meta.is_known_ratio)
            self._ledger.append(tail)
            if meta.is_known_ratio:
                self._known_ledger.append(tail)

        self.total_time += elapsed
        if meta.is_known_ratio:
            self.known_time += elapsed
        if entry is not None:
            entry.buffered_dwell_time += elapsed
            entry.overall_time += elapsed
            if meta.is_known_ratio:
                entry.known_dwell_time += elapsed
        return entry

    def take(self, key: Rectangle) -> Optional[BufferEntry]:
        """Remove a candidate, used when it moves into the trust store."""
        return self._candidates.pop(key, None)

    def _over_window(self, spent: int, window: int) -> bool:
        return spent > window * (1 + self.segmentation)

    def _too_many_candidates(self) -> bool:
        # Unique candidates should stay proportional to the ledger length
        share = self.segmentation / (1 + self.segmentation)
        return self.total_time > self.known_time and len(self._candidates) > len(self._ledger) * share + 1

    def evict(self) -> int:
        """
        Pop expired observations from both windows.

        Returns:
            Number of candidates dropped because their dwell reached zero
        """
        while self._known_ledger and self._over_window(self.known_time, self.known_window_ms):
            item = self._known_ledger.popleft()
            self.known_time -= item.duration
            if item.owner is not None:
                item.owner.known_dwell_time = max(0, item.owner.known_dwell_time - item.duration)

        dropped = 0
        while self._ledger and (self._over_window(self.total_time, self.window_ms) or self._too_many_candidates()):
            item = self._ledger.popleft()
            self.total_time -= item.duration
            owner = item.owner
            if owner is None:
                continue
            owner.buffered_dwell_time = max(0, owner.buffered_dwell_time - item.duration)
            if owner.buffered_dwell_time == 0 and self._candidates.get(owner.key) is owner:
                del self._candidates[owner.key]
                dropped += 1
        return dropped

    def clear(self):
        self._candidates.clear()
        self._ledger.clear()
        self._known_ledger.clear()
        self.total_time = 0
        self.known_time = 0
