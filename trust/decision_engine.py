"""Decision engine for crop promotion and commit logic."""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, List, Union

from domain.geometry import classify, compute_source
from domain.models import Rectangle, CropMeta
from trust.config import CropOptions, PreventChangeBias
from trust.candidate_buffer import CandidateBuffer, BufferEntry
from trust.correction import is_correctable, find_correction
from trust.trust_store import TrustStore, TrustedEntry, TrustedOffsetSet
from realtime.stability import find_stable_entry
from realtime.sensitivity import SensitivityController


class DecisionState(Enum):
    """Decision state enum."""
    IDLE = "IDLE"  # current rectangle is the applied one
    EVALUATING = "EVALUATING"  # a different rectangle is being observed
    COMMITTED = "COMMITTED"  # a crop change was emitted this step


@dataclass
class DecisionResult:
    """Result of one processing step."""
    state: DecisionState
    collected: CropMeta
    current: CropMeta
    corrected: bool = False
    stabilized: bool = False
    promoted: bool = False
    committed: bool = False
    prevented: bool = False
    apply: Optional[Rectangle] = None
    threshold: int = 0
    threshold_changed: bool = False
    reason: Optional[str] = None


class DecisionEngine:
    """
    Owns every piece of state of one playback session.

    process() is called once per clock step with the latest detector sample
    and the time elapsed since the previous step.
    """

    def __init__(self, options: CropOptions, width: int, height: int):
        """
        Initialize the session.

        Args:
            options: Engine options
            width: Decoded frame width
            height: Decoded frame height
        """
        self.options = options
        self.logger = logging.getLogger("DecisionEngine")

        source = compute_source(width, height, options.detect_round)
        self.source = classify(source, source, options.ratios, options.ratio_pixel_tolerance)

        self.trust_store = TrustStore()
        self.applied: TrustedEntry = self.trust_store.seed(self.source)
        self.trusted_offsets = TrustedOffsetSet(options.ratio_pixel_tolerance, seed=self.source.offset)
        self.buffer = CandidateBuffer(options.buffer_window_ms, options.known_ratio_ms, options.segmentation)
        self.sensitivity = SensitivityController(options.detect_limit)

        self.last_collected: Optional[CropMeta] = None
        self.prevent_until: Optional[int] = None
        self.state = DecisionState.IDLE

    def classify(self, rect: Rectangle) -> CropMeta:
        trusted = self.trust_store.get(rect)
        if trusted is not None:
            return trusted.meta
        return classify(rect, self.source.rect, self.options.ratios, self.options.ratio_pixel_tolerance)

    def is_ready(self, candidate: BufferEntry) -> bool:
        """Whether a candidate dwelled long enough to be trusted."""
        meta = candidate.meta
        if meta.is_invalid:
            return False
        if meta.is_known_ratio and candidate.known_dwell_time >= self.options.known_ratio_ms:
            return True
        return self.options.fallback_enabled and candidate.buffered_dwell_time >= self.options.fallback_ms

    def process(self, collected: CropMeta, time_ms: int, elapsed: int) -> DecisionResult:
        """
        Process one step for the latest sample.

        Args:
            collected: Latest classified sample
            time_ms: Playback time of this step
            elapsed: ms elapsed since the previous step

        Returns:
            DecisionResult, apply is set when the pipeline must crop
        """
        opts = self.options
        self.logger.debug("Collected %s | Offset X:%s Y:%s | limit:%s",
                          collected, collected.offset.x, collected.offset.y, self.sensitivity.current)

        trusted = self.trust_store.get(collected.key)
        candidate = self.buffer.record(collected, elapsed, trusted=trusted is not None)
        if trusted is not None:
            trusted.total_dwell_time += elapsed
            if trusted.last_seen_time < 0:
                trusted.last_seen_time = 0

        # Offsets are learned from long observations only
        if (candidate is not None and not collected.is_invalid and opts.fallback_enabled and
                candidate.buffered_dwell_time >= opts.fallback_ms):
            if self.trusted_offsets.add(collected.offset):
                self.logger.debug("Trusted offset X:%s Y:%s", collected.offset.x, collected.offset.y)

        current: Union[TrustedEntry, BufferEntry] = trusted if trusted is not None else candidate
        result = DecisionResult(state=DecisionState.IDLE, collected=collected, current=collected)

        # Dark or ambiguous frames, reuse what is already known
        if candidate is not None and is_correctable(collected, self.source.rect, opts.correction):
            closest = find_correction(collected, self.trust_store, opts.ratio_pixel_tolerance, self.applied.key)
            if closest is not None:
                current = closest
                result.corrected = True

        if isinstance(current, TrustedEntry):
            stable = find_stable_entry(current, self.trust_store, opts.detect_round)
            if stable is not None:
                current = stable
                result.stabilized = True

        if result.stabilized:
            self.logger.debug("\\ Stabilized %s", current.meta)
        elif result.corrected:
            self.logger.debug("\\ Corrected %s", current.meta)

        self.trust_store.cycle_last_seen(current.key, elapsed)
        result.current = current.meta

        new_ready = candidate is not None and self.is_ready(candidate)
        current_trusted = current if isinstance(current, TrustedEntry) else None
        fast = opts.fast_change_ms
        if current.meta.is_source:
            detect_source = ((current is trusted and self.last_collected is not None and
                              self.last_collected.key == current.key and self.sensitivity.raised) or
                             current_trusted.last_seen_time >= fast)
            confirmation = False
        else:
            detect_source = False
            confirmation = (current_trusted is not None and current_trusted.last_seen_time >= fast) or new_ready

        if collected.is_invalid:
            result.reason = "invalid"
        elif current.key == self.applied.key:
            result.reason = "applied"
        elif not self.trusted_offsets.is_trusted(current.meta.offset):
            result.reason = "untrusted_offset"
        elif not (confirmation or detect_source):
            result.reason = "waiting"
        else:
            self._commit(current, time_ms, result)

        if result.committed:
            self.state = DecisionState.COMMITTED
        elif current.key == self.applied.key:
            self.state = DecisionState.IDLE
        else:
            self.state = DecisionState.EVALUATING
        result.state = self.state

        dropped = self.buffer.evict()
        if dropped:
            self.logger.debug("Evicted %d stale candidates", dropped)

        result.threshold_changed = self.sensitivity.adjust(current.meta, collected, self.last_collected)
        result.threshold = self.sensitivity.current
        self.last_collected = collected
        return result

    def _promote(self, candidate: BufferEntry) -> TrustedEntry:
        """Move a candidate from the buffer into the trust store."""
        self.buffer.take(candidate.key)
        entry = TrustedEntry(
            meta=candidate.meta,
            applied_count=0,
            total_dwell_time=candidate.overall_time,
            last_seen_time=candidate.buffered_dwell_time,
        )
        return self.trust_store.add(entry)

    def _commit(self, current: Union[TrustedEntry, BufferEntry], time_ms: int, result: DecisionResult):
        if isinstance(current, BufferEntry):
            entry = self._promote(current)
            result.promoted = True
            if find_stable_entry(entry, self.trust_store, self.options.detect_round) is not None:
                # Trusted from now on, but a better observed twin exists
                result.reason = "near_duplicate"
                return
        else:
            entry = current

        if self.prevent_until is not None and time_ms < self.prevent_until:
            result.prevented = True
            result.reason = "prevent_change"
            self.logger.debug("Change to %s prevented until %s", entry.meta, self.prevent_until)
            return

        previous = self.applied.meta.rect
        entry.applied_count += 1
        self.applied = entry
        self._arm_prevent_change(previous, entry.meta.rect, time_ms)
        result.apply = entry.meta.rect
        result.committed = True
        result.reason = "committed"
        self.logger.info("Apply: %s", entry.meta)

    def _arm_prevent_change(self, previous: Rectangle, new: Rectangle, time_ms: int):
        duration = self.options.prevent_change_ms
        if duration <= 0:
            return
        self.prevent_until = None
        bias = self.options.prevent_change_bias
        larger = new.w > previous.w or new.h > previous.h
        smaller = new.w < previous.w or new.h < previous.h
        if (bias == PreventChangeBias.ANY or
                bias == PreventChangeBias.LARGER and larger or
                bias == PreventChangeBias.SMALLER and smaller):
            self.prevent_until = time_ms + duration

    def set_applied_source(self):
        """Crop was removed from the pipeline."""
        self.applied = self.trust_store.get(self.source.key)

    def reset_transient(self):
        """Drop everything tied to the current playback position."""
        self.buffer.clear()
        self.last_collected = None
        self.prevent_until = None
        self.state = DecisionState.IDLE

    def describe(self) -> List[str]:
        """Human readable statistics of the session."""
        lines = ["Meta Stats:"]
        lines.append("Trusted Offset - X:%s | Y:%s" % (
            " ".join(str(v) for v in self.trusted_offsets.x),
            " ".join(str(v) for v in self.trusted_offsets.y)))
        for entry in self.trust_store:
            lines.append("%s | offX=%s offY=%s | applied=%s overall=%s last_seen=%s" % (
                entry.meta, entry.meta.offset.x, entry.meta.offset.y, entry.applied_count,
                entry.total_dwell_time / 1000, entry.last_seen_time / 1000))
        lines.append("Buffer - total: %s %ssec, unique_meta: %s | known_ratio: %s %ssec" % (
            self.buffer.ledger_size, self.buffer.total_time / 1000, len(self.buffer),
            self.buffer.known_ledger_size, self.buffer.known_time / 1000))
        for entry in self.buffer:
            lines.append("- %s | offX=%s offY=%s | buffer=%ssec known_ratio=%s" % (
                entry.meta, entry.meta.offset.x, entry.meta.offset.y,
                entry.buffered_dwell_time / 1000, entry.meta.is_known_ratio))
        return lines
