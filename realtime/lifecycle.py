"""
CropController: drives the decision engine from detector samples, playback
clock ticks and lifecycle events, and issues the pipeline commands.
"""
import logging
import math
from enum import Enum
from typing import Optional, Mapping, Any, Union, List

from domain.errors import DetectorUnavailableError
from domain.events import Seek, Resume, Pause, Toggle, FileLoaded, FileEnded, LifecycleEvent
from domain.models import Rectangle, CropMeta
from domain.pipeline import CropPipeline
from trust.config import CropOptions, Mode
from trust.decision_engine import DecisionEngine, DecisionResult


class LifecycleState(Enum):
    """Lifecycle state of the controller."""
    IDLE = "IDLE"  # no file loaded
    LOADED = "LOADED"  # session created, detector not running
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"  # seek, pause or toggle
    ENDED = "ENDED"
    DISABLED = "DISABLED"  # detector unavailable


class CropController:
    """
    Single-threaded controller, all callbacks come from the same dispatcher.

    Samples are kept as the latest observation and accounted on the next
    clock tick, with the time elapsed since the previous accounted tick.
    """

    def __init__(self, pipeline: CropPipeline, options: Optional[CropOptions] = None):
        """
        Args:
            pipeline: Receives detector and crop commands
            options: Engine options (defaults if None)
        """
        self.pipeline = pipeline
        self.options = options or CropOptions()
        self.logger = logging.getLogger("CropController")

        self.engine: Optional[DecisionEngine] = None
        self.seeking = False
        self.paused = False
        self.toggled = False
        self.detector_missing = False
        self.last_result: Optional[DecisionResult] = None

        self._ended = False
        self._detector_inserted = False
        self._crop_inserted = False
        self._awaiting_sample = False
        self._in_progress = False
        self._pending_threshold: Optional[int] = None
        self._pending_auto_toggle = False
        self._detect_skip: Optional[int] = self.options.detect_skip

        self._collected: Optional[CropMeta] = None
        self._time_current: Optional[int] = None
        self._time_prev: Optional[int] = None
        self._time_insert: Optional[int] = None

    @property
    def state(self) -> LifecycleState:
        if self.detector_missing:
            return LifecycleState.DISABLED
        if self.engine is None:
            return LifecycleState.ENDED if self._ended else LifecycleState.IDLE
        if self.toggled or self.paused or self.seeking:
            return LifecycleState.SUSPENDED
        if not self._detector_inserted:
            return LifecycleState.LOADED
        return LifecycleState.ACTIVE

    @property
    def suspended_by(self) -> List[str]:
        reasons = []
        if self.seeking:
            reasons.append("seek")
        if self.paused:
            reasons.append("pause")
        if self.toggled:
            reasons.append("toggle")
        return reasons

    @property
    def collected(self) -> Optional[CropMeta]:
        return self._collected

    @property
    def applied(self) -> Optional[Rectangle]:
        if self.engine is None:
            return None
        return self.engine.applied.meta.rect

    # Inputs

    def on_detection(self, sample: Union[Rectangle, Mapping[str, Any], None],
                     arrival_time: Optional[int] = None):
        """
        Store a new detector sample.

        Args:
            sample: Rectangle, detector metadata mapping, or None for no data
            arrival_time: ms, only used before the first clock tick
        """
        if self.engine is None:
            return
        rect = sample if isinstance(sample, Rectangle) else Rectangle.from_metadata(sample)
        if rect is None:
            self.logger.debug("No detection data.")
            return

        # Time since the last tick belongs to this sample
        self._time_insert = self._time_current if self._time_current is not None else arrival_time
        if self._collected is None or self._collected.key != rect:
            self._collected = self.engine.classify(rect)
        self._awaiting_sample = False

    def on_clock_tick(self, time_ms: Optional[float]) -> Optional[DecisionResult]:
        """
        Advance the playback clock and process the latest sample.

        Args:
            time_ms: Playback time in ms

        Returns:
            DecisionResult if a step was processed, None if skipped
        """
        if time_ms is None or not math.isfinite(time_ms):
            self.logger.debug("Clock tick without time, skipped.")
            return None
        if self.engine is None or self._in_progress or self.state != LifecycleState.ACTIVE:
            return None

        self._time_prev = self._time_current
        self._time_current = int(math.floor(time_ms))
        if self._time_insert is None:
            self._time_insert = self._time_current

        if (self._collected is None or self._time_prev is None or
                self._awaiting_sample or self._time_current < self.options.start_delay_ms):
            return None

        self._in_progress = True
        try:
            result = self._process()
        finally:
            self._in_progress = False
        self._flush()
        return result

    def on_lifecycle(self, event: LifecycleEvent):
        if isinstance(event, FileLoaded):
            self.file_loaded(event)
        elif isinstance(event, FileEnded):
            self.file_ended()
        elif isinstance(event, Seek):
            self.seek()
        elif isinstance(event, Resume):
            self.resume()
        elif isinstance(event, Pause):
            self.pause(event.paused)
        elif isinstance(event, Toggle):
            self.toggle(event.auto)
        else:
            raise TypeError(f"Unknown lifecycle event: {event!r}")

    # Processing

    def _process(self) -> DecisionResult:
        elapsed = self._time_current - self._time_insert
        if elapsed < 0:
            self.logger.debug("Clock went back by %d ms, ignored.", -elapsed)
            elapsed = 0
        self._time_insert = self._time_current

        result = self.engine.process(self._collected, self._time_current, elapsed)
        self.last_result = result
        if result.apply is not None:
            self.pipeline.apply_crop(result.apply)
            self._crop_inserted = True
            if self.options.mode < Mode.DYNAMIC_MANUAL:
                self._pending_auto_toggle = True
        if result.threshold_changed:
            self._pending_threshold = result.threshold
        return result

    def _flush(self):
        """Run the work deferred until the step unwinds."""
        if self._pending_auto_toggle:
            self._pending_auto_toggle = False
            self.toggle(auto=True)
        if self._pending_threshold is not None:
            self._pending_threshold = None
            self._insert_detector()

    # Detector

    def _configure_detector(self, skip: Optional[int]):
        opts = self.options
        self.pipeline.configure_detector(self.engine.sensitivity.current, opts.detect_round, opts.detect_reset, skip)

    def _insert_detector(self):
        if self.toggled or self.paused or self.engine is None or self.detector_missing:
            return
        try:
            self._configure_detector(self._detect_skip)
        except DetectorUnavailableError as first_error:
            if self._detect_skip is None:
                self._detector_failed(first_error)
                return
            # Older detector builds reject the skip parameter
            self.logger.debug("Detector rejected skip, retrying without it.")
            self._detect_skip = None
            try:
                self._configure_detector(None)
            except DetectorUnavailableError as e:
                self._detector_failed(e)
                return
        self._detector_inserted = True
        self._awaiting_sample = True

    def _remove_detector(self):
        if self._detector_inserted:
            self.pipeline.remove_detector()
            self._detector_inserted = False

    def _detector_failed(self, error: Exception):
        self.logger.error("Detector unavailable, disabling: %s", error)
        self.cleanup()
        self.detector_missing = True

    # Lifecycle

    def file_loaded(self, event: FileLoaded):
        if self.options.mode == Mode.DISABLED:
            self.logger.info("mode = 0, disabled.")
            return
        if self.engine is not None:
            self.cleanup()
        self.logger.info("File loaded.")
        if event.albumart or event.width <= 0 or event.height <= 0:
            self.logger.warning("Exit, only works for videos.")
            return

        self.engine = DecisionEngine(self.options, event.width, event.height)
        self.logger.debug("Source %s at %s fps", self.engine.source, event.fps)
        self.seeking = self.paused = self.toggled = False
        self.detector_missing = False
        self.last_result = None
        self._ended = False
        self._crop_inserted = False
        self._detector_inserted = False
        self._awaiting_sample = False
        self._pending_threshold = None
        self._pending_auto_toggle = False
        self._detect_skip = self.options.detect_skip
        self._collected = None
        self._time_current = event.time_pos
        self._time_prev = self._time_insert = None

        self._insert_detector()
        if self.options.mode % 2 == 1:
            self.toggle(auto=True)

    def file_ended(self):
        if self.engine is None:
            return
        self.cleanup()

    def cleanup(self):
        """Remove every filter and discard the session."""
        if self.engine is not None and not self.paused:
            self.log_stats()
        self.logger.info("Cleanup.")
        self._remove_detector()
        if self._crop_inserted:
            self.pipeline.remove_crop()
            self._crop_inserted = False
        self.engine = None
        self._ended = True
        self._collected = None
        self._pending_threshold = None
        self._pending_auto_toggle = False
        self._time_current = self._time_prev = self._time_insert = None

    def _suspend(self, reason: str, filter_change: bool):
        self.logger.debug("Stop by %s event.", reason)
        if filter_change:
            self._remove_detector()
        self._time_current = self._time_prev = self._time_insert = None
        self._collected = None
        self._pending_threshold = None
        if self.engine is not None:
            self.engine.reset_transient()

    def _resume(self, reason: str, filter_change: bool):
        self.logger.debug("Resume by %s event.", reason)
        if filter_change:
            self._insert_detector()

    def seek(self):
        if self.engine is None:
            return
        self.seeking = True
        if not self.paused:
            self._suspend("seek", False)

    def resume(self):
        if self.engine is None:
            return
        if not self.paused:
            self._resume("playback-restart", False)
        self.seeking = False

    def pause(self, paused: bool = True):
        if self.engine is None:
            return
        if paused:
            self._suspend("pause", True)
            self.log_stats()
            self.paused = True
        else:
            self.paused = False
            if not self.toggled:
                self._resume("unpause", True)

    def toggle(self, auto: bool = False):
        """
        Manual control cycle.

        First press keeps the crop and stops detection, second press removes
        the crop, third press restarts detection.
        """
        if self.detector_missing:
            self.logger.warning("Detector unavailable, nothing to toggle.")
            return
        if self.engine is None:
            return
        if self._crop_inserted and not self._detector_inserted:
            self.pipeline.remove_crop()
            self._crop_inserted = False
            self.engine.set_applied_source()
            if not auto:
                self.logger.info("Crop removed.")
            return
        if not self.toggled:
            self._suspend("toggle", True)
            self.toggled = True
            if not auto:
                self.logger.info("dynacrop paused.")
        else:
            self.toggled = False
            self._resume("toggle", True)
            if not auto:
                self.logger.info("dynacrop resumed.")

    def log_stats(self):
        if self.engine is None:
            return
        for line in self.engine.describe():
            self.logger.info(line)
