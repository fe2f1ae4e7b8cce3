"""
Video pipeline commands issued by the crop controller.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Tuple, Any

from domain.errors import DetectorUnavailableError
from domain.models import Rectangle


class CropPipeline(ABC):
    """
    Filter-graph side of the engine.

    Every command is idempotent when repeated with identical arguments.
    """

    @abstractmethod
    def configure_detector(self, threshold: int, round_: int, reset: int, skip: Optional[int] = None) -> None:
        """
        Insert or reconfigure the black-bar detector.

        Raises:
            DetectorUnavailableError: if the pipeline has no detector or
                rejects the parameters
        """

    @abstractmethod
    def remove_detector(self) -> None:
        pass

    @abstractmethod
    def apply_crop(self, rect: Rectangle) -> None:
        pass

    @abstractmethod
    def remove_crop(self) -> None:
        pass


class RecordingPipeline(CropPipeline):
    """In-memory pipeline that records the issued commands."""

    def __init__(self, detector_available: bool = True, supports_skip: bool = True, echo: bool = False):
        """
        Args:
            detector_available: If False, every detector configuration fails
            supports_skip: If False, configurations passing skip are rejected
            echo: Print each command as it is issued
        """
        self.detector_available = detector_available
        self.supports_skip = supports_skip
        self.echo = echo
        self.commands: List[Tuple[str, Any]] = []
        self.detector: Optional[Tuple[int, int, int, Optional[int]]] = None
        self.crop: Optional[Rectangle] = None
        self.logger = logging.getLogger("RecordingPipeline")

    def _record(self, name: str, arg: Any = None):
        self.commands.append((name, arg))
        if self.echo:
            print(name if arg is None else f"{name} {arg}")

    def configure_detector(self, threshold, round_, reset, skip=None):
        if not self.detector_available or (skip is not None and not self.supports_skip):
            raise DetectorUnavailableError(
                f"cropdetect rejected: limit={threshold} round={round_} reset={reset} skip={skip}")
        self.detector = (threshold, round_, reset, skip)
        self._record("configure_detector", self.detector)

    def remove_detector(self):
        if self.detector is not None:
            self.detector = None
            self._record("remove_detector")

    def apply_crop(self, rect):
        self.crop = rect
        self._record("apply_crop", rect)

    def remove_crop(self):
        if self.crop is not None:
            self.crop = None
            self._record("remove_crop")

    def calls(self, name: str) -> list:
        """Arguments of every recorded command with the given name."""
        return [arg for cmd, arg in self.commands if cmd == name]
