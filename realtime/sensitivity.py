"""
Detector threshold control.
"""
from enum import IntEnum
from typing import Optional

from domain.geometry import is_near
from domain.models import CropMeta


LIMIT_STEP = 1
LIMIT_UP = 2  # source ramps up faster than anything ramps down
STABLE_SAMPLE_PX = 2  # consecutive samples closer than this are stable


class LimitDirection(IntEnum):
    DOWN = -1
    HOLD = 0
    UP = 1


class SensitivityController:
    """
    Moves the detector black threshold after every processed sample.

    - source observed and the sample is stable (or first): ramp up fast toward the maximum
    - stable sample: hold
    - anything changing: step down toward zero
    """

    def __init__(self, maximum: int, step: int = LIMIT_STEP, up: int = LIMIT_UP,
                 stable_px: int = STABLE_SAMPLE_PX):
        """
        Args:
            maximum: Highest threshold (detect_limit)
            step: Threshold change per sample
            up: Multiplier of step when ramping up
            stable_px: Width/height difference tolerated between stable samples
        """
        self.maximum = maximum
        self.step = step
        self.up = up
        self.stable_px = stable_px
        self.current = maximum
        self.direction: Optional[LimitDirection] = None

    @property
    def raised(self) -> bool:
        """Whether the last adjustment was a ramp up."""
        return self.direction == LimitDirection.UP

    def is_stable(self, collected: CropMeta, last_collected: Optional[CropMeta]) -> bool:
        if collected.is_invalid or last_collected is None:
            return False
        return collected.key == last_collected.key or is_near(collected.rect, last_collected.rect, self.stable_px)

    def adjust(self, current: CropMeta, collected: CropMeta, last_collected: Optional[CropMeta]) -> bool:
        """
        Adjust the threshold for one processed sample.

        Args:
            current: Rectangle retained after correction/stabilization
            collected: Raw sample of this step
            last_collected: Raw sample of the previous step

        Returns:
            True if the threshold value changed
        """
        previous = self.current
        stable = self.is_stable(collected, last_collected)
        if current.is_source and (stable or last_collected is None):
            self.direction = LimitDirection.UP
            self.current = min(self.current + self.step * self.up, self.maximum)
        elif stable:
            self.direction = LimitDirection.HOLD
        else:
            self.direction = LimitDirection.DOWN
            self.current = max(self.current - self.step, 0)
        return previous != self.current

    def reset(self):
        self.current = self.maximum
        self.direction = None
