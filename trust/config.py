"""Configuration constants and options for the crop trust layer."""

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import List, Mapping, Any

from domain.errors import ConfigError
from domain.geometry import parse_ratios


class Mode(IntEnum):
    """Engine mode. Odd modes wait for a manual toggle, modes below 3 stop after one crop."""
    DISABLED = 0
    ON_DEMAND = 1
    ONE_SHOT = 2
    DYNAMIC_MANUAL = 3
    DYNAMIC_AUTO = 4


class PreventChangeBias(IntEnum):
    """Which kind of change arms the cooldown."""
    ANY = 0
    LARGER = 1
    SMALLER = 2


# Behavior
MODE = Mode.DYNAMIC_AUTO
START_DELAY = 0  # seconds, skip intro
PREVENT_CHANGE_TIMER = 0  # seconds, 0 disables the cooldown
PREVENT_CHANGE_BIAS = PreventChangeBias.SMALLER
FAST_CHANGE_TIMER = 1  # seconds, re-observation of a trusted rectangle
NEW_KNOWN_RATIO_TIMER = 5  # seconds
NEW_FALLBACK_TIMER = 20  # seconds, >= NEW_KNOWN_RATIO_TIMER, 0 disables
RATIOS = "2.4 2.39 2.35 2.2 2 1.85 16/9 5/3 1.5 4/3 1.25 9/16"
RATIO_PIXEL_TOLERANCE = 2  # even number, also used for offsets
SEGMENTATION = 0.5  # 0 only accepts continuous detections
CORRECTION = 0.6  # minimum share of source width and height, 1 disables

# Detector
DETECT_LIMIT = 24  # maximum black threshold (0-255)
DETECT_ROUND = 2
DETECT_RESET = 1
DETECT_SKIP = 1


@dataclass
class CropOptions:
    """All engine options, timers in seconds."""
    mode: int = MODE
    start_delay: float = START_DELAY
    prevent_change_timer: float = PREVENT_CHANGE_TIMER
    prevent_change_bias: int = PREVENT_CHANGE_BIAS
    fast_change_timer: float = FAST_CHANGE_TIMER
    new_known_ratio_timer: float = NEW_KNOWN_RATIO_TIMER
    new_fallback_timer: float = NEW_FALLBACK_TIMER
    ratios: List[float] = field(default_factory=lambda: parse_ratios(RATIOS))
    ratio_pixel_tolerance: int = RATIO_PIXEL_TOLERANCE
    segmentation: float = SEGMENTATION
    correction: float = CORRECTION
    detect_limit: int = DETECT_LIMIT
    detect_round: int = DETECT_ROUND
    detect_reset: int = DETECT_RESET
    detect_skip: int = DETECT_SKIP

    def __post_init__(self):
        self.ratios = parse_ratios(self.ratios)
        try:
            self.mode = Mode(int(self.mode))
        except ValueError:
            raise ConfigError(f"mode must be 0-4, got {self.mode}")
        try:
            self.prevent_change_bias = PreventChangeBias(int(self.prevent_change_bias))
        except ValueError:
            raise ConfigError(f"prevent_change_bias must be 0-2, got {self.prevent_change_bias}")

        for name in ("start_delay", "prevent_change_timer", "fast_change_timer",
                     "new_known_ratio_timer", "new_fallback_timer", "segmentation"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if not 0 <= self.correction <= 1:
            raise ConfigError(f"correction must be within 0-1, got {self.correction}")
        if not 0 <= self.detect_limit <= 255:
            raise ConfigError(f"detect_limit must be within 0-255, got {self.detect_limit}")
        for name in ("detect_round", "detect_reset", "detect_skip"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        if self.ratio_pixel_tolerance < 0:
            raise ConfigError("ratio_pixel_tolerance must be >= 0")

    @property
    def fallback_enabled(self) -> bool:
        return self.new_fallback_timer > 0 and self.new_fallback_timer >= self.new_known_ratio_timer

    @property
    def fast_change_ms(self) -> int:
        return int(self.fast_change_timer * 1000)

    @property
    def known_ratio_ms(self) -> int:
        return int(self.new_known_ratio_timer * 1000)

    @property
    def fallback_ms(self) -> int:
        return int(self.new_fallback_timer * 1000)

    @property
    def prevent_change_ms(self) -> int:
        return int(self.prevent_change_timer * 1000)

    @property
    def start_delay_ms(self) -> int:
        return int(self.start_delay * 1000)

    @property
    def buffer_window_ms(self) -> int:
        """Dwell window of the whole ledger, before segmentation."""
        return self.fallback_ms if self.fallback_enabled else self.known_ratio_ms

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "CropOptions":
        """
        Build options from a mapping, string values are coerced.

        Raises:
            ConfigError: on unknown keys or invalid values
        """
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, raw in values.items():
            name = key.replace("-", "_")
            if name not in known:
                raise ConfigError(f"Unknown option: {key}")
            if name == "ratios":
                kwargs[name] = raw
                continue
            target = int if known[name].type is int else float
            try:
                kwargs[name] = target(raw) if not isinstance(raw, str) else target(float(raw))
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid value for {key}: {raw!r}")
        return cls(**kwargs)

    @classmethod
    def from_script_opts(cls, text: str, prefix: str = "dynacrop-") -> "CropOptions":
        """
        Parse player style options: "dynacrop-mode=4,dynacrop-ratios=2.4 16/9".

        The prefix is optional on each key.
        """
        values = {}
        for item in text.split(","):
            item = item.strip()
            if not item:
                continue
            if "=" not in item:
                raise ConfigError(f"Expected key=value, got {item!r}")
            key, value = item.split("=", 1)
            key = key.strip()
            if prefix and key.startswith(prefix):
                key = key[len(prefix):]
            values[key] = value.strip()
        return cls.from_dict(values)
