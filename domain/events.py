"""
Playback lifecycle events consumed by the crop controller.
"""
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Seek:
    """Playback position jumped, transient detections are stale."""


@dataclass(frozen=True)
class Resume:
    """Playback restarted after a seek."""


@dataclass(frozen=True)
class Pause:
    paused: bool = True


@dataclass(frozen=True)
class Toggle:
    """Manual key press."""
    auto: bool = False


@dataclass(frozen=True)
class FileLoaded:
    width: int
    height: int
    fps: Optional[float] = None
    albumart: bool = False  # cover image, nothing to crop
    time_pos: Optional[int] = None  # ms


@dataclass(frozen=True)
class FileEnded:
    pass


LifecycleEvent = Union[Seek, Resume, Pause, Toggle, FileLoaded, FileEnded]
