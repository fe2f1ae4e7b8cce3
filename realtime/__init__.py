"""Realtime control for dynacrop: stabilization and detector sensitivity.

Import the lifecycle controller from realtime.lifecycle.
"""

from realtime.stability import find_stable_entry
from realtime.sensitivity import SensitivityController, LimitDirection

__all__ = [
    "find_stable_entry",
    "SensitivityController",
    "LimitDirection",
]
