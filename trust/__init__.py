"""Trust layer for dynacrop: candidate buffering, promotion and commit decisions."""

from trust.config import CropOptions, Mode, PreventChangeBias
from trust.trust_store import TrustedEntry, TrustedOffsetSet, TrustStore
from trust.candidate_buffer import BufferEntry, CandidateBuffer
from trust.correction import find_correction
from trust.decision_engine import DecisionState, DecisionResult, DecisionEngine

__all__ = [
    "CropOptions",
    "Mode",
    "PreventChangeBias",
    "TrustedEntry",
    "TrustedOffsetSet",
    "TrustStore",
    "BufferEntry",
    "CandidateBuffer",
    "find_correction",
    "DecisionState",
    "DecisionResult",
    "DecisionEngine",
]
