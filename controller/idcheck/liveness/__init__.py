"""Liveness step script and sequencer."""
from .steps import (
    ACTION_LABELS,
    BLINK,
    NEUTRAL,
    TURN_RIGHT,
    LivenessStep,
    StepSequencer,
    build_liveness_steps,
)

__all__ = [
    "ACTION_LABELS",
    "BLINK",
    "LivenessStep",
    "NEUTRAL",
    "StepSequencer",
    "TURN_RIGHT",
    "build_liveness_steps",
]
