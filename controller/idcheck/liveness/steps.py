"""Timed prompt sequence that collects one frame per liveness action."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from ..config import LivenessSettings
from ..errors import CaptureFailed
from ..frames import CapturedImageSet
from ..sensors.camera import CameraSession

logger = logging.getLogger(__name__)

NEUTRAL = "neutral"
BLINK = "blink"
TURN_RIGHT = "turn_right"
ACTION_LABELS = (NEUTRAL, BLINK, TURN_RIGHT)


@dataclass(frozen=True)
class LivenessStep:
    prompt_text: str
    action_label: str
    duration_ms: int

    def to_dict(self) -> dict[str, object]:
        return {
            "prompt_text": self.prompt_text,
            "action_label": self.action_label,
            "duration_ms": self.duration_ms,
        }


def build_liveness_steps(settings: Optional[LivenessSettings] = None) -> tuple[LivenessStep, ...]:
    """
    The fixed three-step script.

    Blinking is over almost instantly, so its window is shorter and the frame is
    grabbed mid-action rather than at a settled pose.
    """
    settings = settings or LivenessSettings()
    return (
        LivenessStep(
            prompt_text="Look straight at the camera and hold a neutral expression.",
            action_label=NEUTRAL,
            duration_ms=settings.baseline_step_ms,
        ),
        LivenessStep(
            prompt_text="Now, please blink your eyes.",
            action_label=BLINK,
            duration_ms=settings.blink_step_ms,
        ),
        LivenessStep(
            prompt_text="Finally, turn your head slightly to the right.",
            action_label=TURN_RIGHT,
            duration_ms=settings.baseline_step_ms,
        ),
    )


StepCallback = Callable[[int, LivenessStep], Awaitable[None]]


class StepSequencer:
    """Walks the steps in order: prompt, wait the fixed window, capture once."""

    def __init__(self, steps: Sequence[LivenessStep]) -> None:
        labels = tuple(step.action_label for step in steps)
        if not labels:
            raise ValueError("at least one liveness step is required")
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate action labels in {labels}")
        self.steps: tuple[LivenessStep, ...] = tuple(steps)
        self.labels = labels

    async def run(self, camera: CameraSession, on_step: Optional[StepCallback] = None) -> CapturedImageSet:
        images = CapturedImageSet(self.labels)
        for index, step in enumerate(self.steps):
            if on_step is not None:
                await on_step(index, step)

            # The user performs the action during this window; no early exit.
            await asyncio.sleep(step.duration_ms / 1000)

            try:
                frame = camera.capture_frame()
            except Exception as exc:
                images.clear()
                logger.warning("Capture failed on step %d (%s): %s", index, step.action_label, exc)
                raise CaptureFailed(step.action_label, cause=exc) from exc

            images.add(step.action_label, frame)
            logger.debug("Captured %s (%d bytes)", step.action_label, len(frame.data))

        images.require_complete()
        return images


__all__ = [
    "ACTION_LABELS",
    "BLINK",
    "LivenessStep",
    "NEUTRAL",
    "StepCallback",
    "StepSequencer",
    "TURN_RIGHT",
    "build_liveness_steps",
]
