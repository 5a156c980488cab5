"""Shared orchestrator state definitions for the liveness check."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class OrchestratorPhase(str, enum.Enum):
    """
    Orchestrator phases in chronological order:

    1. IDLE              - Constructed, reset, or retried; camera not held
    2. RUNNING_STEP      - Prompting step N and waiting its fixed window
    3. AWAITING_VERDICT  - All three frames captured, oracle call in flight
    4. SUCCEEDED         - Same person and live
    5. FAILED            - Camera, capture, oracle or verdict failure
    """
    IDLE = "idle"
    RUNNING_STEP = "running_step"
    AWAITING_VERDICT = "awaiting_verdict"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    UNKNOWN_CAPTURE_ERROR = "unknown_capture_error"
    CAPTURE_FAILED = "capture_failed"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    VERDICT_NEGATIVE = "verdict_negative"

    @property
    def is_camera_error(self) -> bool:
        return self in _CAMERA_REASONS


_CAMERA_REASONS = frozenset(
    {
        FailureReason.PERMISSION_DENIED,
        FailureReason.DEVICE_NOT_FOUND,
        FailureReason.UNKNOWN_CAPTURE_ERROR,
    }
)

TERMINAL_PHASES = frozenset({OrchestratorPhase.SUCCEEDED, OrchestratorPhase.FAILED})


@dataclass(frozen=True)
class OrchestratorState:
    """Tagged variant: ``step_index`` only for RUNNING_STEP, ``reason`` only for FAILED."""

    phase: OrchestratorPhase = OrchestratorPhase.IDLE
    step_index: Optional[int] = None
    reason: Optional[FailureReason] = None

    @classmethod
    def idle(cls) -> "OrchestratorState":
        return cls(OrchestratorPhase.IDLE)

    @classmethod
    def running_step(cls, index: int) -> "OrchestratorState":
        return cls(OrchestratorPhase.RUNNING_STEP, step_index=index)

    @classmethod
    def awaiting_verdict(cls) -> "OrchestratorState":
        return cls(OrchestratorPhase.AWAITING_VERDICT)

    @classmethod
    def succeeded(cls) -> "OrchestratorState":
        return cls(OrchestratorPhase.SUCCEEDED)

    @classmethod
    def failed(cls, reason: FailureReason) -> "OrchestratorState":
        return cls(OrchestratorPhase.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def is_running(self) -> bool:
        return self.phase in {OrchestratorPhase.RUNNING_STEP, OrchestratorPhase.AWAITING_VERDICT}


class StatusPhase(str, enum.Enum):
    """Phase names as reported to the hosting page."""
    IDLE = "idle"
    STEP = "step"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusUpdate:
    """Status-change notification; one per orchestrator transition."""

    phase: StatusPhase
    step_index: Optional[int] = None
    prompt_text: Optional[str] = None
    action_label: Optional[str] = None
    total_steps: Optional[int] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"phase": self.phase.value}
        for key in ("step_index", "prompt_text", "action_label", "total_steps", "message"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload


@dataclass(frozen=True)
class CompletionResult:
    """Completion notification; fired once per run that reached the sequence."""

    passed: bool
    feedback: Optional[str] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"passed": self.passed}
        if self.feedback is not None:
            payload["feedback"] = self.feedback
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass
class LivenessEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    phase: OrchestratorPhase
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


__all__ = [
    "CompletionResult",
    "FailureReason",
    "LivenessEvent",
    "OrchestratorPhase",
    "OrchestratorState",
    "StatusPhase",
    "StatusUpdate",
    "TERMINAL_PHASES",
]
