"""Exception taxonomy for camera, capture and oracle failures."""
from __future__ import annotations

from typing import Optional

from .state import FailureReason


class IdCheckError(RuntimeError):
    """Base class; carries the failure reason surfaced to the page, when there is one."""

    reason: Optional[FailureReason] = None


class CameraError(IdCheckError):
    """Camera acquisition failed; recoverable by retrying ``open``."""

    reason = FailureReason.UNKNOWN_CAPTURE_ERROR


class PermissionDenied(CameraError):
    reason = FailureReason.PERMISSION_DENIED


class DeviceNotFound(CameraError):
    reason = FailureReason.DEVICE_NOT_FOUND


class UnknownCaptureError(CameraError):
    reason = FailureReason.UNKNOWN_CAPTURE_ERROR


class NoActiveStream(IdCheckError):
    """``capture_frame`` called before ``open`` succeeded or after ``close``."""


class FrameGrabError(IdCheckError):
    """The device was open but produced no usable frame."""


class CaptureFailed(IdCheckError):
    """A step could not capture its frame; the partial image set was discarded."""

    reason = FailureReason.CAPTURE_FAILED

    def __init__(self, action_label: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"capture failed during step '{action_label}'")
        self.action_label = action_label
        self.cause = cause


class OracleUnavailable(IdCheckError):
    """The judgment service could not be reached or returned an unusable response."""

    reason = FailureReason.ORACLE_UNAVAILABLE


class IncompleteImageSet(IdCheckError):
    """Refused to build an oracle request without every labeled frame."""


class RunInProgress(IdCheckError):
    """``start`` was called while a run already owns the camera."""


class InvalidFramePayload(ValueError):
    """A data-URI payload could not be decoded into an image."""


__all__ = [
    "CameraError",
    "CaptureFailed",
    "DeviceNotFound",
    "FrameGrabError",
    "IdCheckError",
    "IncompleteImageSet",
    "InvalidFramePayload",
    "NoActiveStream",
    "OracleUnavailable",
    "PermissionDenied",
    "RunInProgress",
    "UnknownCaptureError",
]
