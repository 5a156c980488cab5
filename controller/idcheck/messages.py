"""User-facing copy for every failure the page can show."""
from __future__ import annotations

from typing import Dict

from .state import FailureReason

FAILURE_MESSAGES: Dict[FailureReason, str] = {
    FailureReason.PERMISSION_DENIED: (
        "Camera permission denied. Please allow camera access in your browser settings."
    ),
    FailureReason.DEVICE_NOT_FOUND: "No camera found. Please ensure a camera is connected and enabled.",
    FailureReason.UNKNOWN_CAPTURE_ERROR: "An error occurred while accessing the camera.",
    FailureReason.CAPTURE_FAILED: "Failed to capture image. Please try again.",
    FailureReason.VERDICT_NEGATIVE: (
        "Verification failed. Please ensure good lighting and follow the prompts."
    ),
    FailureReason.ORACLE_UNAVAILABLE: (
        "The verification service is unavailable right now. Please try again later."
    ),
}

SUCCESS_MESSAGE = "Verification successful."


def message_for(reason: FailureReason) -> str:
    return FAILURE_MESSAGES[reason]


__all__ = ["FAILURE_MESSAGES", "SUCCESS_MESSAGE", "message_for"]
