"""Capture devices used by the liveness controller."""
from .camera import (
    CameraConstraints,
    CameraFactory,
    CameraSession,
    OpenCVCameraSession,
    capture_single_frame,
    open_camera,
    opencv_camera_factory,
)

__all__ = [
    "CameraConstraints",
    "CameraFactory",
    "CameraSession",
    "OpenCVCameraSession",
    "capture_single_frame",
    "open_camera",
    "opencv_camera_factory",
]
