"""
Front-facing camera session.

Acquires the capture device, hands out still frames on demand and releases the
device on close. The OpenCV backend replaces the browser ``getUserMedia`` stream.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import numpy as np

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from ..config import CameraSettings
from ..errors import (
    CameraError,
    DeviceNotFound,
    FrameGrabError,
    NoActiveStream,
    PermissionDenied,
    UnknownCaptureError,
)
from ..frames import CapturedFrame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConstraints:
    """Requested stream shape; the device may pick the nearest supported mode."""
    ideal_width: int = 1280
    ideal_height: int = 720
    facing_mode: str = "user"

    @classmethod
    def from_settings(cls, settings: CameraSettings) -> "CameraConstraints":
        return cls(
            ideal_width=settings.ideal_width,
            ideal_height=settings.ideal_height,
            facing_mode=settings.facing_mode,
        )


class CameraSession:
    """Exclusive handle on one video input."""

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    async def open(self, constraints: CameraConstraints) -> None:
        raise NotImplementedError

    def capture_frame(self) -> CapturedFrame:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


CameraFactory = Callable[[], CameraSession]


class OpenCVCameraSession(CameraSession):
    """Camera session backed by ``cv2.VideoCapture``."""

    def __init__(self, camera_id: int = 0, *, jpeg_quality: int = 92, device_root: Path = Path("/dev")) -> None:
        self.camera_id = camera_id
        self.jpeg_quality = jpeg_quality
        self.device_root = device_root
        self._cap: Optional[Any] = None
        self._mirror = False

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    async def open(self, constraints: CameraConstraints) -> None:
        # Drop anything left over from an earlier attempt before asking again.
        self.close()

        if cv2 is None:
            raise UnknownCaptureError("OpenCV is not available")

        logger.info(
            "Opening camera (camera_id=%s, ideal=%dx%d, facing=%s)",
            self.camera_id,
            constraints.ideal_width,
            constraints.ideal_height,
            constraints.facing_mode,
        )
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._open_capture, constraints)
        try:
            cap = await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(_release_late_capture)
            raise
        except CameraError:
            raise
        except Exception as exc:
            raise UnknownCaptureError(f"camera {self.camera_id} failed to open: {exc}") from exc

        self._cap = cap
        self._mirror = constraints.facing_mode == "user"
        logger.info("Camera %s opened", self.camera_id)

    def _open_capture(self, constraints: CameraConstraints) -> Any:
        cap = cv2.VideoCapture(self.camera_id)
        if not cap.isOpened():
            cap.release()
            raise self._classify_open_failure()

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.ideal_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.ideal_height)
        return cap

    def _classify_open_failure(self) -> CameraError:
        """Map an unopenable device onto the three user-facing camera errors."""
        if sys.platform.startswith("linux"):
            device = self.device_root / f"video{self.camera_id}"
            if not device.exists():
                return DeviceNotFound(f"{device} does not exist")
            if not os.access(device, os.R_OK | os.W_OK):
                return PermissionDenied(f"no read/write access to {device}")
        return UnknownCaptureError(f"camera {self.camera_id} could not be opened")

    def capture_frame(self) -> CapturedFrame:
        if self._cap is None:
            raise NoActiveStream("camera session is not open")

        ret, image = self._cap.read()
        if not ret or not isinstance(image, np.ndarray) or image.size == 0:
            raise FrameGrabError(f"camera {self.camera_id} returned no frame")
        if self._mirror:
            image = cv2.flip(image, 1)

        ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise FrameGrabError("failed to encode frame as JPEG")
        return CapturedFrame(mime_type="image/jpeg", data=encoded.tobytes())

    def close(self) -> None:
        if self._cap is None:
            return
        logger.info("Releasing camera %s", self.camera_id)
        cap, self._cap = self._cap, None
        try:
            cap.release()
        except Exception as exc:
            logger.warning("Error releasing camera %s: %s", self.camera_id, exc)


def _release_late_capture(future: "asyncio.Future[Any]") -> None:
    """Release a device whose open finished after the caller stopped waiting."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.info("Releasing camera opened after cancellation")
    future.result().release()


def opencv_camera_factory(settings: CameraSettings) -> CameraFactory:
    def _factory() -> CameraSession:
        return OpenCVCameraSession(settings.camera_id, jpeg_quality=settings.jpeg_quality)

    return _factory


@asynccontextmanager
async def open_camera(factory: CameraFactory, constraints: CameraConstraints) -> AsyncIterator[CameraSession]:
    """Scoped acquisition: the session is closed on every exit path."""
    session = factory()
    try:
        await session.open(constraints)
        yield session
    finally:
        session.close()


async def capture_single_frame(factory: CameraFactory, constraints: CameraConstraints) -> CapturedFrame:
    """Open, grab one still, release. Used for the profile photo."""
    async with open_camera(factory, constraints) as session:
        return session.capture_frame()


__all__ = [
    "CameraConstraints",
    "CameraFactory",
    "CameraSession",
    "OpenCVCameraSession",
    "capture_single_frame",
    "open_camera",
    "opencv_camera_factory",
]
