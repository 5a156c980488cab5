"""
Liveness controller - test configuration and fixtures
"""
import asyncio
import os
from typing import AsyncGenerator, Callable, List, Optional, Sequence, Union

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

# Keep the tests off any real oracle and out of the repo's log directory
os.environ.setdefault("ORACLE_API_KEY", "test-api-key")

from idcheck.backend.oracle_client import ImageJudgmentOracle, LabeledImage, VerificationOracleClient
from idcheck.config import LivenessSettings, Settings
from idcheck.errors import FrameGrabError
from idcheck.frames import CapturedFrame
from idcheck.main import create_app
from idcheck.orchestrator import LivenessOrchestrator
from idcheck.schemas import LivenessJudgment, PhotoValidationResult
from idcheck.sensors.camera import CameraConstraints, CameraSession


class FakeCamera(CameraSession):
    """In-memory camera; counts opens and closes and can fail on demand."""

    def __init__(
        self,
        rig: "CameraRig",
        *,
        open_error: Optional[Exception] = None,
        fail_on_capture: Optional[int] = None,
        open_delay: float = 0.0,
    ) -> None:
        self.rig = rig
        self.open_delay = open_delay
        self.open_error = open_error
        self.fail_on_capture = fail_on_capture
        self.open_calls = 0
        self.close_calls = 0
        self.captures = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, constraints: CameraConstraints) -> None:
        self.open_calls += 1
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        self._open = True
        self.rig.outstanding += 1
        self.rig.max_outstanding = max(self.rig.max_outstanding, self.rig.outstanding)

    def capture_frame(self) -> CapturedFrame:
        index = self.captures
        self.captures += 1
        if self.fail_on_capture == index:
            raise FrameGrabError(f"no frame on capture {index}")
        return CapturedFrame(mime_type="image/jpeg", data=f"frame-{index}".encode())

    def close(self) -> None:
        self.close_calls += 1
        if self._open:
            self._open = False
            self.rig.outstanding -= 1


class CameraRig:
    """Camera factory handing out scripted FakeCamera sessions in order."""

    def __init__(self) -> None:
        self.sessions: List[FakeCamera] = []
        self.script: List[dict] = []
        self.outstanding = 0
        self.max_outstanding = 0

    def queue(self, **behaviour) -> None:
        self.script.append(behaviour)

    def __call__(self) -> FakeCamera:
        behaviour = self.script.pop(0) if self.script else {}
        camera = FakeCamera(self, **behaviour)
        self.sessions.append(camera)
        return camera

    @property
    def last(self) -> FakeCamera:
        return self.sessions[-1]


Answer = Union[BaseModel, Exception]


class StubOracle(ImageJudgmentOracle):
    """Returns scripted answers and records every request."""

    def __init__(self, answers: Sequence[Answer] = ()) -> None:
        self.answers: List[Answer] = list(answers)
        self.calls: List[dict] = []
        self.closed = False

    def push(self, answer: Answer) -> None:
        self.answers.append(answer)

    async def judge(self, *, instructions, images: Sequence[LabeledImage], schema):
        self.calls.append({"instructions": instructions, "images": list(images), "schema": schema})
        if not self.answers:
            raise AssertionError("oracle called without a scripted answer")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def aclose(self) -> None:
        self.closed = True


def judgment(same_person: bool = True, live: bool = True, feedback: str = "") -> LivenessJudgment:
    return LivenessJudgment(isSamePerson=same_person, isLive=live, verificationFeedback=feedback)


def photo_result(valid: bool = True, issues: Optional[list] = None) -> PhotoValidationResult:
    return PhotoValidationResult.model_validate({"isValid": valid, "issues": issues or []})


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Zero-length step windows so runs finish immediately."""
    return Settings(
        liveness=LivenessSettings(baseline_step_ms=0, blink_step_ms=0),
        log_directory=tmp_path / "logs",
    )


@pytest.fixture
def camera_rig() -> CameraRig:
    return CameraRig()


@pytest.fixture
def oracle() -> StubOracle:
    return StubOracle()


@pytest.fixture
def reference_photo() -> CapturedFrame:
    return CapturedFrame(mime_type="image/jpeg", data=b"reference-photo")


@pytest.fixture
def make_orchestrator(settings, camera_rig, oracle) -> Callable[..., LivenessOrchestrator]:
    def _make(**kwargs) -> LivenessOrchestrator:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("camera_factory", camera_rig)
        return LivenessOrchestrator(verifier=VerificationOracleClient(oracle), **kwargs)

    return _make


@pytest.fixture
def app(settings, camera_rig, oracle):
    return create_app(settings, oracle=oracle, camera_factory=camera_rig)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await app.state.orchestrator.teardown()
