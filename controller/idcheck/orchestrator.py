"""Liveness run orchestration: camera, timed steps, oracle verdict, UI notifications."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import List, Optional

from .backend.oracle_client import VerificationOracleClient
from .config import Settings, get_settings
from .errors import CameraError, CaptureFailed, OracleUnavailable, RunInProgress
from .frames import CapturedFrame
from .liveness.steps import ACTION_LABELS, LivenessStep, StepSequencer, build_liveness_steps
from .messages import SUCCESS_MESSAGE, message_for
from .sensors.camera import (
    CameraConstraints,
    CameraFactory,
    CameraSession,
    capture_single_frame,
    opencv_camera_factory,
)
from .state import (
    CompletionResult,
    FailureReason,
    LivenessEvent,
    OrchestratorPhase,
    OrchestratorState,
    StatusPhase,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusUpdate], Awaitable[None]]
CompletionCallback = Callable[[CompletionResult], Awaitable[None]]


class IllegalTransition(RuntimeError):
    """An internal transition broke the run's monotonic order."""


class LivenessOrchestrator:
    """Coordinates the camera, the step sequencer and the verification oracle."""

    def __init__(
        self,
        *,
        verifier: VerificationOracleClient,
        settings: Optional[Settings] = None,
        camera_factory: Optional[CameraFactory] = None,
        steps: Optional[Sequence[LivenessStep]] = None,
        reference_photo: Optional[CapturedFrame] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._verifier = verifier
        self._camera_factory = camera_factory or opencv_camera_factory(self.settings.camera)
        self._constraints = CameraConstraints.from_settings(self.settings.camera)
        self._sequencer = StepSequencer(steps or build_liveness_steps(self.settings.liveness))
        if self._sequencer.labels != ACTION_LABELS:
            raise ValueError(
                f"liveness steps must be {ACTION_LABELS} in that order, got {self._sequencer.labels}"
            )
        self._reference_photo = reference_photo

        self._state = OrchestratorState.idle()
        self._camera: Optional[CameraSession] = None
        self._running = False
        self._photo_capture = False
        self._run_task: Optional[asyncio.Task[bool]] = None
        self._run_count = 0
        self._last_status = self._status_for(self._state)
        self._last_result: Optional[CompletionResult] = None

        self._status_callbacks: list[StatusCallback] = []
        self._completion_callbacks: list[CompletionCallback] = []
        self._ui_subscribers: List[asyncio.Queue[LivenessEvent]] = []

    # ------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def phase(self) -> OrchestratorPhase:
        return self._state.phase

    @property
    def steps(self) -> tuple[LivenessStep, ...]:
        return self._sequencer.steps

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def camera_busy(self) -> bool:
        """True while a run or a profile-photo capture owns the camera."""
        return self._running or self._photo_capture

    @property
    def last_status(self) -> StatusUpdate:
        return self._last_status

    @property
    def last_result(self) -> Optional[CompletionResult]:
        return self._last_result

    # ------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------

    def register_status_callback(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def register_completion_callback(self, callback: CompletionCallback) -> None:
        self._completion_callbacks.append(callback)

    def register_ui(self) -> asyncio.Queue[LivenessEvent]:
        queue: asyncio.Queue[LivenessEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[LivenessEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------

    def start(self, reference_photo: Optional[CapturedFrame] = None) -> bool:
        """Schedule a run in the background. Returns False if the camera is already owned."""
        if self.camera_busy:
            logger.info("Camera busy (run=%s, photo=%s); ignoring start", self._running, self._photo_capture)
            return False
        reference = self._claim(reference_photo)
        self._run_task = asyncio.create_task(self._run_claimed(reference), name="liveness-run")
        return True

    async def run(self, reference_photo: Optional[CapturedFrame] = None) -> bool:
        """Run one full check and return the pass/fail decision."""
        if self.camera_busy:
            raise RunInProgress("the camera is in use by another liveness run or photo capture")
        reference = self._claim(reference_photo)
        # Same task bookkeeping as start() so teardown() and wait() see this run.
        self._run_task = asyncio.create_task(self._run_claimed(reference), name="liveness-run")
        return await self._run_task

    async def capture_photo(self) -> CapturedFrame:
        """Single profile-photo still; holds the camera for the whole open/capture/close."""
        if self.camera_busy:
            raise RunInProgress("the camera is in use by another liveness run or photo capture")
        self._photo_capture = True
        try:
            return await capture_single_frame(self._camera_factory, self._constraints)
        finally:
            self._photo_capture = False

    def retry(self) -> bool:
        """Start over from Failed; the camera is re-acquired and every step replayed."""
        if self.camera_busy or self._state.phase != OrchestratorPhase.FAILED:
            logger.info("Retry ignored in phase %s", self._state.phase.value)
            return False
        return self.start()

    async def reset(self) -> None:
        """Return a finished orchestrator to Idle."""
        if self._running:
            raise RunInProgress("cannot reset while a run is in progress")
        if self._state.phase != OrchestratorPhase.IDLE:
            await self._transition(OrchestratorState.idle())

    async def wait(self) -> Optional[bool]:
        """Result of the scheduled run; None if it was torn down."""
        task = self._run_task
        if task is None:
            return self._last_result.passed if self._last_result else None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def teardown(self) -> None:
        """Hosting page went away: stop the run and free the camera no matter what."""
        task = self._run_task
        if task is not None and task is asyncio.current_task():
            raise RunInProgress("teardown called from inside the liveness run")
        if task and not task.done():
            logger.info("Tearing down active liveness run")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("Liveness run raised during teardown: %s", exc)
        self._release_camera()
        # A task cancelled before its first step never reaches its finally block.
        if task is None or task.done():
            self._running = False

    # ------------------------------------------------------------
    # Run flow
    # ------------------------------------------------------------

    def _claim(self, reference_photo: Optional[CapturedFrame]) -> CapturedFrame:
        if reference_photo is not None:
            self._reference_photo = reference_photo
        if self._reference_photo is None:
            raise ValueError("a reference photo is required to start a liveness run")
        self._running = True
        return self._reference_photo

    async def _run_claimed(self, reference: CapturedFrame) -> bool:
        """
        One run, start to finish.

        Flow:
        1. Back to Idle if the previous run left a terminal state
        2. Acquire the camera (camera errors end here, no completion)
        3. Steps in order, one frame each (RUNNING_STEP)
        4. Oracle call with all four images (AWAITING_VERDICT)
        5. SUCCEEDED or FAILED; camera released before the terminal notification
        """
        self._run_count += 1
        run_no = self._run_count
        try:
            if self._state.phase != OrchestratorPhase.IDLE:
                await self._transition(OrchestratorState.idle())

            logger.info("🎬 [RUN %d] Liveness run starting", run_no)
            camera = self._camera_factory()
            self._camera = camera
            try:
                await camera.open(self._constraints)
            except CameraError as exc:
                logger.warning("📷 [RUN %d] Camera acquisition failed: %s", run_no, exc)
                self._release_camera()
                await self._transition(OrchestratorState.failed(exc.reason))
                return False

            try:
                images = await self._sequencer.run(camera, on_step=self._on_step)
            except CaptureFailed as exc:
                logger.error("❌ [RUN %d] %s", run_no, exc)
                return await self._finish(FailureReason.CAPTURE_FAILED)

            await self._transition(OrchestratorState.awaiting_verdict())
            logger.info("🚀 [RUN %d] All frames captured, requesting verdict", run_no)
            try:
                verdict = await self._verifier.verify(reference, images)
            except OracleUnavailable as exc:
                logger.error("❌ [RUN %d] Oracle unavailable: %s", run_no, exc)
                return await self._finish(FailureReason.ORACLE_UNAVAILABLE)
            finally:
                images.clear()

            if verdict.passed:
                logger.info("✅ [RUN %d] Liveness verified", run_no)
                return await self._finish(None, feedback=verdict.feedback)
            logger.info(
                "❌ [RUN %d] Verdict negative (same_person=%s, live=%s)",
                run_no,
                verdict.is_same_person,
                verdict.is_live,
            )
            return await self._finish(FailureReason.VERDICT_NEGATIVE, feedback=verdict.feedback)

        except asyncio.CancelledError:
            logger.info("⚠️ [RUN %d] Liveness run cancelled", run_no)
            self._release_camera()
            if self._state.phase != OrchestratorPhase.IDLE:
                await self._transition(OrchestratorState.idle())
            raise

        except Exception:
            logger.exception("❌ [RUN %d] Unexpected liveness error", run_no)
            self._release_camera()
            if self._state.phase != OrchestratorPhase.IDLE:
                await self._transition(OrchestratorState.idle())
            raise

        finally:
            self._release_camera()
            self._running = False
            logger.info("🏁 [RUN %d] Liveness run ended in %s", run_no, self._state.phase.value)

    async def _on_step(self, index: int, step: LivenessStep) -> None:
        logger.info("👁️ Step %d/%d: %s", index + 1, len(self.steps), step.action_label)
        await self._transition(OrchestratorState.running_step(index))

    async def _finish(self, reason: Optional[FailureReason], *, feedback: Optional[str] = None) -> bool:
        self._release_camera()
        if reason is None:
            await self._transition(OrchestratorState.succeeded())
            result = CompletionResult(passed=True, feedback=feedback, message=SUCCESS_MESSAGE)
        else:
            await self._transition(OrchestratorState.failed(reason))
            result = CompletionResult(passed=False, feedback=feedback, reason=reason, message=message_for(reason))
        await self._complete(result)
        return result.passed

    def _release_camera(self) -> None:
        camera, self._camera = self._camera, None
        if camera is None:
            return
        try:
            camera.close()
        except Exception as exc:
            logger.warning("Error closing camera session: %s", exc)

    # ------------------------------------------------------------
    # Transitions & notifications
    # ------------------------------------------------------------

    def _check_transition(self, new: OrchestratorState) -> None:
        old = self._state
        last_index = len(self.steps) - 1
        if new.phase == OrchestratorPhase.RUNNING_STEP and not (
            new.step_index is not None and 0 <= new.step_index <= last_index
        ):
            raise IllegalTransition(f"step index out of range: {new}")
        if new.phase == OrchestratorPhase.FAILED and new.reason is None:
            raise IllegalTransition(f"failed state without a reason: {new}")
        if new.phase == OrchestratorPhase.IDLE:
            return
        if old.phase == OrchestratorPhase.IDLE:
            allowed = (new.phase == OrchestratorPhase.RUNNING_STEP and new.step_index == 0) or (
                new.phase == OrchestratorPhase.FAILED and new.reason is not None and new.reason.is_camera_error
            )
        elif old.phase == OrchestratorPhase.RUNNING_STEP:
            current = old.step_index if old.step_index is not None else -1
            allowed = (
                (new.phase == OrchestratorPhase.RUNNING_STEP and new.step_index == current + 1)
                or (new.phase == OrchestratorPhase.AWAITING_VERDICT and current == last_index)
                or new.phase == OrchestratorPhase.FAILED
            )
        elif old.phase == OrchestratorPhase.AWAITING_VERDICT:
            allowed = new.phase in {OrchestratorPhase.SUCCEEDED, OrchestratorPhase.FAILED}
        else:
            allowed = False
        if not allowed:
            raise IllegalTransition(f"{old} -> {new}")

    async def _transition(self, new: OrchestratorState) -> None:
        self._check_transition(new)
        self._state = new
        status = self._status_for(new)
        self._last_status = status
        if new.phase == OrchestratorPhase.IDLE:
            self._last_result = None
        logger.debug("State -> %s", status.to_dict())

        await self._broadcast(
            LivenessEvent(
                type="status",
                phase=new.phase,
                data=status.to_dict(),
                error=status.message if new.phase == OrchestratorPhase.FAILED else None,
            )
        )
        for callback in list(self._status_callbacks):
            try:
                await callback(status)
            except Exception:
                logger.exception("Status callback failed")

    async def _complete(self, result: CompletionResult) -> None:
        self._last_result = result
        await self._broadcast(
            LivenessEvent(
                type="completion",
                phase=self._state.phase,
                data=result.to_dict(),
                error=None if result.passed else result.message,
            )
        )
        for callback in list(self._completion_callbacks):
            try:
                await callback(result)
            except Exception:
                logger.exception("Completion callback failed")

    def _status_for(self, state: OrchestratorState) -> StatusUpdate:
        total = len(self.steps)
        if state.phase == OrchestratorPhase.RUNNING_STEP and state.step_index is not None:
            step = self.steps[state.step_index]
            return StatusUpdate(
                StatusPhase.STEP,
                step_index=state.step_index,
                prompt_text=step.prompt_text,
                action_label=step.action_label,
                total_steps=total,
            )
        if state.phase == OrchestratorPhase.AWAITING_VERDICT:
            return StatusUpdate(StatusPhase.VERIFYING, total_steps=total)
        if state.phase == OrchestratorPhase.SUCCEEDED:
            return StatusUpdate(StatusPhase.SUCCEEDED, total_steps=total, message=SUCCESS_MESSAGE)
        if state.phase == OrchestratorPhase.FAILED and state.reason is not None:
            return StatusUpdate(
                StatusPhase.FAILED,
                total_steps=total,
                reason=state.reason,
                message=message_for(state.reason),
            )
        return StatusUpdate(StatusPhase.IDLE, total_steps=total)

    async def _broadcast(self, event: LivenessEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when a queue is full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)


__all__ = ["CompletionCallback", "IllegalTransition", "LivenessOrchestrator", "StatusCallback"]
