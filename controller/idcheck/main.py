"""FastAPI entry-point for the liveness controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .backend.oracle_client import (
    GeminiJudgmentOracle,
    ImageJudgmentOracle,
    PhotoValidationClient,
    VerificationOracleClient,
)
from .config import Settings, get_settings
from .errors import CameraError, OracleUnavailable, RunInProgress
from .frames import CapturedFrame
from .logging_config import configure_logging
from .messages import message_for
from .orchestrator import LivenessOrchestrator
from .schemas import CapturedPhotoResponse, ErrorResponse, StartLivenessRequest, ValidatePhotoRequest
from .sensors.camera import CameraFactory, opencv_camera_factory
from .state import FailureReason

logger = logging.getLogger(__name__)

_CAMERA_STATUS = {
    FailureReason.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    FailureReason.DEVICE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.UNKNOWN_CAPTURE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_CAMERA_BUSY = "The camera is in use by another liveness check or photo capture."


def _error(status_code: int, reason: Optional[FailureReason], message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(reason=reason.value if reason else None, message=message).model_dump(),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    oracle: Optional[ImageJudgmentOracle] = None,
    camera_factory: Optional[CameraFactory] = None,
    orchestrator: Optional[LivenessOrchestrator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    oracle = oracle or GeminiJudgmentOracle(settings)
    camera_factory = camera_factory or opencv_camera_factory(settings.camera)
    manager = orchestrator or LivenessOrchestrator(
        settings=settings,
        verifier=VerificationOracleClient(oracle),
        camera_factory=camera_factory,
    )
    photo_validator = PhotoValidationClient(oracle)

    app = FastAPI(title="idcheck-liveness-controller", version="0.1.0")
    app.state.settings = settings
    app.state.orchestrator = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.teardown()
            await oracle.aclose()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": manager.phase.value})

    # ------------------------------------------------------------
    # Profile photo
    # ------------------------------------------------------------

    @app.post("/photos/capture", response_model=CapturedPhotoResponse)
    async def capture_photo() -> JSONResponse:
        """Single still from the front camera for the profile photo."""
        try:
            frame = await manager.capture_photo()
        except RunInProgress:
            return _error(status.HTTP_409_CONFLICT, None, _CAMERA_BUSY)
        except CameraError as exc:
            logger.warning(f"📷 Photo capture failed: {exc}")
            reason = exc.reason or FailureReason.UNKNOWN_CAPTURE_ERROR
            return _error(_CAMERA_STATUS[reason], reason, message_for(reason))
        except Exception as exc:
            logger.error(f"📷 Photo capture failed: {exc}")
            reason = FailureReason.CAPTURE_FAILED
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, reason, message_for(reason))
        return JSONResponse(
            CapturedPhotoResponse(
                photo=frame.to_data_uri(),
                mime_type=frame.mime_type,
                size_bytes=len(frame.data),
            ).model_dump()
        )

    @app.post("/photos/validate")
    async def validate_photo(payload: ValidatePhotoRequest) -> JSONResponse:
        photo = CapturedFrame.from_data_uri(payload.photo)
        try:
            result = await photo_validator.validate(photo)
        except OracleUnavailable as exc:
            logger.error(f"Photo validation unavailable: {exc}")
            return _error(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                FailureReason.ORACLE_UNAVAILABLE,
                "Could not validate the photo. Please try again.",
            )
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    # ------------------------------------------------------------
    # Liveness check
    # ------------------------------------------------------------

    @app.get("/liveness/steps")
    async def liveness_steps() -> JSONResponse:
        return JSONResponse({"steps": [step.to_dict() for step in manager.steps]})

    @app.get("/liveness/state")
    async def liveness_state() -> JSONResponse:
        result = manager.last_result
        return JSONResponse(
            {
                "state": manager.phase.value,
                "running": manager.is_running,
                "status": manager.last_status.to_dict(),
                "result": result.to_dict() if result else None,
            }
        )

    @app.post("/liveness/start", status_code=status.HTTP_202_ACCEPTED)
    async def start_liveness(payload: StartLivenessRequest) -> JSONResponse:
        reference = CapturedFrame.from_data_uri(payload.reference_photo)
        if not manager.start(reference):
            return _error(status.HTTP_409_CONFLICT, None, _CAMERA_BUSY)
        logger.info("🎬 Liveness check scheduled")
        return JSONResponse({"status": "started"}, status_code=status.HTTP_202_ACCEPTED)

    @app.post("/liveness/retry", status_code=status.HTTP_202_ACCEPTED)
    async def retry_liveness() -> JSONResponse:
        if not manager.retry():
            return _error(
                status.HTTP_409_CONFLICT,
                None,
                f"Retry is only possible after a failed check (current state: {manager.phase.value}).",
            )
        return JSONResponse({"status": "started"}, status_code=status.HTTP_202_ACCEPTED)

    @app.post("/liveness/cancel")
    async def cancel_liveness() -> JSONResponse:
        await manager.teardown()
        return JSONResponse({"status": "cancelled", "state": manager.phase.value})

    @app.websocket("/ws/liveness")
    async def liveness_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()
        try:
            await ws.send_json(
                {
                    "type": "status",
                    "phase": manager.phase.value,
                    "data": manager.last_status.to_dict(),
                }
            )
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                payload = {
                    "type": event.type,
                    "phase": event.phase.value,
                    "data": event.data,
                }
                if event.error:
                    payload["error"] = event.error

                try:
                    await ws.send_json(payload)
                except Exception as e:
                    # WebSocket closed, break out of loop
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error(f"Unexpected error in liveness websocket: {e}")
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
    return create_app(settings)


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "idcheck.main:build_default_app",
        factory=True,
        host=settings.controller_host,
        port=settings.controller_port,
    )


if __name__ == "__main__":
    run()
