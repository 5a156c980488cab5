import asyncio
import base64

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from conftest import judgment, photo_result
from idcheck.config import LivenessSettings
from idcheck.errors import DeviceNotFound, OracleUnavailable, PermissionDenied
from idcheck.main import create_app
from idcheck.messages import message_for
from idcheck.state import FailureReason

PHOTO_URI = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8profile").decode()


async def test_healthcheck(client):
    response = await client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "phase": "idle"}


async def test_steps_listing(client):
    response = await client.get("/liveness/steps")
    steps = response.json()["steps"]
    assert [step["action_label"] for step in steps] == ["neutral", "blink", "turn_right"]
    assert steps[1]["prompt_text"] == "Now, please blink your eyes."


# ============================================================
# Profile photo
# ============================================================

async def test_capture_photo(client, camera_rig):
    response = await client.post("/photos/capture")
    assert response.status_code == 200
    body = response.json()
    assert body["mime_type"] == "image/jpeg"
    assert body["photo"] == "data:image/jpeg;base64," + base64.b64encode(b"frame-0").decode()
    assert body["size_bytes"] == len(b"frame-0")
    assert camera_rig.outstanding == 0


@pytest.mark.parametrize(
    "error, status_code, reason",
    [
        (PermissionDenied("denied"), 403, FailureReason.PERMISSION_DENIED),
        (DeviceNotFound("missing"), 404, FailureReason.DEVICE_NOT_FOUND),
    ],
)
async def test_capture_photo_camera_errors(client, camera_rig, error, status_code, reason):
    camera_rig.queue(open_error=error)
    response = await client.post("/photos/capture")
    assert response.status_code == status_code
    assert response.json() == {"reason": reason.value, "message": message_for(reason)}


async def test_capture_photo_grab_failure(client, camera_rig):
    camera_rig.queue(fail_on_capture=0)
    response = await client.post("/photos/capture")
    assert response.status_code == 503
    assert response.json()["reason"] == "capture_failed"
    assert camera_rig.outstanding == 0


async def test_validate_photo(client, oracle):
    oracle.push(photo_result(False, [{"code": "NOT_NEUTRAL_EXPRESSION", "feedback": "Please don't smile."}]))
    response = await client.post("/photos/validate", json={"photo": PHOTO_URI})
    assert response.status_code == 200
    assert response.json() == {
        "isValid": False,
        "issues": [{"code": "NOT_NEUTRAL_EXPRESSION", "feedback": "Please don't smile."}],
    }


async def test_validate_photo_oracle_down(client, oracle):
    oracle.push(OracleUnavailable("timeout"))
    response = await client.post("/photos/validate", json={"photo": PHOTO_URI})
    assert response.status_code == 503
    assert response.json()["reason"] == "oracle_unavailable"


async def test_validate_photo_rejects_bad_payload(client, oracle):
    response = await client.post("/photos/validate", json={"photo": "not-a-data-uri"})
    assert response.status_code == 422
    assert oracle.calls == []


# ============================================================
# Liveness check
# ============================================================

async def test_start_runs_check(app, client, oracle):
    oracle.push(judgment(True, True, "All good."))
    response = await client.post("/liveness/start", json={"reference_photo": PHOTO_URI})
    assert response.status_code == 202
    assert response.json() == {"status": "started"}

    assert await app.state.orchestrator.wait() is True

    state = (await client.get("/liveness/state")).json()
    assert state["state"] == "succeeded"
    assert state["running"] is False
    assert state["status"]["phase"] == "succeeded"
    assert state["result"] == {"passed": True, "feedback": "All good.", "message": "Verification successful."}
    # Reference photo is the first image the oracle sees
    assert oracle.calls[0]["images"][0][1].data == b"\xff\xd8profile"


async def test_start_rejects_bad_reference(client):
    response = await client.post("/liveness/start", json={"reference_photo": "data:text/plain;base64,aGk="})
    assert response.status_code == 422


async def test_retry_after_failure(app, client, oracle):
    oracle.push(judgment(False, True))
    await client.post("/liveness/start", json={"reference_photo": PHOTO_URI})
    assert await app.state.orchestrator.wait() is False

    state = (await client.get("/liveness/state")).json()
    assert state["state"] == "failed"
    assert state["status"]["reason"] == "verdict_negative"

    oracle.push(judgment(True, True))
    response = await client.post("/liveness/retry")
    assert response.status_code == 202
    assert await app.state.orchestrator.wait() is True


async def test_retry_when_idle_conflicts(client):
    response = await client.post("/liveness/retry")
    assert response.status_code == 409


async def test_second_start_conflicts_and_cancel_releases(settings, camera_rig, oracle):
    slow = settings.model_copy(
        update={"liveness": LivenessSettings(baseline_step_ms=60_000, blink_step_ms=60_000)}
    )
    app = create_app(slow, oracle=oracle, camera_factory=camera_rig)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        first = await ac.post("/liveness/start", json={"reference_photo": PHOTO_URI})
        second = await ac.post("/liveness/start", json={"reference_photo": PHOTO_URI})
        busy_capture = await ac.post("/photos/capture")
        cancelled = await ac.post("/liveness/cancel")

    assert first.status_code == 202
    assert second.status_code == 409
    assert busy_capture.status_code == 409
    assert cancelled.json() == {"status": "cancelled", "state": "idle"}
    assert len(camera_rig.sessions) <= 1
    assert camera_rig.outstanding == 0
    assert oracle.calls == []


async def test_photo_capture_and_start_never_share_camera(client, camera_rig):
    camera_rig.queue(open_delay=0.1)
    capture = asyncio.create_task(client.post("/photos/capture"))
    await asyncio.sleep(0.01)
    started = await client.post("/liveness/start", json={"reference_photo": PHOTO_URI})
    photo = await capture

    assert started.status_code == 409
    assert started.json()["message"] == "The camera is in use by another liveness check or photo capture."
    assert photo.status_code == 200
    assert len(camera_rig.sessions) == 1
    assert camera_rig.max_outstanding == 1


def test_websocket_streams_run(app, oracle):
    oracle.push(judgment(True, True, "Live."))
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws/liveness") as ws:
            initial = ws.receive_json()
            assert initial == {"type": "status", "phase": "idle", "data": {"phase": "idle", "total_steps": 3}}

            response = tc.post("/liveness/start", json={"reference_photo": PHOTO_URI})
            assert response.status_code == 202

            events = [ws.receive_json() for _ in range(6)]

    assert [event["type"] for event in events] == ["status"] * 5 + ["completion"]
    assert [event["data"]["phase"] for event in events[:5]] == ["step", "step", "step", "verifying", "succeeded"]
    assert events[-1]["data"] == {"passed": True, "feedback": "Live.", "message": "Verification successful."}
    assert "error" not in events[-1]
    assert oracle.closed
