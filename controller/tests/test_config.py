import logging
import logging.handlers

from idcheck.config import Settings
from idcheck.logging_config import FAILURES_LOG, RUNTIME_LOG, configure_logging


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.controller_port == 5000
    assert settings.camera.camera_id == 0
    assert settings.camera.facing_mode == "user"
    assert settings.liveness.baseline_step_ms == 3000
    assert settings.liveness.blink_step_ms == 2000
    assert settings.oracle_model == "gemini-2.5-flash"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CONTROLLER_PORT", "5055")
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    monkeypatch.setenv("ORACLE_API_URL", "http://localhost:9000/v1/")
    monkeypatch.setenv("CAMERA__CAMERA_ID", "2")
    monkeypatch.setenv("LIVENESS__BLINK_STEP_MS", "1500")

    settings = Settings(_env_file=None)

    assert settings.controller_port == 5055
    assert settings.log_level == "DEBUG"
    assert settings.oracle_api_url == "http://localhost:9000/v1"
    assert settings.camera.camera_id == 2
    assert settings.liveness.blink_step_ms == 1500
    assert settings.liveness.baseline_step_ms == 3000


def test_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("ORACLE_MODEL=gemini-test\nCAMERA__JPEG_QUALITY=70\n")
    settings = Settings(_env_file=str(env_file))
    assert settings.oracle_model == "gemini-test"
    assert settings.camera.jpeg_quality == 70


def test_configure_logging_splits_runtime_and_failures(tmp_path):
    log_dir = tmp_path / "logs"
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        runtime_log = configure_logging("INFO", log_dir, retention_days=3)
        assert runtime_log == log_dir / RUNTIME_LOG

        files = [h for h in root.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
        assert sorted(h.baseFilename for h in files) == sorted(
            [str(log_dir / RUNTIME_LOG), str(log_dir / FAILURES_LOG)]
        )
        assert all(h.backupCount == 3 for h in files)
        assert logging.getLogger("httpx").level == logging.WARNING

        log = logging.getLogger("idcheck.test")
        log.info("step captured")
        log.warning("camera unplugged")
        for handler in files:
            handler.flush()

        runtime = runtime_log.read_text()
        failures = (log_dir / FAILURES_LOG).read_text()
        assert "step captured" in runtime and "camera unplugged" in runtime
        assert "camera unplugged" in failures
        assert "step captured" not in failures
    finally:
        for handler in root.handlers[:]:
            if handler not in saved_handlers:
                handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
