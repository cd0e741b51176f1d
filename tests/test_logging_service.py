import logging

from snapmark.services import logging_service


def test_env_overrides_level(monkeypatch):
    monkeypatch.setenv(logging_service.LOG_LEVEL_ENV, "debug")
    assert logging_service._resolve_level(logging.INFO) == logging.DEBUG


def test_unknown_env_level_is_ignored(monkeypatch):
    monkeypatch.setenv(logging_service.LOG_LEVEL_ENV, "chatty")
    assert logging_service._resolve_level(logging.WARNING) == logging.WARNING


def test_setup_writes_dated_log_file(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_service, "_logging_initialized", False)
    monkeypatch.delenv(logging_service.LOG_LEVEL_ENV, raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level

    try:
        logging_service.setup_logging(logging.INFO, log_to_file=True, log_dir=tmp_path)
        logging_service.get_logger("snapmark.test").info("crop applied")
        for handler in root.handlers:
            handler.flush()

        (log_file,) = tmp_path.glob("snapmark_*.log")
        assert "crop applied" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
