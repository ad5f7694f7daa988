"""
Tests for environment configuration and log setup.
"""

import logging

import pytest

from memu_chat.config.settings import BASE_DIR, get_log_dir, load_settings
from memu_chat.utils.logging import LOG_FILENAME, get_logger


class TestLoadSettings:
    def test_base_url_without_scheme_rejected(self, monkeypatch):
        monkeypatch.setenv("MEMU_API_BASE", "memu.example")

        with pytest.raises(RuntimeError):
            load_settings()

    def test_quoted_base_url_is_unwrapped(self, monkeypatch):
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
        monkeypatch.setenv("MEMU_API_BASE", '"https://memu.example/"')

        assert load_settings().memu_api_base == "https://memu.example"

    def test_log_dir_follows_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MEMU_API_BASE", raising=False)
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
        monkeypatch.setenv("MEMU_CHAT_LOG_DIR", str(tmp_path))

        assert load_settings().log_dir == str(tmp_path)


class TestLogDir:
    def test_default_under_package(self, monkeypatch):
        monkeypatch.delenv("MEMU_CHAT_LOG_DIR", raising=False)

        assert get_log_dir() == BASE_DIR / "memu_chat" / "logs"

    def test_logger_works_with_invalid_endpoint_config(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MEMU_API_BASE", "no-scheme")
        monkeypatch.setenv("MEMU_CHAT_LOG_DIR", str(tmp_path / "logs"))

        logger = get_logger("memu_chat.tests.bad_config")
        try:
            logger.info("still logging")
            for h in logger.handlers:
                h.flush()

            assert get_log_dir() == tmp_path / "logs"
            assert "still logging" in (tmp_path / "logs" / LOG_FILENAME).read_text(encoding="utf-8")
            with pytest.raises(RuntimeError):
                load_settings()
        finally:
            for h in list(logger.handlers):
                h.close()
                logger.removeHandler(h)

    def test_handlers_attached_once(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MEMU_CHAT_LOG_DIR", str(tmp_path))

        logger = get_logger("memu_chat.tests.once")
        try:
            assert get_logger("memu_chat.tests.once") is logger
            assert len(logger.handlers) == 2
            assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        finally:
            for h in list(logger.handlers):
                h.close()
                logger.removeHandler(h)
