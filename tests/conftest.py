"""Pytest configuration and shared fixtures for cmdrelay tests."""

from __future__ import annotations

import logging
import os

import pytest
import pytest_asyncio

from tests.fakes import FakeSocketIOServer


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep tests away from real config files and CMDRELAY_* variables."""
    for name in list(os.environ):
        if name.startswith("CMDRELAY_"):
            monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest_asyncio.fixture
async def socketio_server():
    """Running fake Socket.IO server."""
    server = FakeSocketIOServer()
    await server.start()
    yield server
    await server.stop()
