import os
from typing import (
    Any,
    Dict,
)

import pytest

from scoutchat import main as entry
from scoutchat.config import settings


def test_cli_overrides_reach_the_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    launched: Dict[str, Any] = {}
    monkeypatch.setattr(entry, "run_api", lambda **kwargs: launched.update(kwargs))
    # restored after the test
    monkeypatch.setenv("WORKFLOW", settings.WORKFLOW)
    monkeypatch.setenv("LOG_LEVEL", settings.LOG_LEVEL)
    monkeypatch.setattr(settings, "WORKFLOW", settings.WORKFLOW)
    monkeypatch.setattr(settings, "LOG_LEVEL", settings.LOG_LEVEL)

    entry.main(["--mode", "api", "--workflow", "chat", "--log-level", "warning"])

    assert os.environ["WORKFLOW"] == "chat"
    assert os.environ["LOG_LEVEL"] == "warning"
    assert settings.WORKFLOW == "chat"
    assert launched["port"] == settings.API_PORT
