from __future__ import annotations

import pytest

from tests.fakes import FakeBackend


@pytest.fixture(autouse=True)
def _session_logs(tmp_path, monkeypatch):
    """Keep per-session log files out of the working tree."""
    import utils.log_handler

    monkeypatch.setattr(utils.log_handler, "LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
