"""Shared fixtures for unit and integration tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from tests.helpers import FakeClock

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Environment for ``python -m hntop`` runs, isolated from the user's data dir."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("HNTOP__")}
    env["HNTOP__CACHE__DB_PATH"] = str(tmp_path / "hntop.db")
    # Unroutable so a sync cycle fails fast instead of reaching the network.
    env["HNTOP__UPSTREAM__BASE_URL"] = "http://127.0.0.1:9/v0"
    env["HNTOP__UPSTREAM__TIMEOUT_SECONDS"] = "2"
    return env
