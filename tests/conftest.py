"""Shared test fixtures for board tests."""

import sys
from pathlib import Path

import pytest

# Ensure the package and the test helpers are importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeGateway, FakeGenerator  # noqa: E402


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture(autouse=True)
def _no_db_override(monkeypatch):
    monkeypatch.delenv("BOARDSYNC_DB", raising=False)
