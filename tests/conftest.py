"""Shared test fixtures."""

from pathlib import Path

import pytest

from dubforge.manifest import StretchConfig
from dubforge.planner import ATEMPO, RUBBERBAND, StretchAlgorithm, StretchPlanner

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def rubberband_planner() -> StretchPlanner:
    return StretchPlanner(StretchAlgorithm(RUBBERBAND, 1.3), StretchConfig())


@pytest.fixture
def atempo_planner() -> StretchPlanner:
    return StretchPlanner(StretchAlgorithm(ATEMPO, 2.0), StretchConfig())
