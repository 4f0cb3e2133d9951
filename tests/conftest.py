"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the fixtures directory path."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def spawn_run(fixtures_dir: Path) -> Path:
    """Return path to spawn_run.jsonl fixture."""
    return fixtures_dir / "spawn_run.jsonl"


@pytest.fixture
def nested_run(fixtures_dir: Path) -> Path:
    """Return path to nested_run.jsonl fixture."""
    return fixtures_dir / "nested_run.jsonl"


@pytest.fixture
def plan_run(fixtures_dir: Path) -> Path:
    """Return path to plan_run.jsonl fixture."""
    return fixtures_dir / "plan_run.jsonl"
