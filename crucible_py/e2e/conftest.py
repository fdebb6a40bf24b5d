"""Shared fixtures for E2E tests."""

import pytest

from .harness import DeploymentHarness


@pytest.fixture
def harness(tmp_path):
    """Provide a DeploymentHarness with empty state."""
    return DeploymentHarness(dot_dir=tmp_path / ".crucible")


@pytest.fixture
def second_stage(harness):
    """A harness for another stage of the same app, sharing state."""
    other = DeploymentHarness(app_name=harness.app_name, stage="other", dot_dir=harness.dot_dir)
    other.tables = harness.tables
    return other
