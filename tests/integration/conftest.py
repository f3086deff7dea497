"""Fixtures for live GCP tests. Every test here needs --run-integration."""

from __future__ import annotations

import pytest

from tofuharness.config import HarnessConfig
from tofuharness.plugin import require_setting


@pytest.fixture
def project_id(harness_config: HarnessConfig) -> str:
    return require_setting(harness_config, "project_id")


@pytest.fixture
def region(harness_config: HarnessConfig) -> str:
    return harness_config.region