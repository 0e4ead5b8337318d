"""Shared fixtures for rssi_ranger tests."""

from __future__ import annotations

import pytest

from rssi_ranger.config_manager import ConfigManager
from rssi_ranger.models import PathLossParams


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_model() -> PathLossParams:
    """Log-distance model used throughout the examples: -40 dBm at 1 m, gamma 3, 3 dB per wall."""
    return PathLossParams.log_distance_wall(rssi_at_1m=-40, gamma=3.0, wall_loss_per_wall=3)


@pytest.fixture
def config(tmp_path) -> ConfigManager:
    """ConfigManager backed by a fresh file under tmp_path."""
    return ConfigManager(str(tmp_path / "config" / "config.yaml"))

