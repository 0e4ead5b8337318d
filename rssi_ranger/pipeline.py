from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .exceptions import ConfigurationError, NumericDomainError
from .models import DistanceReading, PathLossParams, SignalSample
from .path_loss import rssi_to_distance
from .registry import EstimatorRegistry

logger = logging.getLogger(__name__)

DEFAULT_MIN_RSSI = -60
DEFAULT_WALL_COUNT = 1
NO_SIGNAL_MESSAGE = "附近没有足够强的信号"

THRESHOLD_BEFORE = "before"
THRESHOLD_AFTER = "after"


class RangingPipeline:
    """
    单个扫描周期的处理流程：
    强度阈值 -> [RSSI 卡尔曼平滑] -> 路径损耗换算 -> [UKF 距离平滑]

    两个平滑环节相互独立，可分别开关。
    """

    def __init__(
        self,
        path_loss: PathLossParams,
        registry: Optional[EstimatorRegistry] = None,
        wall_count: int = DEFAULT_WALL_COUNT,
        min_rssi: Optional[int] = DEFAULT_MIN_RSSI,
        threshold_stage: str = THRESHOLD_BEFORE,
        smooth_distance: bool = True,
    ):
        if threshold_stage not in (THRESHOLD_BEFORE, THRESHOLD_AFTER):
            raise ConfigurationError(f"未知的阈值阶段: {threshold_stage}")
        if wall_count < 0:
            raise ConfigurationError(f"墙体数量不能为负: {wall_count}")
        self.path_loss = path_loss.validate()
        self.registry = registry if registry is not None else EstimatorRegistry()
        self.wall_count = wall_count
        self.min_rssi = min_rssi
        self.threshold_stage = threshold_stage
        self.smooth_distance = smooth_distance

    def _below_threshold(self, rssi: float) -> bool:
        return self.min_rssi is not None and rssi < self.min_rssi

    def process_sample(self, sample: SignalSample) -> Optional[DistanceReading]:
        """处理单个读数；被强度阈值过滤时返回 None"""
        if self.threshold_stage == THRESHOLD_BEFORE and self._below_threshold(sample.rssi):
            return None

        rssi = self.registry.smooth_rssi(sample.emitter_id, sample.rssi)
        if self.threshold_stage == THRESHOLD_AFTER and self._below_threshold(rssi):
            return None

        reading = DistanceReading.from_sample(sample)
        try:
            reading.raw_distance = rssi_to_distance(
                rssi, self.path_loss, frequency_mhz=sample.frequency_mhz, wall_count=self.wall_count
            )
            if self.smooth_distance:
                reading.distance = self.registry.update(sample.emitter_id, reading.raw_distance)
            else:
                reading.distance = reading.raw_distance
        except NumericDomainError as e:
            logger.warning("发射源 %s 距离计算失败: %s", sample.emitter_id, e)
            reading.mark_unavailable(str(e))
        return reading

    def process_cycle(self, samples: Iterable[SignalSample]) -> List[DistanceReading]:
        """按到达顺序处理一个扫描周期的全部读数"""
        readings: List[DistanceReading] = []
        for sample in samples:
            reading = self.process_sample(sample)
            if reading is not None:
                readings.append(reading)
        self.registry.evict_expired()
        return readings

    @staticmethod
    def display_lines(readings: Iterable[DistanceReading]) -> List[str]:
        lines = [reading.format_line() for reading in readings]
        if not lines:
            lines.append(NO_SIGNAL_MESSAGE)
        return lines
