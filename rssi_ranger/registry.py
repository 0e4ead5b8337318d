from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

import pandas as pd

from .exceptions import ConfigurationError
from .filters import ScalarKalmanFilter, UnscentedDistanceFilter
from .models import FilterState

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 256


@dataclass
class TrackedEmitter:
    """注册表中单个发射源的条目"""

    emitter_id: str
    last_seen: float
    state: Optional[FilterState] = None
    samples: int = 0
    rssi_filter: Optional[ScalarKalmanFilter] = None


class EstimatorRegistry:
    """
    管理每个发射源的距离滤波状态。

    首次出现时创建，之后复用；容量超过 max_entries 时优先淘汰尚无距离状态的条目，
    其次淘汰最久未访问的条目；
    设置 ttl_seconds 后可通过 evict_expired() 清理长时间未出现的条目。

    注册表是状态的唯一持有者与写入者，本身不加锁；
    多线程写入时由调用方负责互斥。
    """

    def __init__(
        self,
        ukf: Optional[UnscentedDistanceFilter] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: Optional[float] = None,
        rssi_filter_factory: Optional[Callable[[], ScalarKalmanFilter]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ConfigurationError(f"max_entries 必须 >= 1: {max_entries}")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ConfigurationError(f"ttl_seconds 必须为正数: {ttl_seconds}")
        self.ukf = ukf if ukf is not None else UnscentedDistanceFilter()
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.rssi_filter_factory = rssi_filter_factory
        self._clock = clock
        self._entries: "OrderedDict[str, TrackedEmitter]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, emitter_id: object) -> bool:
        return emitter_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    # ---- Entries ----
    def _touch(self, emitter_id: str) -> Optional[TrackedEmitter]:
        entry = self._entries.get(emitter_id)
        if entry is not None:
            entry.last_seen = self._clock()
            self._entries.move_to_end(emitter_id)
        return entry

    def _entry(self, emitter_id: str) -> TrackedEmitter:
        entry = self._touch(emitter_id)
        if entry is not None:
            return entry
        entry = TrackedEmitter(emitter_id=emitter_id, last_seen=self._clock())
        self._entries[emitter_id] = entry
        self._enforce_capacity(keep=emitter_id)
        return entry

    def _enforce_capacity(self, keep: str) -> None:
        while len(self._entries) > self.max_entries:
            evicted = self._eviction_candidate(keep)
            del self._entries[evicted]
            logger.debug("注册表已满，淘汰发射源: %s", evicted)

    def _eviction_candidate(self, keep: str) -> str:
        # 优先淘汰尚无距离状态的条目（只做过强度平滑），其次才是最久未访问的
        oldest = None
        for emitter_id, entry in self._entries.items():
            if emitter_id == keep:
                continue
            if entry.state is None:
                return emitter_id
            if oldest is None:
                oldest = emitter_id
        return oldest

    def get_or_create(self, emitter_id: str, seed_distance: float) -> FilterState:
        """返回已有状态；不存在时以 seed_distance 为初值新建"""
        entry = self._entry(emitter_id)
        if entry.state is None:
            entry.state = self.ukf.seed(seed_distance)
            logger.debug("新建发射源滤波器: %s, 初始距离 %.3f m", emitter_id, seed_distance)
        return entry.state

    def state(self, emitter_id: str) -> Optional[FilterState]:
        entry = self._entries.get(emitter_id)
        return entry.state if entry else None

    def update(self, emitter_id: str, raw_distance: float) -> float:
        """
        用新的原始距离更新该发射源的 UKF，返回滤波后的距离。
        新发射源先以 raw_distance 建立初值，再执行一次更新。
        计算出错时保留原状态并抛出异常。
        """
        existing = self._entries.get(emitter_id)
        state = existing.state if existing is not None else None
        seeded = state is None
        if seeded:
            state = self.ukf.seed(raw_distance)
        # 更新成功之后才写入注册表
        new_state = self.ukf.update(state, raw_distance)

        entry = self._entry(emitter_id)
        if seeded:
            logger.debug("新建发射源滤波器: %s, 初始距离 %.3f m", emitter_id, raw_distance)
        entry.state = new_state
        entry.samples += 1
        return new_state.x

    def smooth_rssi(self, emitter_id: str, rssi: float) -> float:
        """信号强度域平滑；未配置滤波器工厂时原样返回"""
        if self.rssi_filter_factory is None:
            return float(rssi)
        entry = self._entry(emitter_id)
        if entry.rssi_filter is None:
            entry.rssi_filter = self.rssi_filter_factory()
        return entry.rssi_filter.filter(rssi)

    # ---- Eviction ----
    def remove(self, emitter_id: str) -> bool:
        return self._entries.pop(emitter_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """清理超过 ttl_seconds 未出现的发射源，返回被清理的 ID"""
        if self.ttl_seconds is None:
            return []
        now = self._clock() if now is None else now
        expired = [
            emitter_id
            for emitter_id, entry in self._entries.items()
            if now - entry.last_seen > self.ttl_seconds
        ]
        for emitter_id in expired:
            del self._entries[emitter_id]
        if expired:
            logger.debug("清理过期发射源 %d 个: %s", len(expired), expired)
        return expired

    # ---- Accessors ----
    def all(self) -> Dict[str, FilterState]:
        return {
            emitter_id: entry.state
            for emitter_id, entry in self._entries.items()
            if entry.state is not None
        }

    def snapshot(self) -> pd.DataFrame:
        """当前全部估计，索引为 emitter_id"""
        rows = [
            {
                "emitter_id": entry.emitter_id,
                "x": entry.state.x,
                "p": entry.state.p,
                "samples": entry.samples,
                "last_seen": entry.last_seen,
            }
            for entry in self._entries.values()
            if entry.state is not None
        ]
        df = pd.DataFrame(rows, columns=["emitter_id", "x", "p", "samples", "last_seen"])
        return df.set_index("emitter_id")
