from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class SignalSample:
    """一次扫描中单个发射源的信号读数"""

    emitter_id: str
    rssi: int
    frequency_mhz: int
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        # 标签为空时退回到发射源 ID
        if self.label and self.label.strip():
            return self.label
        return self.emitter_id


@dataclass(frozen=True)
class ScanBatch:
    """
    一个扫描周期内的全部读数，按扫描器给出的顺序排列
    """

    scanner_id: str
    samples: Tuple[SignalSample, ...]
    timestamp: str

    def __len__(self) -> int:
        return len(self.samples)

    def __getitem__(self, index: int) -> SignalSample:
        return self.samples[index]

    def __iter__(self) -> Iterator[SignalSample]:
        return iter(self.samples)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @classmethod
    def parse(cls, data_str: str) -> Optional["ScanBatch"]:
        """
        解析扫描器上报的文本：
        id,rssi,freq[,label];id,rssi,freq[,label];...;scanner_id
        格式错误的条目直接跳过。
        """
        parts = data_str.strip().split(";")
        if not parts or len(parts) < 2:
            return None
        scanner_id = parts[-1].strip()
        now_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        samples: List[SignalSample] = []
        for item in parts[:-1]:
            fields = item.split(",", 3)
            if len(fields) not in (3, 4):
                continue
            emitter_id, rssi_str, freq_str = (f.strip() for f in fields[:3])
            if not emitter_id:
                continue
            try:
                rssi = int(rssi_str)
                frequency = int(freq_str)
            except ValueError:
                continue
            label = fields[3].strip() if len(fields) == 4 else None
            samples.append(
                SignalSample(
                    emitter_id=emitter_id,
                    rssi=rssi,
                    frequency_mhz=frequency,
                    label=label or None,
                )
            )
        return cls(scanner_id=scanner_id, samples=tuple(samples), timestamp=now_str)


class PathLossVariant(Enum):
    FREE_SPACE = "free_space"
    ITU_INDOOR = "itu_indoor"
    LOG_DISTANCE_WALL = "log_distance_wall"


@dataclass(frozen=True)
class PathLossParams:
    """
    路径损耗模型参数（带标签的联合体）：
    variant 决定使用哪一组字段，其余字段被忽略。
    """

    variant: PathLossVariant
    # FREE_SPACE
    tx_power_at_1m: float = 0.0
    # ITU_INDOOR
    distance_power_loss: float = 30.0
    floor_loss: float = 0.0
    # LOG_DISTANCE_WALL
    rssi_at_1m: float = -40.0
    gamma: float = 3.0
    wall_loss_per_wall: float = 1.0

    @classmethod
    def free_space(cls, tx_power_at_1m: float = 0.0) -> "PathLossParams":
        return cls(PathLossVariant.FREE_SPACE, tx_power_at_1m=tx_power_at_1m).validate()

    @classmethod
    def itu_indoor(cls, distance_power_loss: float = 30.0, floor_loss: float = 0.0) -> "PathLossParams":
        return cls(
            PathLossVariant.ITU_INDOOR,
            distance_power_loss=distance_power_loss,
            floor_loss=floor_loss,
        ).validate()

    @classmethod
    def log_distance_wall(
        cls, rssi_at_1m: float = -40.0, gamma: float = 3.0, wall_loss_per_wall: float = 1.0
    ) -> "PathLossParams":
        return cls(
            PathLossVariant.LOG_DISTANCE_WALL,
            rssi_at_1m=rssi_at_1m,
            gamma=gamma,
            wall_loss_per_wall=wall_loss_per_wall,
        ).validate()

    def validate(self) -> "PathLossParams":
        """检查当前变体用到的参数，合法时返回自身"""
        match self.variant:
            case PathLossVariant.FREE_SPACE:
                _require_finite("tx_power_at_1m", self.tx_power_at_1m)
            case PathLossVariant.ITU_INDOOR:
                _require_finite("floor_loss", self.floor_loss)
                if not math.isfinite(self.distance_power_loss) or self.distance_power_loss <= 0:
                    raise ConfigurationError(
                        f"distance_power_loss 必须为正数: {self.distance_power_loss}"
                    )
            case PathLossVariant.LOG_DISTANCE_WALL:
                _require_finite("rssi_at_1m", self.rssi_at_1m)
                _require_finite("wall_loss_per_wall", self.wall_loss_per_wall)
                if not math.isfinite(self.gamma) or self.gamma <= 0:
                    raise ConfigurationError(f"gamma 必须为正数: {self.gamma}")
        return self


def _require_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} 必须为有限数值: {value}")


@dataclass(frozen=True)
class FilterState:
    """单个发射源的距离估计：均值 x（米）与协方差 p"""

    x: float
    p: float


@dataclass(frozen=True)
class UkfParams:
    q: float = 0.1  # 过程噪声
    r: float = 0.5  # 测量噪声
    alpha: float = 1e-3
    beta: float = 2.0
    kappa: float = 0.0


class ReadingStatus(Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


@dataclass
class DistanceReading:
    """
    距离计算结果，交给显示端
    """

    emitter_id: str
    display_name: str
    rssi: int
    raw_distance: Optional[float] = None
    distance: Optional[float] = None
    status: ReadingStatus = ReadingStatus.OK
    message: str = ""

    @classmethod
    def from_sample(cls, sample: SignalSample) -> "DistanceReading":
        return cls(
            emitter_id=sample.emitter_id,
            display_name=sample.display_name,
            rssi=sample.rssi,
        )

    @property
    def available(self) -> bool:
        return self.status is ReadingStatus.OK and self.distance is not None

    def mark_unavailable(self, message: str) -> "DistanceReading":
        self.status = ReadingStatus.UNAVAILABLE
        self.distance = None
        self.message = message
        return self

    def as_tuple(self) -> Tuple[str, int, Optional[float]]:
        return self.display_name, self.rssi, self.distance

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    def format_line(self) -> str:
        if not self.available:
            return f"{self.display_name}  ({self.rssi} dBm)  unavailable"
        return f"{self.display_name}  ({self.rssi} dBm)  ≈ {self.distance:.2f} m"
