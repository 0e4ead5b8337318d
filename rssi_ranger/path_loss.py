from __future__ import annotations

import math
from typing import Optional

from .exceptions import NumericDomainError
from .models import PathLossParams, PathLossVariant

# 自由空间模型中 MHz/米 单位换算常数
FREE_SPACE_CONSTANT_DB = 27.55
# ITU 室内模型中 MHz/米 单位换算常数
ITU_INDOOR_CONSTANT_DB = 28.0


def rssi_to_distance(
    rssi: float,
    params: PathLossParams,
    frequency_mhz: Optional[float] = None,
    wall_count: int = 0,
) -> float:
    """
    基于RSSI计算距离 (单位: 米)

    纯函数：相同输入总得到相同输出，不做任何截断。
    FREE_SPACE / ITU_INDOOR 需要 frequency_mhz > 0，
    LOG_DISTANCE_WALL 忽略频率、使用 wall_count。
    """
    match params.variant:
        case PathLossVariant.FREE_SPACE:
            freq_db = _frequency_db(frequency_mhz)
            exponent = (params.tx_power_at_1m - rssi - freq_db + FREE_SPACE_CONSTANT_DB) / 20.0
        case PathLossVariant.ITU_INDOOR:
            freq_db = _frequency_db(frequency_mhz)
            path_loss = -rssi
            exponent = (
                path_loss + ITU_INDOOR_CONSTANT_DB - freq_db - params.floor_loss
            ) / params.distance_power_loss
        case PathLossVariant.LOG_DISTANCE_WALL:
            if wall_count < 0:
                raise NumericDomainError(f"墙体数量不能为负: {wall_count}")
            loss = (params.rssi_at_1m - rssi) - wall_count * params.wall_loss_per_wall
            exponent = loss / (10.0 * params.gamma)
        case _:
            raise NumericDomainError(f"未知的路径损耗模型: {params.variant!r}")
    return _pow10(exponent)


def _frequency_db(frequency_mhz: Optional[float]) -> float:
    # log10 只在正数上有定义
    if frequency_mhz is None or not math.isfinite(frequency_mhz) or frequency_mhz <= 0:
        raise NumericDomainError(f"频率必须为正数 (MHz): {frequency_mhz}")
    return 20.0 * math.log10(frequency_mhz)


def _pow10(exponent: float) -> float:
    if not math.isfinite(exponent):
        raise NumericDomainError(f"距离指数非有限值: {exponent}")
    try:
        return math.pow(10, exponent)
    except OverflowError as e:
        raise NumericDomainError(f"距离计算溢出: 10^{exponent}") from e
