from __future__ import annotations

import math
from typing import Callable, Optional

import numpy as np

from .exceptions import ConfigurationError, NumericDomainError
from .models import FilterState, UkfParams

# 信号强度滤波默认参数（静止场景下的典型 RSSI 取值）
RSSI_PROCESS_NOISE = 0.008
RSSI_MEASUREMENT_NOISE = 4.0

# 距离滤波初始协方差
DEFAULT_INITIAL_COVARIANCE = 1.0

Transition = Callable[[np.ndarray], np.ndarray]


def _identity(values: np.ndarray) -> np.ndarray:
    return values


def _require_positive(name: str, value: float) -> float:
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} 必须为正数: {value}")
    return float(value)


class ScalarKalmanFilter:
    """
    一维线性卡尔曼滤波，用于平滑 RSSI 等标量测量序列。

    状态转移与观测模型均为单位阵：测量值直接估计状态，
    预测步只增加过程噪声，不改变状态。
    """

    def __init__(self, q: float = RSSI_PROCESS_NOISE, r: float = RSSI_MEASUREMENT_NOISE):
        self.q = _require_positive("q", q)
        self.r = _require_positive("r", r)
        self.x = 0.0
        self.p = 1.0
        self.initialized = False

    @property
    def estimate(self) -> float:
        return self.x

    @property
    def variance(self) -> float:
        return self.p

    def reset(self) -> None:
        self.x = 0.0
        self.p = 1.0
        self.initialized = False

    def filter(self, measurement: float) -> float:
        if not self.initialized:
            self.x = float(measurement)
            self.p = 1.0
            self.initialized = True
            return self.x

        # 预测步骤
        self.p += self.q

        # 更新步骤
        k = self.p / (self.p + self.r)
        self.x += k * (measurement - self.x)
        self.p *= 1 - k
        return self.x


class UnscentedDistanceFilter:
    """
    一维无迹卡尔曼滤波 (UKF)，平滑单个发射源的距离估计。

    本对象只保存固定参数，不保存状态：update() 接收当前 FilterState，
    返回新的 FilterState，由调用方（EstimatorRegistry）负责保存。

    fx / hx 为状态转移与观测函数，按元素作用于 sigma 点数组，默认均为恒等映射
    （随机游走假设：两次扫描之间距离变化缓慢）。
    """

    dim = 1

    def __init__(
        self,
        params: Optional[UkfParams] = None,
        initial_covariance: float = DEFAULT_INITIAL_COVARIANCE,
        fx: Optional[Transition] = None,
        hx: Optional[Transition] = None,
    ):
        self.params = params if params is not None else UkfParams()
        self.initial_covariance = _require_positive("initial_covariance", initial_covariance)
        self.fx = fx or _identity
        self.hx = hx or _identity

        _require_positive("q", self.params.q)
        _require_positive("r", self.params.r)
        alpha = _require_positive("alpha", self.params.alpha)
        if not math.isfinite(self.params.beta):
            raise ConfigurationError(f"beta 必须为有限数值: {self.params.beta}")
        if not math.isfinite(self.params.kappa) or self.dim + self.params.kappa <= 0:
            raise ConfigurationError(f"L + kappa 必须为正数: kappa={self.params.kappa}")

        # 缩放参数
        self.lam = alpha * alpha * (self.dim + self.params.kappa) - self.dim
        self.c = self.dim + self.lam

        # sigma 点权重
        wm0 = self.lam / self.c
        wc0 = wm0 + (1 - alpha * alpha + self.params.beta)
        wi = 1.0 / (2 * self.c)
        self.wm = np.array([wm0, wi, wi])
        self.wc = np.array([wc0, wi, wi])

    def seed(self, distance: float, covariance: Optional[float] = None) -> FilterState:
        p = self.initial_covariance if covariance is None else float(covariance)
        return FilterState(x=float(distance), p=p)

    def sigma_points(self, x_pred: float, p_pred: float) -> np.ndarray:
        spread = self.c * p_pred
        if not math.isfinite(spread) or spread < 0:
            raise NumericDomainError(f"sigma 点平方根参数非法: c*P={spread}")
        sqrt_term = math.sqrt(spread)
        return np.array([x_pred, x_pred + sqrt_term, x_pred - sqrt_term])

    def update(self, state: FilterState, z: float) -> FilterState:
        if not math.isfinite(z):
            raise NumericDomainError(f"测量值非有限数值: {z}")

        # 预测步骤
        x_pred = float(np.asarray(self.fx(np.array([state.x])), dtype=float)[0])
        p_pred = state.p + self.params.q

        sigma = self.sigma_points(x_pred, p_pred)

        # 预测观测（按 sigma 点顺序逐项累加）
        z_sigma = np.asarray(self.hx(sigma), dtype=float).tolist()
        z_pred = 0.0
        for w, zs in zip(self.wm.tolist(), z_sigma):
            z_pred += w * zs

        # 新息协方差与互协方差
        s = self.params.r
        cxz = 0.0
        for w, xs, zs in zip(self.wc.tolist(), sigma.tolist(), z_sigma):
            dz = zs - z_pred
            dx = xs - x_pred
            s += w * dz * dz
            cxz += w * dx * dz
        if not math.isfinite(s) or s == 0:
            raise NumericDomainError(f"新息协方差非法: S={s}")

        # 卡尔曼增益
        k = cxz / s

        x = x_pred + k * (z - z_pred)
        p = p_pred - k * s * k
        return FilterState(x=x, p=p)
