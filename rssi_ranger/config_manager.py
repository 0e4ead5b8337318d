from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any, Dict, Optional

from .exceptions import ConfigurationError
from .filters import ScalarKalmanFilter, UnscentedDistanceFilter
from .models import PathLossParams, PathLossVariant, UkfParams
from .pipeline import RangingPipeline
from .registry import EstimatorRegistry

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes")


def _optional_float(v: str) -> Optional[float]:
    return None if v.lower() in ("", "none", "null") else float(v)


def _optional_int(v: str) -> Optional[int]:
    return None if v.lower() in ("", "none", "null") else int(v)


def _config_value(
    section: Dict[str, Any], key: str, cast: Callable[[Any], Any] = float, optional: bool = False
) -> Any:
    """读取并转换配置项，非法值统一抛出 ConfigurationError"""
    value = section.get(key)
    if value is None and optional:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"配置项 {key} 非法: {value!r}") from e


DEFAULT_CONFIG_PATH = _env_or_default(
    "RSSI_RANGER_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件，并据此构建滤波与换算组件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("RSSI_RANGER_MQTT_IP", "localhost"),
                "port": _env_or_default("RSSI_RANGER_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default(
                    "RSSI_RANGER_MQTT_UPLINK_TOPIC", "/scanner/distance/{scannerId}"
                ),
                "downlink_topic": _env_or_default(
                    "RSSI_RANGER_MQTT_DOWNLINK_TOPIC", "/scanner/rssi/+"
                ),
            },
            "path_loss": {
                "model": _env_or_default("RSSI_RANGER_PATH_LOSS_MODEL", "log_distance_wall"),
                "tx_power_at_1m": _env_or_default("RSSI_RANGER_TX_POWER", 0.0, float),
                "distance_power_loss": _env_or_default("RSSI_RANGER_ITU_N", 30.0, float),
                "floor_loss": _env_or_default("RSSI_RANGER_FLOOR_LOSS", 0.0, float),
                "rssi_at_1m": _env_or_default("RSSI_RANGER_RSSI_AT_1M", -40.0, float),
                "gamma": _env_or_default("RSSI_RANGER_GAMMA", 3.0, float),
                "wall_loss_per_wall": _env_or_default("RSSI_RANGER_WALL_LOSS", 1.0, float),
                "wall_count": _env_or_default("RSSI_RANGER_WALL_COUNT", 1, int),
                "default_frequency_mhz": _env_or_default("RSSI_RANGER_DEFAULT_FREQ", 2412, int),
            },
            "rssi_filter": {
                "enabled": _env_or_default("RSSI_RANGER_RSSI_FILTER", False, _as_bool),
                "q": _env_or_default("RSSI_RANGER_RSSI_Q", 0.008, float),
                "r": _env_or_default("RSSI_RANGER_RSSI_R", 4.0, float),
            },
            "ukf": {
                "enabled": _env_or_default("RSSI_RANGER_UKF", True, _as_bool),
                "q": _env_or_default("RSSI_RANGER_UKF_Q", 0.1, float),
                "r": _env_or_default("RSSI_RANGER_UKF_R", 0.5, float),
                "alpha": _env_or_default("RSSI_RANGER_UKF_ALPHA", 1e-3, float),
                "beta": _env_or_default("RSSI_RANGER_UKF_BETA", 2.0, float),
                "kappa": _env_or_default("RSSI_RANGER_UKF_KAPPA", 0.0, float),
                "initial_covariance": _env_or_default("RSSI_RANGER_UKF_P0", 1.0, float),
            },
            "registry": {
                "max_entries": _env_or_default("RSSI_RANGER_MAX_EMITTERS", 256, int),
                "ttl_seconds": _env_or_default("RSSI_RANGER_TTL", None, _optional_float),
            },
            "pipeline": {
                "min_rssi": _env_or_default("RSSI_RANGER_MIN_RSSI", -60, _optional_int),
                "threshold_stage": _env_or_default("RSSI_RANGER_THRESHOLD_STAGE", "before"),
            },
            "logging": {
                "level": _env_or_default("RSSI_RANGER_LOG_LEVEL", "INFO"),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("读取配置文件 %s 失败，使用默认配置: %s", self.config_file, e)
            self.config = copy.deepcopy(self.default_config)

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置文件 %s 失败: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_path_loss_config(self):
        return self.config["path_loss"]

    def get_rssi_filter_config(self):
        return self.config["rssi_filter"]

    def get_ukf_config(self):
        return self.config["ukf"]

    def get_registry_config(self):
        return self.config["registry"]

    def get_pipeline_config(self):
        return self.config["pipeline"]

    def get_log_level(self) -> str:
        return str(self.config.get("logging", {}).get("level", "INFO")).upper()

    def get_default_frequency(self) -> int:
        return _config_value(self.get_path_loss_config(), "default_frequency_mhz", int)

    def get_wall_count(self) -> int:
        return _config_value(self.get_path_loss_config(), "wall_count", int)

    def set_mqtt_config(self, ip, port, uplink_topic=None, downlink_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if uplink_topic is not None:
            self.config["mqtt"]["uplink_topic"] = uplink_topic
        if downlink_topic is not None:
            self.config["mqtt"]["downlink_topic"] = downlink_topic
        self.save_config()

    def set_path_loss_config(self, model: str, **params: float):
        """切换路径损耗模型；参数先校验再写入"""
        section = dict(self.config["path_loss"], model=model, **params)
        self._path_loss_from(section)
        self.config["path_loss"] = section
        self.save_config()

    def set_ukf_config(self, q: float, r: float, alpha=None, beta=None, kappa=None):
        section = dict(self.config["ukf"], q=q, r=r)
        for key, value in (("alpha", alpha), ("beta", beta), ("kappa", kappa)):
            if value is not None:
                section[key] = value
        self._ukf_from(section)
        self.config["ukf"] = section
        self.save_config()

    # ---------- Builders ----------
    @staticmethod
    def _path_loss_from(section: Dict[str, Any]) -> PathLossParams:
        try:
            variant = PathLossVariant(str(section["model"]).lower())
        except ValueError as e:
            raise ConfigurationError(f"未知的路径损耗模型: {section.get('model')}") from e
        match variant:
            case PathLossVariant.FREE_SPACE:
                return PathLossParams.free_space(_config_value(section, "tx_power_at_1m"))
            case PathLossVariant.ITU_INDOOR:
                return PathLossParams.itu_indoor(
                    _config_value(section, "distance_power_loss"), _config_value(section, "floor_loss")
                )
            case PathLossVariant.LOG_DISTANCE_WALL:
                return PathLossParams.log_distance_wall(
                    _config_value(section, "rssi_at_1m"),
                    _config_value(section, "gamma"),
                    _config_value(section, "wall_loss_per_wall"),
                )

    @staticmethod
    def _ukf_from(section: Dict[str, Any]) -> UnscentedDistanceFilter:
        params = UkfParams(
            q=_config_value(section, "q"),
            r=_config_value(section, "r"),
            alpha=_config_value(section, "alpha"),
            beta=_config_value(section, "beta"),
            kappa=_config_value(section, "kappa"),
        )
        return UnscentedDistanceFilter(params, _config_value(section, "initial_covariance"))

    def build_path_loss_params(self) -> PathLossParams:
        return self._path_loss_from(self.get_path_loss_config())

    def build_ukf(self) -> UnscentedDistanceFilter:
        return self._ukf_from(self.get_ukf_config())

    def build_registry(self) -> EstimatorRegistry:
        registry_config = self.get_registry_config()
        rssi_config = self.get_rssi_filter_config()
        factory = None
        if rssi_config.get("enabled"):
            q, r = _config_value(rssi_config, "q"), _config_value(rssi_config, "r")
            # 先构建一次，尽早暴露非法参数
            ScalarKalmanFilter(q, r)

            def factory() -> ScalarKalmanFilter:
                return ScalarKalmanFilter(q, r)

        return EstimatorRegistry(
            ukf=self.build_ukf(),
            max_entries=_config_value(registry_config, "max_entries", int),
            ttl_seconds=_config_value(registry_config, "ttl_seconds", optional=True),
            rssi_filter_factory=factory,
        )

    def build_pipeline(self) -> RangingPipeline:
        pipeline_config = self.get_pipeline_config()
        return RangingPipeline(
            path_loss=self.build_path_loss_params(),
            registry=self.build_registry(),
            wall_count=self.get_wall_count(),
            min_rssi=_config_value(pipeline_config, "min_rssi", int, optional=True),
            threshold_stage=str(pipeline_config["threshold_stage"]),
            smooth_distance=bool(self.get_ukf_config().get("enabled", True)),
        )
