"""RSSI Ranger package.

This package provides:
- rssi_to_distance / PathLossParams: path-loss models (free space, ITU indoor, log-distance with walls)
- ScalarKalmanFilter: linear Kalman smoothing of RSSI streams
- UnscentedDistanceFilter: 1-D UKF smoothing of per-emitter distances
- EstimatorRegistry: bounded per-emitter filter state (LRU / TTL)
- RangingPipeline: one scan cycle, samples -> distance readings
- ConfigManager: YAML-based configuration management
- MQTTRangingProcessor: MQTT ingestion and publishing
"""

from .config_manager import ConfigManager
from .exceptions import ConfigurationError, NumericDomainError, RangerError
from .filters import ScalarKalmanFilter, UnscentedDistanceFilter
from .models import (
    DistanceReading,
    FilterState,
    PathLossParams,
    PathLossVariant,
    ReadingStatus,
    ScanBatch,
    SignalSample,
    UkfParams,
)
from .path_loss import rssi_to_distance
from .pipeline import RangingPipeline
from .registry import EstimatorRegistry
from .mqtt_processor import MQTTRangingProcessor

__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "DistanceReading",
    "EstimatorRegistry",
    "FilterState",
    "MQTTRangingProcessor",
    "NumericDomainError",
    "PathLossParams",
    "PathLossVariant",
    "RangerError",
    "RangingPipeline",
    "ReadingStatus",
    "ScalarKalmanFilter",
    "ScanBatch",
    "SignalSample",
    "UkfParams",
    "UnscentedDistanceFilter",
    "rssi_to_distance",
]
