from __future__ import annotations

import logging
import os
from typing import Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from .models import DistanceReading, SignalSample

logger = logging.getLogger(__name__)

SAMPLE_COLUMNS = ["cycle", "emitter_id", "rssi", "frequency_mhz", "label"]
READING_COLUMNS = [
    "cycle",
    "emitter_id",
    "display_name",
    "rssi",
    "raw_distance",
    "distance",
    "status",
    "message",
]


class SampleLog:
    """管理录制的扫描数据（pandas + CSV），按扫描周期回放"""

    def __init__(self, default_frequency_mhz: int = 2412):
        self.default_frequency_mhz = default_frequency_mhz
        self._df = pd.DataFrame(columns=SAMPLE_COLUMNS)

    def __len__(self) -> int:
        return len(self._df)

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        for col in ("emitter_id", "rssi"):
            if col not in df.columns:
                raise KeyError(f"CSV 文件缺少 '{col}' 列")
        df = df.copy()
        # 没有 cycle 列时每行各自成为一个周期
        if "cycle" not in df.columns:
            df["cycle"] = range(len(df))
        if "frequency_mhz" not in df.columns:
            df["frequency_mhz"] = self.default_frequency_mhz
        if "label" not in df.columns:
            df["label"] = None

        df["rssi"] = pd.to_numeric(df["rssi"], errors="coerce")
        df["frequency_mhz"] = pd.to_numeric(df["frequency_mhz"], errors="coerce").fillna(
            self.default_frequency_mhz
        )
        # 丢弃缺少 ID 或 RSSI 的行
        df = df.dropna(subset=["emitter_id", "rssi"])
        # RSSI 以整数 dBm 处理，小数取最近整数而不是截断
        fractional = df["rssi"] != df["rssi"].round()
        if fractional.any():
            logger.warning("%d 条 RSSI 含小数，已取整到最近的整数 dBm", int(fractional.sum()))
            df["rssi"] = df["rssi"].round()
        df = df[SAMPLE_COLUMNS].copy()
        df = df.astype({"rssi": "int64", "frequency_mhz": "int64"})
        df["emitter_id"] = df["emitter_id"].astype(str)
        return df.reset_index(drop=True)

    # ---- Load/Save ----
    def load(self, csv_path: str) -> "SampleLog":
        df = pd.read_csv(csv_path, dtype={"emitter_id": str, "label": str})
        self._df = self._normalize_df(df)
        return self

    def add(self, cycle, samples: Iterable[SignalSample]) -> None:
        rows = pd.DataFrame(
            [
                {
                    "cycle": cycle,
                    "emitter_id": s.emitter_id,
                    "rssi": s.rssi,
                    "frequency_mhz": s.frequency_mhz,
                    "label": s.label,
                }
                for s in samples
            ],
            columns=SAMPLE_COLUMNS,
        )
        if not self._df.empty:
            rows = pd.concat([self._df, rows], ignore_index=True)
        self._df = self._normalize_df(rows)

    def save(self, csv_path: str) -> None:
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._df.to_csv(csv_path, index=False, encoding="utf-8")

    # ---- Accessors ----
    def cycles(self) -> Iterator[Tuple[object, List[SignalSample]]]:
        """按首次出现顺序返回各周期，周期内保持文件中的行顺序"""
        for cycle, group in self._df.groupby("cycle", sort=False):
            samples = [
                SignalSample(
                    emitter_id=row.emitter_id,
                    rssi=int(row.rssi),
                    frequency_mhz=int(row.frequency_mhz),
                    label=row.label if isinstance(row.label, str) and row.label else None,
                )
                for row in group.itertuples(index=False)
            ]
            yield cycle, samples


def readings_frame(
    cycle_readings: Iterable[Tuple[object, Iterable[DistanceReading]]],
) -> pd.DataFrame:
    rows = [
        {"cycle": cycle, **reading.to_dict()}
        for cycle, readings in cycle_readings
        for reading in readings
    ]
    return pd.DataFrame(rows, columns=READING_COLUMNS)


def save_readings(df: pd.DataFrame, csv_path: Optional[str]) -> None:
    if csv_path is None:
        return
    os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
    df.to_csv(csv_path, index=False, encoding="utf-8")
