"""Hourly resource series consumed by the dispatch simulator."""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional, Protocol

import numpy as np
import pandas as pd

from utils.catalog import ConfigurationError
from utils.regions import HOURS_PER_YEAR, Region

RESOURCE_COLUMNS = ("wind_speed", "irradiance", "temperature", "load_mw", "biomass_flow_tph")


def _frozen(values: np.ndarray) -> np.ndarray:
    arr = np.array(values, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class HourlySeries:
    """Read-only 8760-step resource arrays.

    Units:
    - ``wind_speed``: m/s at hub height.
    - ``irradiance``: plane-of-array irradiance normalized to STC (1.0 == 1 kW/m²).
    - ``temperature``: ambient °C.
    - ``load_mw``: average demand in the hour (MW == MWh for a 1 h step).
    - ``biomass_flow_tph``: feedstock available in the hour (t/h).
    """

    wind_speed: np.ndarray
    irradiance: np.ndarray
    temperature: np.ndarray
    load_mw: np.ndarray
    biomass_flow_tph: np.ndarray

    def __post_init__(self) -> None:
        lengths = set()
        for name in RESOURCE_COLUMNS:
            arr = _frozen(getattr(self, name))
            if arr.ndim != 1:
                raise ValueError(f"{name} must be one-dimensional.")
            if not np.isfinite(arr).all():
                raise ValueError(f"{name} contains non-finite values.")
            lengths.add(arr.size)
            object.__setattr__(self, name, arr)
        if len(lengths) != 1:
            raise ValueError(f"Resource arrays must share one length; got {sorted(lengths)}.")
        if (self.load_mw < 0).any():
            raise ValueError("load_mw must be non-negative.")

    def __len__(self) -> int:
        return int(self.load_mw.size)

    @property
    def total_load_mwh(self) -> float:
        return float(self.load_mw.sum())

    @property
    def peak_load_mw(self) -> float:
        return float(self.load_mw.max()) if len(self) else 0.0

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "HourlySeries":
        missing = {"wind_speed", "irradiance", "load_mw"} - set(df.columns)
        if missing:
            raise ValueError(f"Resource frame is missing columns: {sorted(missing)}")
        n = len(df)
        temperature = df["temperature"] if "temperature" in df.columns else np.full(n, 25.0)
        biomass = df["biomass_flow_tph"] if "biomass_flow_tph" in df.columns else np.zeros(n)
        return cls(
            wind_speed=np.asarray(df["wind_speed"], dtype=float),
            irradiance=np.asarray(df["irradiance"], dtype=float),
            temperature=np.asarray(temperature, dtype=float),
            load_mw=np.asarray(df["load_mw"], dtype=float),
            biomass_flow_tph=np.asarray(biomass, dtype=float),
        )

    def to_frame(self) -> pd.DataFrame:
        data = {name: getattr(self, name) for name in RESOURCE_COLUMNS}
        return pd.DataFrame({"hour_index": np.arange(len(self)), **data})


class ResourceProvider(Protocol):
    """Supplies the hourly series for a region; implemented outside the core."""

    def hourly_series(self, region: Region) -> HourlySeries:
        ...


class FrameResourceProvider:
    """Provider backed by pre-loaded frames keyed by region id."""

    def __init__(self, frames: Optional[Dict[str, pd.DataFrame]] = None) -> None:
        self._series: Dict[str, HourlySeries] = {}
        self._lock = Lock()
        for region_id, df in (frames or {}).items():
            self.register(region_id, df)

    def register(self, region_id: str, df: pd.DataFrame) -> HourlySeries:
        series = HourlySeries.from_frame(df)
        if len(series) != HOURS_PER_YEAR:
            raise ValueError(f"Resource series for '{region_id}' has {len(series)} rows; expected {HOURS_PER_YEAR}.")
        with self._lock:
            self._series[region_id] = series
        return series

    def hourly_series(self, region: Region) -> HourlySeries:
        with self._lock:
            if region.id not in self._series:
                raise ConfigurationError(f"No resource series registered for region '{region.id}'.")
            return self._series[region.id]
