"""Input parsing utilities for hourly resource profiles."""

from __future__ import annotations

import logging
from typing import Any, List

import numpy as np
import pandas as pd

from utils.regions import HOURS_PER_YEAR
from utils.resources import RESOURCE_COLUMNS, HourlySeries

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("hour_index", "wind_speed", "irradiance", "load_mw")


def clean_resource_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Validate and normalize a resource table to 8760 rows indexed 0-8759.

    Optional ``temperature`` and ``biomass_flow_tph`` columns default to 25 °C
    and 0 t/h. Non-numeric rows are dropped, duplicate hours averaged and
    missing hours filled with zero resource and zero load.
    """

    if not set(REQUIRED_COLUMNS).issubset(df.columns):
        raise ValueError(f"CSV must contain columns: {', '.join(REQUIRED_COLUMNS)}")

    df = df.copy()
    if "temperature" not in df.columns:
        df["temperature"] = 25.0
    if "biomass_flow_tph" not in df.columns:
        df["biomass_flow_tph"] = 0.0
    df = df[["hour_index", *RESOURCE_COLUMNS]].copy()
    for col in df.columns:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    invalid_rows = ~np.isfinite(df.to_numpy(float)).all(axis=1)
    if invalid_rows.any():
        logger.warning("Resource CSV contains non-numeric or missing entries; dropping %s rows.", int(invalid_rows.sum()))
        df = df.loc[~invalid_rows].copy()

    if df.empty:
        raise ValueError("No valid resource rows after cleaning.")

    if (df["hour_index"] % 1 != 0).any():
        raise ValueError("Non-integer hour_index encountered.")

    df["hour_index"] = df["hour_index"].astype(int)

    if df["hour_index"].min() == 1 and 0 not in df["hour_index"].values:
        df["hour_index"] = df["hour_index"] - 1

    out_of_range = (df["hour_index"] < 0) | (df["hour_index"] >= HOURS_PER_YEAR)
    if out_of_range.any():
        logger.warning(
            "hour_index values outside 0-8759 were dropped: %s",
            sorted(df.loc[out_of_range, "hour_index"].unique().tolist()),
        )
        df = df.loc[~out_of_range].copy()

    if df.empty:
        raise ValueError("No valid resource rows after removing out-of-range hours.")

    negative_load = df["load_mw"] < 0
    if negative_load.any():
        logger.warning("Clipping %s negative load_mw values to 0.", int(negative_load.sum()))
        df.loc[negative_load, "load_mw"] = 0.0

    if df["hour_index"].duplicated(keep=False).any():
        logger.warning("Duplicate hour_index values found; averaging each hour.")
        df = df.groupby("hour_index", as_index=False).mean()

    full_index = pd.Index(range(HOURS_PER_YEAR), name="hour_index")
    df = df.set_index("hour_index").sort_index()
    missing_hours = full_index.difference(df.index)
    if len(missing_hours) > 0:
        logger.warning("Resource CSV is missing %s hours; filling gaps with zeros.", len(missing_hours))
        df = df.reindex(full_index, fill_value=0.0)
        df.loc[missing_hours, "temperature"] = 25.0
    else:
        df = df.reindex(full_index)

    df = df.reset_index()
    return df.astype({col: float for col in RESOURCE_COLUMNS})


def read_resource_profile(path_candidates: List[Any]) -> HourlySeries:
    """Read the first readable CSV among ``path_candidates`` into a series."""

    last_err = None
    for candidate in path_candidates:
        try:
            df = pd.read_csv(candidate)
            return HourlySeries.from_frame(clean_resource_frame(df))
        except (OSError, ValueError, pd.errors.ParserError) as e:
            last_err = e
    raise RuntimeError(
        "Failed to read resource profile. "
        f"Looked for: {path_candidates}. Last error: {last_err}"
    )
