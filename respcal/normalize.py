"""
Repair raw logger timestamps into a gap-free per-second series.
"""
import logging

import numpy as np
import pandas as pd

from respcal import get_respcal_config
from respcal.errors import MalformedTimeseries

cfg = get_respcal_config()
log = logging.getLogger(__name__)

TIME = cfg.column["time"]
CHAMBER = cfg.column["chamber"]
PHASE = cfg.column["phase"]


def normalize_timeseries(samples, keep="last", backstep_tolerance=5):
    """
    Normalize one chamber's raw samples to a strictly increasing series with one
    row per second.

    Timestamps are rounded to whole seconds and sorted. Rows sharing a timestamp
    are resolved by `keep` ("first" or "last" occurrence in the log). Each
    missing second gets a placeholder row with NaN readings and `filled` set.

    Parameters
    ----------
    samples : DataFrame
        RawSample table for a single chamber
    keep : str, optional
        Duplicate timestamp policy, "first" or "last"
    backstep_tolerance : int, optional
        Largest backward jump (seconds) allowed in the original log order

    Returns
    -------
    DataFrame
        Normalized table with a boolean `filled` column

    Raises
    ------
    MalformedTimeseries
        If no timestamps can be parsed or the log steps back in time beyond the
        tolerance (e.g. a clock reset)
    """
    if keep not in ("first", "last"):
        raise ValueError(f"keep must be 'first' or 'last', not '{keep}'")

    df = samples.copy()
    chamber = df[CHAMBER].iloc[0] if (CHAMBER in df.columns and len(df)) else None
    df[TIME] = pd.to_datetime(df[TIME], errors="coerce")
    n_bad = df[TIME].isna().sum()
    if n_bad == len(df):
        raise MalformedTimeseries(f"Chamber {chamber} has no valid timestamps")
    if n_bad:
        log.warning(f"Dropping {n_bad} rows with unparseable timestamps ({chamber})")
        df = df.dropna(subset=[TIME])
    df[TIME] = df[TIME].dt.round("s")

    steps = df[TIME].diff().dt.total_seconds().to_numpy()[1:]
    if np.any(steps < -backstep_tolerance):
        i_back = int(np.argmax(steps < -backstep_tolerance)) + 1
        raise MalformedTimeseries(
            f"Chamber {chamber} steps back {-steps[i_back - 1]:.0f} s at "
            f"{df[TIME].iloc[i_back]} (tolerance {backstep_tolerance} s)"
        )

    df = df.sort_values(TIME, kind="mergesort")
    n_before = len(df)
    df = df.drop_duplicates(subset=TIME, keep=keep)
    if len(df) < n_before:
        log.info(f"Removed {n_before - len(df)} duplicate timestamps ({chamber})")

    full_range = pd.date_range(df[TIME].iloc[0], df[TIME].iloc[-1], freq="s")
    df = df.set_index(TIME)
    filled = ~full_range.isin(df.index)
    df = df.reindex(full_range)
    df.index.name = TIME
    df["filled"] = filled
    if CHAMBER in df.columns:
        df[CHAMBER] = chamber
    if PHASE in df.columns:
        df[PHASE] = df[PHASE].ffill()
    if filled.any():
        log.info(f"Inserted {filled.sum()} placeholder rows for missing seconds ({chamber})")

    return df.reset_index()


def mask_range(samples, column, low=None, high=None):
    """
    Replace readings outside the sensor's valid range with NaN.

    Values at or below `low` or at or above `high` are masked. Either bound
    may be None.
    """
    df = samples.copy()
    bad = np.zeros(len(df), dtype=bool)
    values = df[column].to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        if low is not None:
            bad |= values <= low
        if high is not None:
            bad |= values >= high
    if bad.any():
        log.warning(f"Masking {bad.sum()} {column} readings outside ({low}, {high})")
        df.loc[bad, column] = np.nan
    return df


def normalize_experiment(samples, keep="last", backstep_tolerance=5):
    """
    Apply normalize_timeseries to every chamber in a RawSample table.

    Returns
    -------
    tables : dict
        {chamber_id: normalized DataFrame}
    failures : dict
        {chamber_id: MalformedTimeseries} for chambers that could not be repaired
    """
    tables, failures = {}, {}
    for chamber_id, group in samples.groupby(CHAMBER, sort=False):
        try:
            tables[chamber_id] = normalize_timeseries(
                group, keep=keep, backstep_tolerance=backstep_tolerance
            )
        except MalformedTimeseries as err:
            log.error(f"Chamber {chamber_id}: {err}")
            failures[chamber_id] = err
    return tables, failures
