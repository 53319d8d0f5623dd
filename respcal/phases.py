"""
Split a normalized chamber series into flush/wait/measure phases.
"""
import logging
from collections import namedtuple

import numpy as np
import pandas as pd

from respcal import get_respcal_config

cfg = get_respcal_config()
log = logging.getLogger(__name__)

TIME = cfg.column["time"]
CHAMBER = cfg.column["chamber"]
PHASE = cfg.column["phase"]

Phase = namedtuple(
    "Phase",
    [
        "chamber_id",
        "phase_type",
        "phase_index",
        "data",
        "declared_duration",
        "start",
        "end",
    ],
)


def _chamber_of(samples, chamber_id):
    if chamber_id is not None:
        return chamber_id
    if CHAMBER in samples.columns and len(samples):
        return samples[CHAMBER].iloc[0]
    return None


def _cycle_bounds(cycle, first, last):
    """
    Phase windows [start, end) in seconds from the cycle anchor, for every cycle
    overlapping [first, last].
    """
    cycle_len = sum(spec.duration for spec in cycle)
    k = int(np.floor(first / cycle_len))
    bounds = []
    while k * cycle_len <= last:
        offset = k * cycle_len
        for spec in cycle:
            bounds.append([spec.phase_type, offset, offset + spec.duration])
            offset += spec.duration
        k += 1
    return bounds


def _shift_transitions(bounds, meas_to_wait, meas_to_flush):
    """
    Hand the first `meas_to_wait` seconds of each measure phase to the wait
    phase before it, and the last `meas_to_flush` seconds to the flush after it.
    """
    for i, (phase_type, start, end) in enumerate(bounds):
        if phase_type != "measure":
            continue
        if meas_to_wait:
            bounds[i][1] = start + meas_to_wait
            if i > 0 and bounds[i - 1][0] == "wait":
                bounds[i - 1][2] += meas_to_wait
        if meas_to_flush:
            bounds[i][2] = end - meas_to_flush
            if i + 1 < len(bounds) and bounds[i + 1][0] == "flush":
                bounds[i + 1][1] -= meas_to_flush
    return bounds


def _is_truncated(n_rows, declared, tolerance):
    return n_rows / declared < tolerance


def segment_phases(
    samples,
    cycle,
    origin=None,
    windows=None,
    meas_to_wait=0,
    meas_to_flush=0,
    tolerance=0.90,
    chamber_id=None,
):
    """
    Assign a normalized per-second series to phases of a repeating cycle.

    The cycle is anchored at `origin` (or the start of each window) and repeats
    every sum(durations) seconds. Each window in `windows` restarts the cycle;
    samples outside all windows are discarded. Phases covering less than
    `tolerance` of their declared duration are dropped.

    Parameters
    ----------
    samples : DataFrame
        Normalized table for one chamber
    cycle : sequence of PhaseSpec
        Ordered phase types with durations (seconds)
    origin : Timestamp, optional
        Start of the first cycle
    windows : sequence of (Timestamp, Timestamp), optional
        Start/stop boundaries for multi-day runs
    meas_to_wait : int, optional
        Seconds at the start of each measure phase reassigned to wait
    meas_to_flush : int, optional
        Seconds at the end of each measure phase reassigned to flush
    tolerance : float, optional
        Minimum actual/declared length ratio

    Returns
    -------
    phases : list of Phase
        Retained phases in time order
    dropped : list of Phase
        Phases discarded by the truncation rule
    """
    if not cycle:
        raise ValueError("Phase cycle is empty")
    chamber_id = _chamber_of(samples, chamber_id)
    times = pd.DatetimeIndex(samples[TIME])
    if not len(times):
        return [], []

    if not windows:
        windows = [(times[0], times[-1] + pd.Timedelta(seconds=1))]

    counters = {phase_type: 0 for phase_type in cfg.phase_types}
    phases, dropped = [], []
    for i_window, (w_start, w_stop) in enumerate(windows):
        w_start, w_stop = pd.Timestamp(w_start), pd.Timestamp(w_stop)
        anchor = origin if (origin is not None and i_window == 0) else w_start
        anchor = pd.Timestamp(anchor)
        in_window = (times >= w_start) & (times < w_stop)
        if not in_window.any():
            log.warning(f"Chamber {chamber_id}: no samples in window {w_start} - {w_stop}")
            continue

        elapsed = (times - anchor).total_seconds().to_numpy()
        first = (w_start - anchor).total_seconds()
        last = (min(w_stop, times[-1] + pd.Timedelta(seconds=1)) - anchor).total_seconds()
        bounds = _cycle_bounds(cycle, first, last)
        bounds = _shift_transitions(bounds, meas_to_wait, meas_to_flush)

        for phase_type, start, end in bounds:
            counters[phase_type] += 1
            if end <= start:
                continue
            declared = end - start
            mask = in_window & (elapsed >= start) & (elapsed < end)
            n_rows = int(mask.sum())
            if n_rows == 0:
                continue
            phase = Phase(
                chamber_id=chamber_id,
                phase_type=phase_type,
                phase_index=counters[phase_type],
                data=samples.loc[mask].reset_index(drop=True),
                declared_duration=declared,
                start=anchor + pd.Timedelta(seconds=start),
                end=anchor + pd.Timedelta(seconds=end),
            )
            if _is_truncated(n_rows, declared, tolerance):
                log.warning(
                    f"Chamber {chamber_id}: dropping {phase_type} {phase.phase_index}, "
                    f"{n_rows} of {declared} s"
                )
                dropped.append(phase)
            else:
                phases.append(phase)

    return phases, dropped


def _label_type(label):
    return cfg.phase_labels.get(str(label).strip()[:1].upper())


def segment_by_labels(samples, tolerance=0.90, declared=None, chamber_id=None):
    """
    Split a series into phases using the logger's own phase labels.

    Phases are contiguous runs of one label (e.g. "F1", "W1", "M1" or bare
    "F"/"W"/"M"). The declared duration of each type comes from `declared` or
    the most common run length of that type. Only the first and last phase of
    each type can be dropped for truncation.

    Parameters
    ----------
    samples : DataFrame
        Normalized table with a `phase` column
    tolerance : float, optional
        Minimum actual/declared length ratio
    declared : dict, optional
        {phase_type: duration in seconds}

    Returns
    -------
    phases : list of Phase
    dropped : list of Phase
    """
    if PHASE not in samples.columns:
        raise KeyError(f"Samples have no '{PHASE}' column")
    chamber_id = _chamber_of(samples, chamber_id)
    declared = dict(declared or {})

    labels = samples[PHASE].astype(object).where(samples[PHASE].notna(), None)
    run_id = (labels != labels.shift()).cumsum()

    runs = []
    for _, run in samples.groupby(run_id, sort=True):
        phase_type = _label_type(run[PHASE].iloc[0]) if run[PHASE].notna().iloc[0] else None
        if phase_type is None:
            continue
        runs.append((phase_type, run))

    for phase_type in cfg.phase_types:
        lengths = pd.Series([len(run) for t, run in runs if t == phase_type])
        if phase_type not in declared and len(lengths):
            declared[phase_type] = int(lengths.mode().iloc[-1])

    first_last = {}
    for i, (phase_type, _) in enumerate(runs):
        first_last.setdefault(phase_type, [i, i])[1] = i

    counters = {phase_type: 0 for phase_type in cfg.phase_types}
    phases, dropped = [], []
    for i, (phase_type, run) in enumerate(runs):
        counters[phase_type] += 1
        duration = declared[phase_type]
        start = pd.Timestamp(run[TIME].iloc[0])
        phase = Phase(
            chamber_id=chamber_id,
            phase_type=phase_type,
            phase_index=counters[phase_type],
            data=run.reset_index(drop=True),
            declared_duration=duration,
            start=start,
            end=start + pd.Timedelta(seconds=duration),
        )
        if i in first_last[phase_type] and _is_truncated(len(run), duration, tolerance):
            log.warning(
                f"Chamber {chamber_id}: dropping {phase_type} {phase.phase_index}, "
                f"{len(run)} of {duration} s"
            )
            dropped.append(phase)
        else:
            phases.append(phase)

    return phases, dropped
