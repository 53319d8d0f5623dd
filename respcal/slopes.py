"""
Oxygen slope extraction from measure phases, with optional residual filters
for rejecting disturbed sub-segments.
"""
import logging
from collections import namedtuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.mixture import GaussianMixture

from respcal import flagging, get_respcal_config
from respcal.errors import InvalidPhase, RegressionQualityBelowThreshold

cfg = get_respcal_config()
log = logging.getLogger(__name__)

TIME = cfg.column["time"]
OXYGEN = cfg.column["oxygen"]
TEMP = cfg.column["temp"]

SLOPE_COLUMNS = [
    "chamber_id",
    "phase_type",
    "phase_index",
    "start",
    "end",
    "timestamp_mid",
    "temperature",
    "n_samples",
    "n_used",
    "slope",
    "intercept",
    "se",
    "r_squared",
    "quality_flag",
]

LinearFit = namedtuple("LinearFit", ["slope", "intercept", "se", "r_squared", "n"])


def fit_linear(x, y):
    """
    Ordinary least squares fit of y on x, ignoring non-finite pairs.

    Parameters
    ----------
    x : array-like
        Elapsed time (seconds)
    y : array-like
        Dissolved oxygen

    Returns
    -------
    LinearFit
        Slope, intercept, slope standard error, R^2 and number of points used

    Raises
    ------
    InvalidPhase
        If fewer than two finite points remain or x has no spread
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    good = np.isfinite(x) & np.isfinite(y)
    x, y = x[good], y[good]
    if len(x) < 2:
        raise InvalidPhase(f"Regression needs at least 2 points, got {len(x)}")
    if np.ptp(x) == 0:
        raise InvalidPhase("Regression needs at least 2 distinct times")

    fit = stats.linregress(x, y)
    return LinearFit(fit.slope, fit.intercept, fit.stderr, fit.rvalue**2, len(x))


def _residuals(x, y, keep):
    fit = fit_linear(x[keep], y[keep])
    return y - (fit.intercept + fit.slope * x)


class MixtureFilter:
    """
    Keep the dominant linear cluster of a phase.

    A Gaussian mixture is fit to the residuals of the OLS line, with the number
    of components (1 to `max_components`) chosen by BIC. Points in the most
    populated component are kept and the line is refit; this repeats until the
    kept set stops changing or `max_iter` is reached. Results are reproducible
    for a fixed `seed`.
    """

    def __init__(self, max_components=4, seed=0, max_iter=3):
        self.max_components = max_components
        self.seed = seed
        self.max_iter = max_iter

    def _dominant(self, resid):
        X = resid.reshape(-1, 1)
        best, best_bic = None, np.inf
        for n in range(1, min(self.max_components, len(X)) + 1):
            gmm = GaussianMixture(n_components=n, random_state=self.seed).fit(X)
            bic = gmm.bic(X)
            if bic < best_bic:
                best, best_bic = gmm, bic
        labels = best.predict(X)
        return labels == np.argmax(np.bincount(labels))

    def __call__(self, x, y):
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        finite = np.isfinite(x) & np.isfinite(y)
        keep = finite.copy()
        if finite.sum() < 3:
            return keep

        for _ in range(self.max_iter):
            resid = _residuals(x, y, keep)
            new_keep = np.zeros_like(finite)
            new_keep[finite] = self._dominant(resid[finite])
            if new_keep.sum() < 2 or np.array_equal(new_keep, keep):
                break
            keep = new_keep

        log.debug(f"Mixture filter kept {keep.sum()} of {finite.sum()} points")
        return keep

    def __repr__(self):
        return f"MixtureFilter(max_components={self.max_components}, seed={self.seed})"


class PercentileFilter:
    """
    Drop points whose absolute OLS residual exceeds the given percentile.
    """

    def __init__(self, percentile=95):
        self.percentile = percentile

    def __call__(self, x, y):
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        keep = np.isfinite(x) & np.isfinite(y)
        if keep.sum() < 3:
            return keep
        resid = np.abs(_residuals(x, y, keep))
        cutoff = np.percentile(resid[keep], self.percentile)
        return keep & (resid <= cutoff)

    def __repr__(self):
        return f"PercentileFilter(percentile={self.percentile})"


def make_filter(name, max_components=4, seed=0, percentile=95):
    """Build a fit filter by name ("none", "mixture" or "percentile")."""
    if name in (None, "none"):
        return None
    elif name == "mixture":
        return MixtureFilter(max_components=max_components, seed=seed)
    elif name == "percentile":
        return PercentileFilter(percentile=percentile)
    raise ValueError(f"Unknown slope filter '{name}'")


def valid_samples(phase):
    """Number of real (non-placeholder, non-NaN) oxygen readings in a phase."""
    data = phase.data
    valid = data[OXYGEN].notna()
    if "filled" in data.columns:
        valid &= ~data["filled"].astype(bool)
    return int(valid.sum())


def fit_phase(phase, fit_filter=None, fit_length=None):
    """
    Fit oxygen against elapsed seconds for one phase.

    Parameters
    ----------
    phase : Phase
        Measure phase
    fit_filter : callable, optional
        Maps (x, y) to a boolean mask of points to keep
    fit_length : int, optional
        Only use the first `fit_length` seconds of the phase

    Returns
    -------
    dict
        One slope table row (without quality flag)
    """
    data = phase.data
    times = pd.DatetimeIndex(data[TIME])
    x = (times - times[0]).total_seconds().to_numpy()
    y = data[OXYGEN].to_numpy(dtype=float)
    if fit_length is not None:
        x, y = x[x < fit_length], y[x < fit_length]

    keep = np.isfinite(y)
    if fit_filter is not None:
        keep = fit_filter(x, y)
    fit = fit_linear(x[keep], y[keep])

    return {
        "chamber_id": phase.chamber_id,
        "phase_type": phase.phase_type,
        "phase_index": phase.phase_index,
        "start": times[0],
        "end": times[-1],
        "timestamp_mid": times[0] + (times[-1] - times[0]) / 2,
        "temperature": np.nanmean(data[TEMP].to_numpy(dtype=float))
        if data[TEMP].notna().any()
        else np.nan,
        "n_samples": int(np.isfinite(y).sum()),
        "n_used": fit.n,
        "slope": fit.slope,
        "intercept": fit.intercept,
        "se": fit.se,
        "r_squared": fit.r_squared,
    }


def extract_slopes(
    phases, r2_threshold=0.95, fit_filter=None, fit_length=None, report=None
):
    """
    Slope table for every measure phase.

    Phases with fewer than two valid samples are excluded before regression.
    Fits with R^2 below `r2_threshold` are kept but flagged rejected.

    Parameters
    ----------
    phases : list of Phase
        Segmented phases (non-measure phases are skipped)
    r2_threshold : float, optional
        Minimum accepted coefficient of determination
    fit_filter : callable, optional
        Residual filter passed to fit_phase
    fit_length : int, optional
        Seconds of each phase used for the fit
    report : ExclusionReport, optional
        Collects excluded and rejected phases

    Returns
    -------
    DataFrame
        Slope table, one row per fitted phase
    """
    rows = []
    for phase in phases:
        if phase.phase_type != "measure":
            continue
        n_valid = valid_samples(phase)
        if n_valid < 2:
            log.warning(
                f"Chamber {phase.chamber_id}: measure {phase.phase_index} has "
                f"{n_valid} valid sample(s), excluded"
            )
            if report is not None:
                report.add(
                    phase.chamber_id,
                    phase.phase_type,
                    phase.phase_index,
                    InvalidPhase.__name__,
                    f"{n_valid} valid samples",
                )
            continue
        try:
            rows.append(fit_phase(phase, fit_filter=fit_filter, fit_length=fit_length))
        except InvalidPhase as err:
            log.warning(f"Chamber {phase.chamber_id}: measure {phase.phase_index}: {err}")
            if report is not None:
                report.add(
                    phase.chamber_id,
                    phase.phase_type,
                    phase.phase_index,
                    InvalidPhase.__name__,
                    str(err),
                )

    slopes = pd.DataFrame(rows, columns=SLOPE_COLUMNS[:-1])
    # a fit without a finite slope is rejected whatever its R^2
    slopes["quality_flag"] = flagging.by_threshold(
        slopes["r_squared"], r2_threshold, old_flags=flagging.nan_values(slopes["slope"])
    )

    for row in slopes.loc[slopes["quality_flag"] == flagging.REJECTED].itertuples():
        log.warning(
            f"Chamber {row.chamber_id}: measure {row.phase_index} rejected, "
            f"R^2 {row.r_squared:.3f} < {r2_threshold}"
        )
        if report is not None:
            report.add(
                row.chamber_id,
                row.phase_type,
                row.phase_index,
                RegressionQualityBelowThreshold.__name__,
                f"r_squared={row.r_squared:.4f}, slope={row.slope:.4g}",
            )

    return slopes
