"""
Summary statistics of metabolic rate records: outlier trimming, record
selection, standard (SMR) and maximum (MMR) metabolic rate.
"""
import logging
from collections import namedtuple

import numpy as np
import pandas as pd
from sklearn.mixture import GaussianMixture

from respcal import flagging

log = logging.getLogger(__name__)

RATE = "mass_specific_rate"

Extraction = namedtuple("Extraction", ["summary", "filtered"])

SUMMARY_COLUMNS = [
    "chamber_id",
    "individual_id",
    "n_records",
    "n_used",
    "mr_min",
    "mr_max",
    "mr_mean",
    "smr",
    "mmr",
]


def trim_outliers(records, percent=0, column=RATE):
    """
    Drop records below the `percent` and above the `100 - percent` quantile.

    percent=0 returns an unchanged copy.
    """
    if not percent:
        return records.copy()
    values = records[column]
    low, high = values.quantile(percent / 100), values.quantile(1 - percent / 100)
    keep = (values >= low) & (values <= high)
    log.info(f"Trimmed {(~keep).sum()} of {len(records)} records outside {percent}%")
    return records.loc[keep].copy()


def trim_sigma(records, n_sigma1=2, n_sigma2=3, column=RATE):
    """
    Drop records flagged as outliers by flagging.outliers (two-pass standard
    deviation test).
    """
    flags = flagging.outliers(
        records[column].to_numpy(dtype=float), n_sigma1=n_sigma1, n_sigma2=n_sigma2
    )
    return records.loc[flags == flagging.ACCEPTED].copy()


def select_records(records, method="all", n=1, percent=10, column=RATE):
    """
    Select a subset of records by rate.

    Parameters
    ----------
    records : DataFrame
        MetabolicRateRecord table
    method : str, optional
        "all", "min" (n lowest), "max" (n highest), "lower_tail" (at or below
        the `percent` quantile) or "upper_tail" (at or above the
        `100 - percent` quantile)
    n : int, optional
        Number of records for "min" and "max"
    percent : float, optional
        Tail size for "lower_tail" and "upper_tail"

    Returns
    -------
    DataFrame
    """
    if method == "all":
        return records.copy()
    elif method == "min":
        return records.nsmallest(n, column)
    elif method == "max":
        return records.nlargest(n, column)
    elif method == "lower_tail":
        cutoff = records[column].quantile(percent / 100)
        return records.loc[records[column] <= cutoff].copy()
    elif method == "upper_tail":
        cutoff = records[column].quantile(1 - percent / 100)
        return records.loc[records[column] >= cutoff].copy()
    raise ValueError(f"Unknown selection method '{method}'")


def _mlnd(values, G, seed):
    # mean of the lowest component holding at least 10% of the values
    X = values.reshape(-1, 1)
    best, best_bic = None, np.inf
    for n in range(1, min(G, len(values)) + 1):
        gmm = GaussianMixture(n_components=n, random_state=seed).fit(X)
        bic = gmm.bic(X)
        if bic < best_bic:
            best, best_bic = gmm, bic
    labels = best.predict(X)
    counts = np.bincount(labels, minlength=best.n_components)
    means = best.means_.ravel()
    valid = counts >= 0.1 * len(values)
    return float(np.min(means[valid]))


def standard_rate(values, method="quantile", p=0.2, G=4, seed=0):
    """
    Standard metabolic rate from a set of rates.

    Parameters
    ----------
    values : array-like
        Metabolic rates (positive for consumption)
    method : str, optional
        "quantile" (the p quantile), "low10" (mean of the 10 lowest),
        "low10pc" (mean of the lowest 10% after dropping the 5 lowest),
        "mlnd" (mean of the lowest normal distribution of a Gaussian mixture
        with up to G components), "mean" or "min"
    p : float, optional
        Quantile for "quantile"
    G : int, optional
        Maximum mixture components for "mlnd"
    seed : int, optional
        Random state for "mlnd"

    Returns
    -------
    float
        NaN if there are too few values for the method

    Notes
    -----
    See Chabot et al. (2016), J. Fish Biol. 88, Appendix S1.
    """
    values = np.sort(np.asarray(values, dtype=float))
    values = values[np.isfinite(values)]
    if not len(values):
        return np.nan

    if method == "quantile":
        return float(np.quantile(values, p))
    elif method == "low10":
        if len(values) < 10:
            log.warning(f"low10 needs 10 rates, got {len(values)}")
            return np.nan
        return float(np.mean(values[:10]))
    elif method == "low10pc":
        n_used = int(round(0.1 * (len(values) - 5)))
        if n_used < 1:
            log.warning(f"low10pc needs more rates, got {len(values)}")
            return np.nan
        return float(np.mean(values[5 : 5 + n_used]))
    elif method == "mlnd":
        return _mlnd(values, G, seed)
    elif method == "mean":
        return float(np.mean(values))
    elif method == "min":
        return float(values[0])
    raise ValueError(f"Unknown SMR method '{method}'")


def summarize(
    records,
    trim_percent=0,
    smr_method="quantile",
    p=0.2,
    G=4,
    seed=0,
    selection="all",
    n=1,
    percent=10,
    column=RATE,
):
    """
    Per-individual summary of metabolic rate records.

    Parameters
    ----------
    records : DataFrame
        MetabolicRateRecord table (any number of chambers)
    trim_percent : float, optional
        Percent trimmed from each tail before statistics are taken
    smr_method, p, G, seed : optional
        Passed to standard_rate
    selection, n, percent : optional
        Passed to select_records after trimming; the statistics use only the
        selected records

    Returns
    -------
    Extraction
        `summary` (one row per chamber/individual) and `filtered`, the records
        the statistics were computed from
    """
    rows, kept = [], []
    for (chamber_id, individual_id), group in records.groupby(
        ["chamber_id", "individual_id"], sort=False
    ):
        filtered = trim_outliers(group, trim_percent, column)
        filtered = select_records(
            filtered, selection, n=n, percent=percent, column=column
        )
        values = filtered[column]
        rows.append(
            {
                "chamber_id": chamber_id,
                "individual_id": individual_id,
                "n_records": len(group),
                "n_used": len(filtered),
                "mr_min": values.min(),
                "mr_max": values.max(),
                "mr_mean": values.mean(),
                "smr": standard_rate(values, smr_method, p=p, G=G, seed=seed),
                "mmr": values.max(),
            }
        )
        kept.append(filtered)

    summary = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    filtered = pd.concat(kept) if kept else records.iloc[0:0].copy()
    return Extraction(summary, filtered)


def metabolic_scope(smr_summary, mmr_summary):
    """
    Absolute (MMR - SMR) and factorial (MMR / SMR) metabolic scope.

    Parameters
    ----------
    smr_summary : DataFrame
        Summary from a resting trial (uses `smr`)
    mmr_summary : DataFrame
        Summary from an exercise trial (uses `mmr`)

    Returns
    -------
    DataFrame
        Joined on chamber and individual
    """
    keys = ["chamber_id", "individual_id"]
    scope = pd.merge(
        smr_summary[keys + ["smr"]], mmr_summary[keys + ["mmr"]], on=keys, how="inner"
    )
    scope["scope_absolute"] = scope["mmr"] - scope["smr"]
    scope["scope_factorial"] = scope["mmr"] / scope["smr"]
    return scope
