"""
Accepted/rejected flags for slope fits and metabolic rate records.
"""
import numpy as np

ACCEPTED = "accepted"
REJECTED = "rejected"


def _merge_flags(new_flags, old_flags):
    """
    Merge old and new flags into one flag vector. A value rejected by either
    vector stays rejected.

    Returns new_flags if old_flags is None.

    Parameters
    ----------
    new_flags : array-like
        Newly calculated flags
    old_flags : array-like, optional
        Previously assigned flags

    Returns
    -------
    merged_flags : array-like
        Merged old and new flags
    """
    if old_flags is None:
        return np.asarray(new_flags)

    new_flags = np.asarray(new_flags, dtype=object)
    old_flags = np.asarray(old_flags, dtype=object)
    if new_flags.shape != old_flags.shape:
        raise ValueError("old and new flags must be the same length")

    merged_flags = np.copy(new_flags)
    merged_flags[old_flags == REJECTED] = REJECTED

    return merged_flags


def nan_values(data, flag_good=ACCEPTED, flag_nan=REJECTED):
    """
    Flag values as either good or nan.

    Parameters
    ----------
    data : array-like
        Variable to be flagged
    flag_good : str, optional
        Flag value for good data
    flag_nan : str, optional
        Flag value for bad (nan) data

    Returns
    -------
    flags : array-like
        Flag for each data point in input
    """
    data = np.atleast_1d(np.asarray(data, dtype=float))
    flags = np.full(data.shape, flag_good, dtype=object)
    flags[np.isnan(data)] = flag_nan

    return flags


def by_threshold(
    data, threshold, old_flags=None, flag_good=ACCEPTED, flag_bad=REJECTED
):
    """
    Flag values below a minimum threshold (e.g., coefficient of determination).

    Parameters
    ----------
    data : array-like
        Variable to be flagged
    threshold : float
        Smallest acceptable value (inclusive)
    old_flags : array-like, optional
        Previously assigned flags; values rejected there stay rejected
    flag_good : str, optional
        Flag value for data at or above threshold
    flag_bad : str, optional
        Flag value for data below threshold or nan

    Returns
    -------
    flags : array-like
        Flag for each data point in input
    """
    data = np.atleast_1d(np.asarray(data, dtype=float))
    flags = np.full(data.shape, flag_good, dtype=object)
    flags[~(data >= threshold)] = flag_bad

    return _merge_flags(flags, old_flags)


def outliers(
    data,
    flag_good=ACCEPTED,
    flag_outlier=REJECTED,
    n_sigma1=2,
    n_sigma2=3,
):
    """
    Flag extreme outliers using standard deviations from the mean as a threshold.

    Outliers are identified over two passes. For the first pass, mean and standard
    deviation of data are calculated for all data. Values more than n_sigma1 standard
    deviations from mean are (temporarily) flagged questionable. For the second pass,
    mean and standard deviation are re-calculated with questionable data excluded. Data
    more than n_sigma2 standard deviations from mean are flagged as outliers.

    NaN values are ignored in the statistics and flagged as outliers.

    Parameters
    ----------
    data : array-like
        Variable to be flagged
    flag_good : str, optional
        Flag value for good data
    flag_outlier : str, optional
        Flag value for outliers
    n_sigma1 : int, optional
        Number of standard deviations away from mean needed to be excluded from statistics
    n_sigma2 : int, optional
        Number of standard deviations away from mean needed to be outlier

    Returns
    -------
    flags : array-like
        Flag for each data point in input
    """
    data = np.atleast_1d(np.asarray(data, dtype=float))
    flags = np.full(data.shape, flag_good, dtype=object)
    if np.all(np.isnan(data)):
        flags[:] = flag_outlier
        return flags

    # pass 1
    questionable = np.abs(data - np.nanmean(data)) > (n_sigma1 * np.nanstd(data))

    # pass 2
    data_mean = np.nanmean(data[~questionable])
    data_std = np.nanstd(data[~questionable])
    is_outlier = np.abs(data - data_mean) > (n_sigma2 * data_std)
    flags[is_outlier | np.isnan(data)] = flag_outlier

    return flags
