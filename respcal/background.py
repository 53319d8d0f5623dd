"""
Background (microbial) respiration correction.

Background tests are empty-chamber runs before (pre-test) and after
(post-test) the animal trials. Their rates are combined into a function of
time that is subtracted from every measure phase slope.
"""
import logging
from collections import namedtuple

import numpy as np
import pandas as pd

from respcal import flagging, get_respcal_config
from respcal.errors import InvalidBackgroundTest, MissingBackgroundTest

cfg = get_respcal_config()
log = logging.getLogger(__name__)

TIME = cfg.column["time"]
OXYGEN = cfg.column["oxygen"]

ControlRate = namedtuple("ControlRate", ["rate", "time"])

# background tests each method needs
_REQUIRES = {
    "none": (),
    "pre_test": ("pre",),
    "post_test": ("post",),
    "average": ("pre", "post"),
    "linear": ("pre", "post"),
    "exponential": ("pre", "post"),
}


class BackgroundRate(
    namedtuple(
        "BackgroundRate",
        ["chamber_id", "rate_before", "rate_after", "time_before", "time_after", "method"],
    )
):
    """
    Background rates of one chamber and the rule combining them over time.

    Rates are in DO units per second, negative for consumption.
    """

    __slots__ = ()

    def _fraction(self, time):
        span = (self.time_after - self.time_before).total_seconds()
        if span <= 0:
            raise InvalidBackgroundTest(
                f"Chamber {self.chamber_id}: post-test ({self.time_after}) must follow "
                f"pre-test ({self.time_before})"
            )
        elapsed = (pd.to_datetime(time) - self.time_before) / pd.Timedelta(seconds=1)
        return np.asarray(elapsed, dtype=float) / span

    def at(self, time):
        """
        Background rate at `time` (Timestamp or array of timestamps).

        The linear and exponential methods extrapolate outside the span
        between the two tests.
        """
        shape = np.shape(np.asarray(time))
        if self.method == "none":
            return np.zeros(shape) if shape else 0.0
        elif self.method == "pre_test":
            rate = np.full(shape, self.rate_before, dtype=float)
        elif self.method == "post_test":
            rate = np.full(shape, self.rate_after, dtype=float)
        elif self.method == "average":
            rate = np.full(shape, (self.rate_before + self.rate_after) / 2, dtype=float)
        elif self.method == "linear":
            frac = self._fraction(time)
            rate = self.rate_before + frac * (self.rate_after - self.rate_before)
        elif self.method == "exponential":
            frac = self._fraction(time)
            rate = self.rate_before * (self.rate_after / self.rate_before) ** frac
        else:
            raise ValueError(f"Unknown background method '{self.method}'")
        return rate if shape else float(rate)


def slope_rate(slopes, aggregate="mean"):
    """
    Representative rate of one background test from its accepted measure slopes.

    Parameters
    ----------
    slopes : DataFrame
        Slope table of the background test
    aggregate : str, optional
        "mean" or "median" of the slopes

    Returns
    -------
    ControlRate
        Rate (DO units/s) timed at the midpoint of the test
    """
    ok = slopes.loc[
        (slopes["phase_type"] == "measure")
        & (slopes["quality_flag"] == flagging.ACCEPTED)
    ]
    if ok.empty:
        raise MissingBackgroundTest("Background test has no accepted measure slopes")
    if aggregate == "mean":
        rate = ok["slope"].mean()
    elif aggregate == "median":
        rate = ok["slope"].median()
    else:
        raise ValueError(f"aggregate must be 'mean' or 'median', not '{aggregate}'")

    start, end = pd.Timestamp(ok["start"].min()), pd.Timestamp(ok["end"].max())
    return ControlRate(float(rate), start + (end - start) / 2)


def delta_rate(samples, n_init=cfg.background_init_points, by=None):
    """
    Rate of a background test from a single regression.

    The oxygen drop from the mean of the first `n_init` readings is regressed
    on elapsed seconds through the origin. With `by`, drop and elapsed time
    restart in every group (e.g. each measure phase) and the groups are pooled
    into one regression.

    Parameters
    ----------
    samples : DataFrame
        Normalized table of one chamber's background test
    n_init : int, optional
        Number of initial readings averaged for the starting oxygen
    by : str, optional
        Column identifying groups that restart from their own initial oxygen

    Returns
    -------
    ControlRate
        Rate (DO units/s) timed at the midpoint of the test
    """
    if by is None:
        groups = [samples]
    else:
        groups = [group for _, group in samples.groupby(by, sort=False)]

    x, delta = [], []
    for group in groups:
        times = pd.DatetimeIndex(group[TIME])
        oxygen = group[OXYGEN].to_numpy(dtype=float)
        good = np.isfinite(oxygen)
        if good.sum() < 2:
            continue
        x.append((times - times[0]).total_seconds().to_numpy()[good])
        delta.append(oxygen[good] - np.mean(oxygen[good][:n_init]))
    if not x:
        raise MissingBackgroundTest("Background test has fewer than 2 readings")

    x, delta = np.concatenate(x), np.concatenate(delta)
    rate = np.sum(x * delta) / np.sum(x**2)
    times = pd.DatetimeIndex(samples[TIME])
    start, end = times.min(), times.max()
    return ControlRate(float(rate), start + (end - start) / 2)


def build_background(chamber_id, method, pre=None, post=None):
    """
    Combine pre- and post-test rates into a BackgroundRate.

    Parameters
    ----------
    chamber_id : str
    method : str
        "none", "pre_test", "post_test", "average", "linear" or "exponential"
    pre, post : ControlRate, optional
        Rates from the tests before and after the trials

    Raises
    ------
    MissingBackgroundTest
        If the method needs a test that was not given
    InvalidBackgroundTest
        If the tests cannot be interpolated (post-test not after the pre-test,
        or exponential rates of mixed sign)
    """
    if method not in _REQUIRES:
        raise ValueError(f"Unknown background method '{method}'")
    tests = {"pre": pre, "post": post}
    missing = [name for name in _REQUIRES[method] if tests[name] is None]
    if missing:
        raise MissingBackgroundTest(
            f"Chamber {chamber_id}: method '{method}' needs {' and '.join(missing)}-test"
        )
    if method in ("linear", "exponential") and not post.time > pre.time:
        raise InvalidBackgroundTest(
            f"Chamber {chamber_id}: post-test ({post.time}) must follow "
            f"pre-test ({pre.time})"
        )
    if method == "exponential" and not (pre.rate * post.rate > 0):
        raise InvalidBackgroundTest(
            f"Chamber {chamber_id}: exponential background needs non-zero rates "
            f"of the same sign, got {pre.rate:.3g} and {post.rate:.3g}"
        )

    return BackgroundRate(
        chamber_id=chamber_id,
        rate_before=pre.rate if pre is not None else None,
        rate_after=post.rate if post is not None else None,
        time_before=pre.time if pre is not None else None,
        time_after=post.time if post is not None else None,
        method=method,
    )


def _with_background(slopes, background):
    corrected = slopes.copy()
    corrected["background"] = np.asarray(background, dtype=float)
    corrected["slope_corrected"] = corrected["slope"] - corrected["background"]
    with np.errstate(divide="ignore", invalid="ignore"):
        corrected["background_percent"] = (
            (corrected["slope"] - corrected["slope_corrected"]) / corrected["slope"] * 100
        )
    return corrected


def correct_slopes(slopes, background):
    """
    Subtract the background rate at each phase midpoint from its slope.

    Adds `background`, `slope_corrected` and `background_percent` columns to a
    copy of the slope table.
    """
    if slopes.empty:
        return _with_background(slopes, [])
    bg = background.at(pd.DatetimeIndex(slopes["timestamp_mid"]))
    log.info(
        f"Chamber {background.chamber_id}: {background.method} background "
        f"{np.min(bg):.3g} to {np.max(bg):.3g} per s"
    )
    return _with_background(slopes, bg)


def correct_parallel(slopes, blank_slopes):
    """
    Subtract the slope of an empty chamber run in parallel, matched by phase
    index. Phases without an accepted blank slope get a NaN correction.
    """
    blank = blank_slopes.loc[blank_slopes["quality_flag"] == flagging.ACCEPTED]
    blank = blank.set_index("phase_index")["slope"]
    bg = slopes["phase_index"].map(blank)
    n_missing = int(bg.isna().sum())
    if n_missing:
        log.warning(f"{n_missing} phase(s) have no accepted blank chamber slope")
    return _with_background(slopes, bg.to_numpy(dtype=float))
