import numpy as np
import pandas as pd
import pytest

from respcal import background
from respcal.background import BackgroundRate, ControlRate
from respcal.errors import InvalidBackgroundTest, MissingBackgroundTest
from respcal.flagging import ACCEPTED, REJECTED

T0 = pd.Timestamp("2024-05-01 08:00:00")
T1 = pd.Timestamp("2024-05-02 08:00:00")
MID = T0 + (T1 - T0) / 2


def slope_table(slope_values, start=T0, flags=None, phase_type="measure"):
    n = len(slope_values)
    starts = [start + pd.Timedelta(seconds=300 * i) for i in range(n)]
    ends = [s + pd.Timedelta(seconds=240) for s in starts]
    return pd.DataFrame(
        {
            "chamber_id": "CH1",
            "phase_type": phase_type,
            "phase_index": range(1, n + 1),
            "start": starts,
            "end": ends,
            "timestamp_mid": [s + pd.Timedelta(seconds=120) for s in starts],
            "slope": slope_values,
            "quality_flag": flags or n * [ACCEPTED],
        }
    )


@pytest.fixture
def pre():
    return ControlRate(-0.002, T0)


@pytest.fixture
def post():
    return ControlRate(-0.004, T1)


def test_linear_midpoint(pre, post):
    bg = background.build_background("CH1", "linear", pre=pre, post=post)
    assert bg.at(MID) == pytest.approx(-0.003)
    assert bg.at(T0) == pytest.approx(-0.002)
    assert bg.at(T1) == pytest.approx(-0.004)

    # vectorized
    rates = bg.at(pd.DatetimeIndex([T0, MID, T1]))
    np.testing.assert_allclose(rates, [-0.002, -0.003, -0.004])


def test_exponential_midpoint(pre, post):
    bg = background.build_background("CH1", "exponential", pre=pre, post=post)
    # geometric mean of the two rates
    assert bg.at(MID) == pytest.approx(-np.sqrt(0.002 * 0.004))
    assert bg.at(MID) == pytest.approx(-0.003, abs=2e-4)

    # a slightly positive rate from sensor noise cannot be interpolated geometrically
    with pytest.raises(InvalidBackgroundTest):
        background.build_background(
            "CH1", "exponential", pre=pre, post=ControlRate(0.001, T1)
        )


@pytest.mark.parametrize(
    "method, expected",
    [("pre_test", -0.002), ("post_test", -0.004), ("average", -0.003), ("none", 0.0)],
)
def test_constant_methods(pre, post, method, expected):
    bg = background.build_background("CH1", method, pre=pre, post=post)
    assert bg.at(T0) == pytest.approx(expected)
    assert bg.at(T1) == pytest.approx(expected)


def test_missing_tests(pre, post):
    with pytest.raises(MissingBackgroundTest):
        background.build_background("CH1", "linear", pre=pre)
    with pytest.raises(MissingBackgroundTest):
        background.build_background("CH1", "average", post=post)
    with pytest.raises(MissingBackgroundTest):
        background.build_background("CH1", "post_test", pre=pre)

    # single test is enough for its own method
    bg = background.build_background("CH1", "pre_test", pre=pre)
    assert bg.rate_after is None
    # no tests needed without correction
    assert background.build_background("CH1", "none").at(T0) == 0.0

    with pytest.raises(ValueError):
        background.build_background("CH1", "quadratic", pre=pre, post=post)


def test_reversed_tests(pre, post):
    bg = BackgroundRate("CH1", -0.002, -0.004, T1, T0, "linear")
    with pytest.raises(InvalidBackgroundTest):
        bg.at(MID)

    for method in ("linear", "exponential"):
        with pytest.raises(InvalidBackgroundTest, match="must follow"):
            background.build_background("CH1", method, pre=post, post=pre)
    # constant methods do not need the tests in order
    bg = background.build_background("CH1", "average", pre=post, post=pre)
    assert bg.at(MID) == pytest.approx(-0.003)


def test_slope_rate():
    slopes = slope_table(
        [-0.001, -0.002, -0.003, -0.1], flags=3 * [ACCEPTED] + [REJECTED]
    )
    rate = background.slope_rate(slopes)
    assert rate.rate == pytest.approx(-0.002)
    # midpoint of the accepted measure phases
    assert rate.time == T0 + pd.Timedelta(seconds=(600 + 240) / 2)

    slopes = slope_table([-0.001, -0.001, -0.010])
    assert background.slope_rate(slopes, aggregate="median").rate == pytest.approx(-0.001)

    with pytest.raises(MissingBackgroundTest):
        background.slope_rate(slope_table([-0.1], flags=[REJECTED]))
    with pytest.raises(ValueError):
        background.slope_rate(slopes, aggregate="mode")


def test_delta_rate():
    n = 600
    samples = pd.DataFrame(
        {
            "timestamp": pd.date_range(T0, periods=n, freq="s"),
            "oxygen": 8.0 - 0.001 * np.arange(n),
        }
    )
    rate = background.delta_rate(samples, n_init=1)
    assert rate.rate == pytest.approx(-0.001)
    assert rate.time == T0 + pd.Timedelta(seconds=299.5)

    samples["oxygen"] = np.nan
    with pytest.raises(MissingBackgroundTest):
        background.delta_rate(samples)


def test_delta_rate_by_phase():
    # two measure phases each starting from a fresh 8 mg/L after a flush
    t = np.arange(200)
    samples = pd.DataFrame(
        {
            "timestamp": T0 + pd.to_timedelta(np.r_[t, t + 300], unit="s"),
            "oxygen": np.r_[8.0 - 0.002 * t, 8.0 - 0.002 * t],
            "phase_index": np.repeat([1, 2], 200),
        }
    )
    rate = background.delta_rate(samples, n_init=1, by="phase_index")
    assert rate.rate == pytest.approx(-0.002)
    assert rate.time == T0 + pd.Timedelta(seconds=499 / 2)

    # without groups the flush between phases spoils the single regression
    assert background.delta_rate(samples, n_init=1).rate != pytest.approx(-0.002)


def test_correct_slopes(pre, post):
    bg = background.build_background("CH1", "linear", pre=pre, post=post)
    slopes = slope_table([-0.01, -0.02])
    slopes["timestamp_mid"] = [T0, MID]

    corrected = background.correct_slopes(slopes, bg)
    np.testing.assert_allclose(corrected["background"], [-0.002, -0.003])
    np.testing.assert_allclose(corrected["slope_corrected"], [-0.008, -0.017])
    np.testing.assert_allclose(corrected["background_percent"], [20.0, 15.0])
    # input not mutated
    assert "slope_corrected" not in slopes.columns

    empty = background.correct_slopes(slopes.iloc[0:0], bg)
    assert "slope_corrected" in empty.columns


def test_correct_parallel():
    slopes = slope_table([-0.01, -0.02, -0.03])
    blank = slope_table([-0.001, -0.002, -0.5], flags=2 * [ACCEPTED] + [REJECTED])

    corrected = background.correct_parallel(slopes, blank)
    np.testing.assert_allclose(corrected["slope_corrected"][:2], [-0.009, -0.018])
    assert np.isnan(corrected["slope_corrected"].iloc[2])
