import numpy as np
import pytest

from respcal import flagging
from respcal.flagging import ACCEPTED, REJECTED


def test_merge_flags():
    old_flags = 4 * [ACCEPTED] + [REJECTED]
    new_flags = [REJECTED] + 4 * [ACCEPTED]

    # rejected in either set stays rejected
    merged = flagging._merge_flags(new_flags, old_flags)
    np.testing.assert_array_equal(merged, [REJECTED] + 3 * [ACCEPTED] + [REJECTED])

    # no old flags returns new flags
    np.testing.assert_array_equal(flagging._merge_flags(new_flags, None), new_flags)

    # error if flag lengths are different
    with pytest.raises(ValueError):
        flagging._merge_flags(old_flags, new_flags[:-1])
    with pytest.raises(ValueError):
        flagging._merge_flags(old_flags[:-1], new_flags)


def test_nan_values():
    data = [0, 0, 0, np.nan]

    # check NaNs are flagged properly (without old flags)
    assert all(flagging.nan_values(data)[:-1] == ACCEPTED)
    assert flagging.nan_values(data)[-1] == REJECTED

    # check re-defining flag_good/flag_nan
    new_flags = flagging.nan_values(data, flag_good="ok", flag_nan="missing")
    assert all(new_flags[:-1] == "ok")
    assert new_flags[-1] == "missing"


def test_by_threshold():
    r2 = [0.99, 0.95, 0.9499, np.nan]

    flags = flagging.by_threshold(r2, 0.95)
    np.testing.assert_array_equal(flags, [ACCEPTED, ACCEPTED, REJECTED, REJECTED])

    # scalar input
    assert flagging.by_threshold(0.5, 0.95)[0] == REJECTED

    # empty input
    assert len(flagging.by_threshold([], 0.95)) == 0

    # NaN slopes stay rejected even with a good fit quality
    slopes = [-0.01, np.nan, -0.02]
    flags = flagging.by_threshold(
        [0.99, 0.99, 0.5], 0.95, old_flags=flagging.nan_values(slopes)
    )
    np.testing.assert_array_equal(flags, [ACCEPTED, REJECTED, REJECTED])


def test_outliers():
    data = [np.nan] + 97 * [0] + [100, 100]

    # check outliers are flagged properly (without old flags)
    flags = flagging.outliers(data)
    assert flags[0] == REJECTED  # NaN
    assert all(flags[1:-2] == ACCEPTED)
    assert all(flags[-2:] == REJECTED)

    # check re-defining flag_good/flag_outlier
    new_flags = flagging.outliers(data, flag_good="ok", flag_outlier="bad")
    assert all(new_flags[1:-2] == "ok")
    assert all(new_flags[-2:] == "bad")

    # all NaN
    assert all(flagging.outliers([np.nan, np.nan]) == REJECTED)
