import numpy as np
import pandas as pd
import pytest

from respcal import extraction


def make_records(values, chamber="CH1", individual="fish1"):
    return pd.DataFrame(
        {
            "chamber_id": chamber,
            "individual_id": individual,
            "phase_index": range(1, len(values) + 1),
            "mass_specific_rate": values,
            "absolute_rate": np.asarray(values) * 0.02,
        }
    )


@pytest.fixture
def records():
    rng = np.random.default_rng(1)
    return make_records(rng.uniform(100, 200, 50))


def test_null_trim_idempotent(records):
    result = extraction.summarize(records, trim_percent=0)
    again = extraction.trim_outliers(result.filtered, percent=0)

    assert again["mass_specific_rate"].min() == records["mass_specific_rate"].min()
    assert again["mass_specific_rate"].max() == records["mass_specific_rate"].max()
    pd.testing.assert_frame_equal(again, records)


def test_trim_outliers():
    records = make_records(np.arange(1, 101, dtype=float))
    trimmed = extraction.trim_outliers(records, percent=10)
    assert trimmed["mass_specific_rate"].min() >= 10.9
    assert trimmed["mass_specific_rate"].max() <= 90.1
    assert len(trimmed) == 80
    # input untouched
    assert len(records) == 100


def test_trim_sigma():
    records = make_records([10.0] * 30 + [11.0] * 30 + [500.0])
    trimmed = extraction.trim_sigma(records)
    assert trimmed["mass_specific_rate"].max() == 11.0
    assert len(trimmed) == 60


def test_select_records():
    records = make_records(np.arange(1, 21, dtype=float))
    assert len(extraction.select_records(records, "all")) == 20
    assert list(extraction.select_records(records, "min", n=3)["mass_specific_rate"]) == [1, 2, 3]
    assert list(extraction.select_records(records, "max", n=2)["mass_specific_rate"]) == [20, 19]
    lower = extraction.select_records(records, "lower_tail", percent=10)
    assert lower["mass_specific_rate"].max() <= 2.9
    upper = extraction.select_records(records, "upper_tail", percent=10)
    assert upper["mass_specific_rate"].min() >= 18.1
    with pytest.raises(ValueError):
        extraction.select_records(records, "median")


def test_standard_rate():
    values = np.arange(1, 101, dtype=float)
    assert extraction.standard_rate(values, "quantile", p=0.2) == pytest.approx(20.8)
    assert extraction.standard_rate(values, "low10") == pytest.approx(5.5)
    # drop the 5 lowest, then the lowest 10% of the remaining 95 (10 values)
    assert extraction.standard_rate(values, "low10pc") == pytest.approx(np.mean(values[5:15]))
    assert extraction.standard_rate(values, "mean") == pytest.approx(50.5)
    assert extraction.standard_rate(values[::-1], "min") == 1.0

    with pytest.raises(ValueError):
        extraction.standard_rate(values, "max")

    # too few values
    assert np.isnan(extraction.standard_rate(values[:5], "low10"))
    assert np.isnan(extraction.standard_rate(values[:5], "low10pc"))
    assert np.isnan(extraction.standard_rate([], "quantile"))


def test_standard_rate_mlnd():
    rng = np.random.default_rng(3)
    resting = rng.normal(100, 2, 80)
    active = rng.normal(160, 2, 40)
    values = np.concatenate([resting, active])

    smr = extraction.standard_rate(values, "mlnd", G=4, seed=0)
    assert smr == pytest.approx(100, abs=1.5)
    assert smr == extraction.standard_rate(values, "mlnd", G=4, seed=0)


def test_summarize():
    records = pd.concat(
        [
            make_records(np.arange(1, 101, dtype=float), "CH1", "fish1"),
            make_records([5.0, 7.0, 9.0], "CH2", "fish2"),
        ],
        ignore_index=True,
    )
    summary, filtered = extraction.summarize(records, trim_percent=5, smr_method="quantile", p=0.2)

    ch1 = summary.set_index("chamber_id").loc["CH1"]
    assert ch1["n_records"] == 100
    assert ch1["n_used"] == 90
    assert ch1["mr_min"] == 6.0
    assert ch1["mr_max"] == 95.0
    assert ch1["mmr"] == ch1["mr_max"]
    assert list(summary.columns) == extraction.SUMMARY_COLUMNS

    # filtered set is what the statistics came from
    f1 = filtered.loc[filtered["chamber_id"] == "CH1", "mass_specific_rate"]
    assert f1.min() == ch1["mr_min"]
    assert len(filtered) == 90 + summary.set_index("chamber_id").loc["CH2", "n_used"]


def test_summarize_selection():
    records = make_records(np.arange(1, 101, dtype=float), "CH1", "fish1")

    summary, filtered = extraction.summarize(
        records, smr_method="mean", selection="min", n=10
    )
    assert summary["n_records"].iloc[0] == 100
    assert summary["n_used"].iloc[0] == 10
    assert summary["smr"].iloc[0] == pytest.approx(5.5)
    assert sorted(filtered["mass_specific_rate"]) == list(np.arange(1.0, 11.0))

    summary, _ = extraction.summarize(records, selection="upper_tail", percent=10)
    assert summary["mr_min"].iloc[0] == 91.0
    assert summary["mmr"].iloc[0] == 100.0

    with pytest.raises(ValueError):
        extraction.summarize(records, selection="median")


def test_summarize_empty():
    summary, filtered = extraction.summarize(make_records([]))
    assert summary.empty
    assert filtered.empty


def test_metabolic_scope():
    smr = pd.DataFrame({"chamber_id": ["CH1", "CH2"], "individual_id": ["a", "b"], "smr": [100.0, 80.0]})
    mmr = pd.DataFrame({"chamber_id": ["CH1", "CH2"], "individual_id": ["a", "b"], "mmr": [300.0, 200.0]})
    scope = extraction.metabolic_scope(smr, mmr)
    assert list(scope["scope_absolute"]) == [200.0, 120.0]
    assert list(scope["scope_factorial"]) == [3.0, 2.5]
