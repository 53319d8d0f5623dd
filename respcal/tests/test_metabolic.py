import numpy as np
import pandas as pd
import pytest

from respcal import metabolic
from respcal.errors import InvalidChamberGeometry
from respcal.flagging import ACCEPTED, REJECTED
from respcal.settings import ChamberInfo

T0 = pd.Timestamp("2024-05-01 08:00:00")


def corrected_table(slope_corrected, slope=None, flags=None, temperature=15.0):
    n = len(slope_corrected)
    slope = slope if slope is not None else slope_corrected
    return pd.DataFrame(
        {
            "chamber_id": "CH1",
            "phase_type": "measure",
            "phase_index": range(1, n + 1),
            "timestamp_mid": [T0 + pd.Timedelta(minutes=5 * i) for i in range(n)],
            "temperature": temperature,
            "slope": slope,
            "quality_flag": flags or n * [ACCEPTED],
            "background": np.subtract(slope, slope_corrected),
            "slope_corrected": slope_corrected,
            "background_percent": 0.0,
        }
    )


@pytest.fixture
def chamber():
    return ChamberInfo("CH1", "fish1", mass=0.02, volume=5.0, animal_volume=0.05)


def test_reference_values(chamber):
    records = metabolic.calculate_mr(corrected_table([-0.01]), chamber)

    # 0.01 mg/L/s * 4.95 L * 3600 s/h, then / 0.02 kg
    assert records["absolute_rate"].iloc[0] == pytest.approx(178.2, rel=1e-12)
    assert records["mass_specific_rate"].iloc[0] == pytest.approx(8910.0, rel=1e-12)
    assert records["individual_id"].iloc[0] == "fish1"
    assert list(records.columns) == metabolic.MR_COLUMNS


def test_rejected_rows_skipped(chamber):
    table = corrected_table([-0.01, -0.02, np.nan], flags=[ACCEPTED, REJECTED, ACCEPTED])
    records = metabolic.calculate_mr(table, chamber)
    assert list(records["phase_index"]) == [1]


def test_with_background_rate(chamber):
    table = corrected_table([-0.008], slope=[-0.01])
    records = metabolic.calculate_mr(table, chamber)
    assert records["absolute_rate_with_background"].iloc[0] == pytest.approx(178.2)
    assert records["absolute_rate"].iloc[0] == pytest.approx(178.2 * 0.8)


def test_units(chamber):
    mg = metabolic.calculate_mr(corrected_table([-0.01]), chamber)
    ml = metabolic.calculate_mr(corrected_table([-0.01]), chamber, do_unit="ml/L")
    assert ml["absolute_rate"].iloc[0] == pytest.approx(mg["absolute_rate"].iloc[0] * 1.42905)

    per_min = metabolic.calculate_mr(corrected_table([-0.01]), chamber, time_factor=60)
    assert per_min["absolute_rate"].iloc[0] == pytest.approx(178.2 / 60)


def test_animal_volume_from_density():
    ch = ChamberInfo("CH1", "fish1", mass=0.05, volume=5.0)
    assert metabolic.animal_volume(ch) == pytest.approx(0.05)
    assert metabolic.effective_volume(ch) == pytest.approx(4.95)

    dense = ch._replace(density=1.25)
    assert metabolic.effective_volume(dense) == pytest.approx(4.96)


@pytest.mark.parametrize(
    "mass, volume, animal_volume",
    [(0.02, 0.05, 0.05), (0.02, 0.04, 0.05), (0.0, 5.0, 0.05), (-1.0, 5.0, None)],
)
def test_invalid_geometry(mass, volume, animal_volume):
    ch = ChamberInfo("CH1", "fish1", mass=mass, volume=volume, animal_volume=animal_volume)
    with pytest.raises(InvalidChamberGeometry):
        metabolic.effective_volume(ch)
    with pytest.raises(InvalidChamberGeometry):
        metabolic.calculate_mr(corrected_table([-0.01]), ch)


def test_empty(chamber):
    records = metabolic.calculate_mr(corrected_table([]), chamber)
    assert records.empty
    assert list(records.columns) == metabolic.MR_COLUMNS
