"""
Conversion of background-corrected slopes to metabolic rates.
"""
import logging

import numpy as np
import pandas as pd

from respcal import flagging
from respcal.errors import InvalidChamberGeometry
from respcal.oxygen import o2_conversion_factor

log = logging.getLogger(__name__)

MR_COLUMNS = [
    "chamber_id",
    "individual_id",
    "phase_index",
    "timestamp_mid",
    "temperature",
    "slope_corrected",
    "absolute_rate",
    "mass_specific_rate",
    "absolute_rate_with_background",
    "background_percent",
]


def animal_volume(chamber):
    """Animal volume (L), from mass and body density unless given directly."""
    if chamber.animal_volume is not None:
        return float(chamber.animal_volume)
    return chamber.mass / chamber.density


def effective_volume(chamber):
    """
    Volume of water in the chamber (L).

    Raises
    ------
    InvalidChamberGeometry
        If the animal mass is not positive or the animal fills the chamber
    """
    if not chamber.mass > 0:
        raise InvalidChamberGeometry(
            f"Chamber {chamber.chamber_id}: animal mass must be positive, got {chamber.mass}"
        )
    v_animal = animal_volume(chamber)
    if chamber.volume <= v_animal:
        raise InvalidChamberGeometry(
            f"Chamber {chamber.chamber_id}: volume {chamber.volume} L is not larger "
            f"than animal volume {v_animal} L"
        )
    return chamber.volume - v_animal


def calculate_mr(slopes, chamber, do_unit="mg/L", salinity=0.0, time_factor=3600):
    """
    Absolute and mass-specific metabolic rate for each accepted phase.

    absolute_rate = -slope_corrected * o2_factor * (volume - animal_volume) * time_factor

    so O2 consumption (negative slope) gives a positive rate in mg O2/h.

    Parameters
    ----------
    slopes : DataFrame
        Background-corrected slope table of one chamber
    chamber : ChamberInfo
        Chamber metadata (mass in kg, volumes in L)
    do_unit : str, optional
        Unit of the oxygen readings
    salinity : float, optional
        Practical salinity for % air saturation conversion
    time_factor : float, optional
        Seconds per output time unit

    Returns
    -------
    DataFrame
        MetabolicRateRecord table
    """
    v_eff = effective_volume(chamber)

    ok = slopes.loc[slopes["quality_flag"] == flagging.ACCEPTED].copy()
    if "slope_corrected" not in ok.columns:
        ok["slope_corrected"] = ok["slope"]
        ok["background_percent"] = 0.0
    n_nan = int(ok["slope_corrected"].isna().sum())
    if n_nan:
        log.warning(f"Chamber {chamber.chamber_id}: {n_nan} phase(s) without a corrected slope")
        ok = ok.loc[ok["slope_corrected"].notna()]

    factor = o2_conversion_factor(
        do_unit, temperature=ok["temperature"].to_numpy(dtype=float), salinity=salinity
    )
    scale = np.asarray(factor) * v_eff * time_factor

    records = pd.DataFrame(
        {
            "chamber_id": ok["chamber_id"].to_numpy(),
            "individual_id": chamber.individual_id,
            "phase_index": ok["phase_index"].to_numpy(),
            "timestamp_mid": ok["timestamp_mid"].to_numpy(),
            "temperature": ok["temperature"].to_numpy(dtype=float),
            "slope_corrected": ok["slope_corrected"].to_numpy(dtype=float),
        },
        columns=MR_COLUMNS[:6],
    )
    records["absolute_rate"] = -records["slope_corrected"].to_numpy() * scale
    records["mass_specific_rate"] = records["absolute_rate"] / chamber.mass
    records["absolute_rate_with_background"] = -ok["slope"].to_numpy(dtype=float) * scale
    records["background_percent"] = ok["background_percent"].to_numpy(dtype=float)

    log.info(
        f"Chamber {chamber.chamber_id}: {len(records)} metabolic rate records, "
        f"effective volume {v_eff:.4g} L"
    )
    return records[MR_COLUMNS]
