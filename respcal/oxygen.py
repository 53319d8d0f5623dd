"""
Oxygen solubility and dissolved oxygen unit conversions.
"""
import logging

import gsw
import numpy as np

log = logging.getLogger(__name__)

O2_MOLAR_MASS = 31.998  # g/mol
O2_ML_TO_MG = 1.42905  # mg per mL of O2 gas at STP

# multiplicative factors to mg/L for units independent of temperature
_UNIT_FACTORS = {
    "mg/L": 1.0,
    "mmol/L": O2_MOLAR_MASS,
    "umol/L": O2_MOLAR_MASS / 1000,
    "ml/L": O2_ML_TO_MG,
}
DO_UNITS = tuple(_UNIT_FACTORS.keys()) + ("%",)


def o2_solubility(temperature, salinity=0.0):
    """
    Saturation concentration of oxygen in water at 1 atm.

    Parameters
    ----------
    temperature : array-like
        In-situ temperature (Celsius)
    salinity : array-like, optional
        Practical salinity (PSS-78), 0 for freshwater

    Returns
    -------
    o2sol_mg_l : array-like
        Oxygen solubility (mg/L)

    Notes
    -----
    Chambers are at the surface, so potential temperature equals in-situ
    temperature and pressure is taken as 0 dbar.
    """
    t = np.asarray(temperature, dtype=float)
    SP = np.asarray(salinity, dtype=float)
    SA = gsw.SA_from_SP(SP, 0, 0, 0)
    CT = gsw.CT_from_t(SA, t, 0)
    rho = gsw.rho(SA, CT, 0)  # kg/m^3
    o2sol = gsw.O2sol_SP_pt(SP, t)  # umol/kg

    return oxy_umolkg_to_mg(o2sol, rho)


def oxy_umolkg_to_mg(oxy_umol_kg, rho):
    """Convert dissolved oxygen from units of micromol/kg to mg/L.

    Parameters
    ----------
    oxy_umol_kg : array-like
        Dissolved oxygen in units of [umol/kg]
    rho : array-like
        Water density [kg/m^3]

    Returns
    -------
    oxy_mg_L : array-like
        Dissolved oxygen in units of [mg/L]
    """
    return np.asarray(oxy_umol_kg) * (np.asarray(rho) / 1000) * O2_MOLAR_MASS / 1000


def oxy_ml_to_mg(oxy_mL_L):
    """Convert dissolved oxygen from units of mL/L to mg/L."""
    return np.asarray(oxy_mL_L) * O2_ML_TO_MG


def oxy_mg_to_ml(oxy_mg_L):
    """Convert dissolved oxygen from units of mg/L to mL/L."""
    return np.asarray(oxy_mg_L) / O2_ML_TO_MG


def o2_conversion_factor(do_unit, temperature=None, salinity=0.0):
    """
    Factor converting a dissolved oxygen reading (or rate) in `do_unit` to mg/L.

    Parameters
    ----------
    do_unit : str
        One of "mg/L", "mmol/L", "umol/L", "ml/L" or "%" (air saturation)
    temperature : array-like, optional
        Water temperature (Celsius), required for "%"
    salinity : array-like, optional
        Practical salinity, used for "%"

    Returns
    -------
    factor : float or array-like
        Multiplicative conversion factor
    """
    if do_unit in _UNIT_FACTORS:
        return _UNIT_FACTORS[do_unit]
    if do_unit == "%":
        if temperature is None:
            raise ValueError("Temperature is required to convert % air saturation")
        return o2_solubility(temperature, salinity) / 100
    raise ValueError(f"Unknown DO unit '{do_unit}', expected one of {DO_UNITS}")
