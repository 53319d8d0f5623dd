"""
Immutable experiment configuration threaded through every pipeline stage.

A user YAML file is loaded into a Munch (see respcal.common.load_user_config)
and frozen here into namedtuples, so chambers can be processed independently
without shared mutable state.
"""
import logging
from collections import namedtuple

import pandas as pd

from respcal import get_respcal_config

cfg = get_respcal_config()
log = logging.getLogger(__name__)

PhaseSpec = namedtuple("PhaseSpec", ["phase_type", "duration"])

ChamberInfo = namedtuple(
    "ChamberInfo",
    ["chamber_id", "individual_id", "mass", "volume", "animal_volume", "density"],
    defaults=[None, cfg.body_density],
)
ChamberInfo.__doc__ = """\
Chamber metadata. Mass in kg, volumes in L, body density in kg/L. When
animal_volume is None it is derived from mass and density."""

_PIPELINE_DEFAULTS = dict(
    cycle=(),
    origin=None,
    windows=(),
    meas_to_wait=0,
    meas_to_flush=0,
    use_phase_labels=False,
    truncation_tolerance=cfg.truncation_tolerance,
    duplicate_keep=cfg.duplicate_keep,
    backstep_tolerance=cfg.backstep_tolerance,
    oxygen_range=(None, None),
    temperature_range=(None, None),
    r2_threshold=cfg.r2_threshold,
    fit_length=None,
    slope_filter="none",
    mixture_max_components=cfg.mixture_max_components,
    mixture_seed=cfg.mixture_seed,
    residual_percentile=cfg.residual_percentile,
    background_method=cfg.background_method,
    background_aggregate=cfg.background_aggregate,
    background_init_points=cfg.background_init_points,
    blank_chamber=None,
    do_unit=cfg.do_unit,
    salinity=0.0,
    time_factor=cfg.time_factor,
    trim_percent=cfg.trim_percent,
    selection_method=cfg.selection_method,
    selection_n=cfg.selection_n,
    selection_percent=cfg.selection_percent,
    smr_method=cfg.smr_method,
    smr_quantile=cfg.smr_quantile,
    smr_components=cfg.smr_components,
)

PipelineConfig = namedtuple(
    "PipelineConfig",
    list(_PIPELINE_DEFAULTS.keys()),
    defaults=list(_PIPELINE_DEFAULTS.values()),
)

_DUPLICATE_POLICIES = ("first", "last")
_SLOPE_FILTERS = ("none", "mixture", "percentile")
_BACKGROUND_METHODS = (
    "none",
    "pre_test",
    "post_test",
    "average",
    "linear",
    "exponential",
    "parallel",
)

_BACKGROUND_AGGREGATES = ("mean", "median", "delta")
_SELECTION_METHODS = ("all", "min", "max", "lower_tail", "upper_tail")


def _to_timestamp(value):
    if value is None:
        return None
    return pd.Timestamp(value)


def _to_range(value):
    if value is None:
        return (None, None)
    low, high = value
    return (low, high)


def make_cycle(cycle):
    """
    Build a phase cycle from a list of dicts/pairs of (phase type, duration).

    Parameters
    ----------
    cycle : list
        Items like {"type": "flush", "duration": 300} or ("flush", 300)

    Returns
    -------
    tuple of PhaseSpec
    """
    specs = []
    for item in cycle:
        if isinstance(item, dict):
            phase_type, duration = item["type"], item["duration"]
        else:
            phase_type, duration = item
        phase_type = str(phase_type).lower()
        if phase_type not in cfg.phase_types:
            raise ValueError(f"Unknown phase type '{phase_type}' in cycle")
        if duration <= 0:
            raise ValueError(f"Phase '{phase_type}' must have a positive duration")
        specs.append(PhaseSpec(phase_type, int(duration)))
    return tuple(specs)


def make_config(**kwargs):
    """
    Create a validated PipelineConfig. Unspecified fields take package defaults.

    Raises
    ------
    ValueError
        If a parameter is outside its allowed values
    """
    unknown = set(kwargs) - set(PipelineConfig._fields)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    if "cycle" in kwargs:
        kwargs["cycle"] = make_cycle(kwargs["cycle"] or [])
    if "origin" in kwargs:
        kwargs["origin"] = _to_timestamp(kwargs["origin"])
    if "windows" in kwargs:
        kwargs["windows"] = tuple(
            (_to_timestamp(start), _to_timestamp(stop))
            for start, stop in (kwargs["windows"] or [])
        )
    for key in ("oxygen_range", "temperature_range"):
        if key in kwargs:
            kwargs[key] = _to_range(kwargs[key])

    config = PipelineConfig(**kwargs)

    if config.duplicate_keep not in _DUPLICATE_POLICIES:
        raise ValueError(f"duplicate_keep must be one of {_DUPLICATE_POLICIES}")
    if config.slope_filter not in _SLOPE_FILTERS:
        raise ValueError(f"slope_filter must be one of {_SLOPE_FILTERS}")
    if config.background_method not in _BACKGROUND_METHODS:
        raise ValueError(f"background_method must be one of {_BACKGROUND_METHODS}")
    if config.background_aggregate not in _BACKGROUND_AGGREGATES:
        raise ValueError(f"background_aggregate must be one of {_BACKGROUND_AGGREGATES}")
    if config.selection_method not in _SELECTION_METHODS:
        raise ValueError(f"selection_method must be one of {_SELECTION_METHODS}")
    if config.background_method == "parallel" and config.blank_chamber is None:
        raise ValueError("background_method 'parallel' requires a blank_chamber")
    if not 0 < config.truncation_tolerance <= 1:
        raise ValueError("truncation_tolerance must be in (0, 1]")
    if not 0 <= config.trim_percent < 50:
        raise ValueError("trim_percent must be in [0, 50)")
    if config.meas_to_wait < 0 or config.meas_to_flush < 0:
        raise ValueError("meas_to_wait and meas_to_flush must not be negative")
    if not config.cycle and not config.use_phase_labels:
        raise ValueError("A phase cycle is required unless phase labels are used")
    for start, stop in config.windows:
        if start >= stop:
            raise ValueError(f"Window start {start} is not before stop {stop}")

    return config


def make_chambers(chambers):
    """
    Build ChamberInfo tuples from a list of dicts.
    """
    infos = []
    for ch in chambers:
        ch = dict(ch)
        chamber_id = str(ch.pop("chamber_id"))
        individual_id = ch.pop("individual_id", chamber_id)
        infos.append(
            ChamberInfo(
                chamber_id=chamber_id,
                individual_id=str(individual_id),
                mass=float(ch["mass"]),
                volume=float(ch["volume"]),
                animal_volume=ch.get("animal_volume"),
                density=float(ch.get("density", cfg.body_density)),
            )
        )
    ids = [ch.chamber_id for ch in infos]
    if len(set(ids)) != len(ids):
        raise ValueError("Chamber ids must be unique")
    return tuple(infos)


ExperimentSettings = namedtuple(
    "ExperimentSettings", ["config", "chambers", "files", "reader", "reader_options"]
)


def from_user_config(user_cfg):
    """
    Freeze a user configuration (Munch/dict loaded from YAML) into settings.

    Parameters
    ----------
    user_cfg : Munch or dict
        User configuration

    Returns
    -------
    ExperimentSettings
        Pipeline configuration, chamber metadata, input files and reader
    """
    user_cfg = dict(user_cfg)
    if "chambers" not in user_cfg:
        raise KeyError("Configuration requires a 'chambers' list")

    chambers = make_chambers(user_cfg.pop("chambers"))
    files = dict(user_cfg.pop("files", {}) or {})
    if "measure" not in files:
        raise KeyError("Configuration requires files.measure")
    reader = user_cfg.pop("logger", "long")
    reader_options = dict(user_cfg.pop("reader_options", {}) or {})
    if "date_format" in user_cfg:
        reader_options["date_format"] = user_cfg.pop("date_format")

    # nested sections flatten onto PipelineConfig fields
    slope_filter = user_cfg.pop("slope_filter", None)
    if isinstance(slope_filter, dict):
        user_cfg["slope_filter"] = slope_filter.get("method", "none")
        if "max_components" in slope_filter:
            user_cfg["mixture_max_components"] = slope_filter["max_components"]
        if "seed" in slope_filter:
            user_cfg["mixture_seed"] = slope_filter["seed"]
        if "percentile" in slope_filter:
            user_cfg["residual_percentile"] = slope_filter["percentile"]
    elif slope_filter is not None:
        user_cfg["slope_filter"] = slope_filter

    background = user_cfg.pop("background", None)
    if isinstance(background, dict):
        user_cfg["background_method"] = background.get("method", cfg.background_method)
        if "aggregate" in background:
            user_cfg["background_aggregate"] = background["aggregate"]
        if "init_points" in background:
            user_cfg["background_init_points"] = background["init_points"]
        if "blank_chamber" in background:
            user_cfg["blank_chamber"] = str(background["blank_chamber"])
    elif background is not None:
        user_cfg["background_method"] = background

    selection = user_cfg.pop("selection", None)
    if isinstance(selection, dict):
        user_cfg["selection_method"] = selection.get("method", cfg.selection_method)
        if "n" in selection:
            user_cfg["selection_n"] = selection["n"]
        if "percent" in selection:
            user_cfg["selection_percent"] = selection["percent"]
    elif selection is not None:
        user_cfg["selection_method"] = selection

    smr = user_cfg.pop("smr", None)
    if isinstance(smr, dict):
        user_cfg["smr_method"] = smr.get("method", cfg.smr_method)
        if "p" in smr:
            user_cfg["smr_quantile"] = smr["p"]
        if "G" in smr:
            user_cfg["smr_components"] = smr["G"]

    config = make_config(**user_cfg)
    log.info(
        f"Loaded configuration for {len(chambers)} chamber(s), "
        f"background method '{config.background_method}'"
    )
    return ExperimentSettings(config, chambers, files, reader, reader_options)
