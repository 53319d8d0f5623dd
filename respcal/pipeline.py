"""
Experiment orchestration: every chamber runs through normalize, segment,
extract, background correction and rate calculation independently, and
per-chamber failures are recorded instead of stopping the run.
"""
import logging
from collections import Counter, namedtuple
from pathlib import Path

import pandas as pd

from respcal import background, common, extraction, get_respcal_config, io
from respcal.errors import (
    InvalidBackgroundTest,
    InvalidChamberGeometry,
    InvalidPhase,
    MalformedTimeseries,
    MissingBackgroundTest,
)
from respcal.metabolic import MR_COLUMNS, calculate_mr
from respcal.normalize import mask_range, normalize_timeseries
from respcal.phases import segment_by_labels, segment_phases
from respcal.settings import from_user_config
from respcal.slopes import SLOPE_COLUMNS, extract_slopes, make_filter

cfg = get_respcal_config()
log = logging.getLogger(__name__)

CHAMBER = cfg.column["chamber"]
OXYGEN = cfg.column["oxygen"]
TEMP = cfg.column["temp"]

Experiment = namedtuple(
    "Experiment",
    ["config", "chambers", "measurements", "pre_test", "post_test"],
    defaults=[None, None],
)

Results = namedtuple("Results", ["slopes", "records", "summary", "filtered", "report"])

FATAL_ERRORS = (
    MalformedTimeseries,
    MissingBackgroundTest,
    InvalidBackgroundTest,
    InvalidChamberGeometry,
)

EXCLUSION_COLUMNS = ["chamber_id", "source", "phase_type", "phase_index", "cause", "detail"]


class ExclusionReport:
    """
    Append-only record of excluded chambers and phases with their causes.

    Entries are tagged with the data they came from: "trial" for the animal
    measurements, "pre_test"/"post_test" for background tests and "blank" for
    the empty chamber of the parallel method. `for_source` returns a view
    that appends to the same record under another tag.
    """

    def __init__(self, source="trial", entries=None):
        self.source = source
        self._entries = [] if entries is None else entries

    def for_source(self, source):
        return ExclusionReport(source, self._entries)

    def add(self, chamber_id, phase_type, phase_index, cause, detail=""):
        self._entries.append(
            (chamber_id, self.source, phase_type, phase_index, cause, detail)
        )

    def add_dropped(self, phases):
        """Record phases dropped by the truncation rule."""
        for phase in phases:
            self.add(
                phase.chamber_id,
                phase.phase_type,
                phase.phase_index,
                InvalidPhase.__name__,
                f"{len(phase.data)} of {phase.declared_duration} s",
            )

    def causes(self):
        return Counter(entry[4] for entry in self._entries)

    def to_frame(self):
        return pd.DataFrame(self._entries, columns=EXCLUSION_COLUMNS)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


def _chamber_samples(samples, chamber_id):
    if samples is None:
        return None
    subset = samples.loc[samples[CHAMBER] == chamber_id]
    return subset if len(subset) else None


def chamber_phases(samples, config, chamber_id, report=None):
    """
    Normalize and segment one chamber's samples.

    Parameters
    ----------
    samples : DataFrame
        RawSample table (any number of chambers)
    config : PipelineConfig
    chamber_id : str
    report : ExclusionReport, optional
        Collects phases dropped by the truncation rule

    Returns
    -------
    list of Phase
        Retained phases in time order

    Raises
    ------
    MalformedTimeseries
        If the chamber has no samples or its clock cannot be repaired
    """
    subset = _chamber_samples(samples, chamber_id)
    if subset is None:
        raise MalformedTimeseries(f"No samples for chamber {chamber_id}")

    subset = mask_range(subset, OXYGEN, *config.oxygen_range)
    subset = mask_range(subset, TEMP, *config.temperature_range)
    normalized = normalize_timeseries(
        subset, keep=config.duplicate_keep, backstep_tolerance=config.backstep_tolerance
    )

    if config.use_phase_labels:
        declared = {spec.phase_type: spec.duration for spec in config.cycle} or None
        phases, dropped = segment_by_labels(
            normalized, tolerance=config.truncation_tolerance, declared=declared
        )
    else:
        phases, dropped = segment_phases(
            normalized,
            config.cycle,
            origin=config.origin,
            windows=config.windows,
            meas_to_wait=config.meas_to_wait,
            meas_to_flush=config.meas_to_flush,
            tolerance=config.truncation_tolerance,
        )
    if report is not None:
        report.add_dropped(dropped)
    log.info(
        f"Chamber {chamber_id}: {len(phases)} phases retained, {len(dropped)} dropped"
    )
    return phases


def chamber_slopes(samples, config, chamber_id, report=None):
    """
    Normalize, segment and fit one chamber's samples.

    Returns
    -------
    DataFrame
        Slope table of the chamber

    Raises
    ------
    MalformedTimeseries
        If the chamber has no samples or its clock cannot be repaired
    """
    phases = chamber_phases(samples, config, chamber_id, report)
    fit_filter = make_filter(
        config.slope_filter,
        max_components=config.mixture_max_components,
        seed=config.mixture_seed,
        percentile=config.residual_percentile,
    )
    return extract_slopes(
        phases,
        r2_threshold=config.r2_threshold,
        fit_filter=fit_filter,
        fit_length=config.fit_length,
        report=report,
    )


def _delta_rate(samples, config, chamber_id, report):
    phases = chamber_phases(samples, config, chamber_id, report)
    measure = [
        phase.data.loc[~phase.data["filled"]].assign(phase_index=phase.phase_index)
        for phase in phases
        if phase.phase_type == "measure"
    ]
    if not measure:
        raise MissingBackgroundTest("Background test has no measure phases")
    return background.delta_rate(
        pd.concat(measure, ignore_index=True),
        n_init=config.background_init_points,
        by="phase_index",
    )


def _control_rate(samples, config, chamber_id, source, report):
    if _chamber_samples(samples, chamber_id) is None:
        log.warning(f"Chamber {chamber_id}: no {source} data")
        return None
    # background tests run on their own clock, the cycle starts with their data
    config = config._replace(origin=None, windows=())
    test_report = report.for_source(source)
    try:
        if config.background_aggregate == "delta":
            return _delta_rate(samples, config, chamber_id, test_report)
        slopes = chamber_slopes(samples, config, chamber_id, test_report)
        return background.slope_rate(slopes, aggregate=config.background_aggregate)
    except (MalformedTimeseries, MissingBackgroundTest) as err:
        log.warning(f"Chamber {chamber_id}: unusable {source}, {err}")
        test_report.add(chamber_id, None, None, type(err).__name__, str(err))
        return None


def process_chamber(experiment, chamber, report, blank_slopes=None):
    """
    Run one chamber through the full pipeline.

    Parameters
    ----------
    experiment : Experiment
    chamber : ChamberInfo
    report : ExclusionReport
        Collects phase exclusions of the chamber and its background tests
    blank_slopes : DataFrame, optional
        Slopes of the empty chamber for the "parallel" background method

    Returns
    -------
    corrected : DataFrame
        Background-corrected slope table
    records : DataFrame
        MetabolicRateRecord table

    Raises
    ------
    MalformedTimeseries, MissingBackgroundTest, InvalidBackgroundTest,
    InvalidChamberGeometry
        Fatal for this chamber only
    """
    config = experiment.config
    chamber_id = chamber.chamber_id
    slopes = chamber_slopes(experiment.measurements, config, chamber_id, report)

    method = config.background_method
    if method == "parallel":
        if blank_slopes is None:
            raise MissingBackgroundTest(
                f"Chamber {chamber_id}: no slopes for blank chamber {config.blank_chamber}"
            )
        corrected = background.correct_parallel(slopes, blank_slopes)
    else:
        pre = post = None
        if method != "none":
            pre = _control_rate(
                experiment.pre_test, config, chamber_id, "pre_test", report
            )
            post = _control_rate(
                experiment.post_test, config, chamber_id, "post_test", report
            )
        bg = background.build_background(chamber_id, method, pre=pre, post=post)
        corrected = background.correct_slopes(slopes, bg)

    records = calculate_mr(
        corrected,
        chamber,
        do_unit=config.do_unit,
        salinity=config.salinity,
        time_factor=config.time_factor,
    )
    return corrected, records


def _concat(frames, columns):
    frames = [f for f in frames if len(f)]
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)


def run_experiment(experiment):
    """
    Process every chamber of an experiment and summarize the results.

    A fatal error in one chamber is logged and recorded in the exclusion
    report; the remaining chambers are still processed.

    Returns
    -------
    Results
    """
    config = experiment.config
    report = ExclusionReport()

    blank_slopes = None
    if config.background_method == "parallel":
        try:
            blank_slopes = chamber_slopes(
                experiment.measurements,
                config,
                config.blank_chamber,
                report.for_source("blank"),
            )
        except MalformedTimeseries as err:
            log.error(f"Blank chamber {config.blank_chamber}: {err}")
            report.for_source("blank").add(
                config.blank_chamber, None, None, type(err).__name__, str(err)
            )

    all_slopes, all_records = [], []
    for chamber in experiment.chambers:
        try:
            slopes, records = process_chamber(experiment, chamber, report, blank_slopes)
        except FATAL_ERRORS as err:
            log.error(f"Chamber {chamber.chamber_id} failed: {err}")
            report.add(chamber.chamber_id, None, None, type(err).__name__, str(err))
            continue
        all_slopes.append(slopes)
        all_records.append(records)

    slopes = _concat(all_slopes, SLOPE_COLUMNS)
    records = _concat(all_records, MR_COLUMNS)
    summary, filtered = extraction.summarize(
        records,
        trim_percent=config.trim_percent,
        smr_method=config.smr_method,
        p=config.smr_quantile,
        G=config.smr_components,
        seed=config.mixture_seed,
        selection=config.selection_method,
        n=config.selection_n,
        percent=config.selection_percent,
    )

    if len(report):
        causes = ", ".join(f"{k}: {v}" for k, v in report.causes().items())
        log.warning(f"{len(report)} exclusions ({causes})")
    return Results(slopes, records, summary, filtered, report)


def write_results(results, outdir):
    """
    Write slope, record, summary and exclusion tables to `outdir`.

    Returns
    -------
    dict
        {table name: written path}
    """
    outdir = common.validate_dir(outdir, create=True)
    tables = {
        "slopes": results.slopes,
        "records": results.records,
        "summary": results.summary,
        "exclusions": results.report.to_frame(),
    }
    return {
        name: io.write_table(table, Path(outdir, cfg.output_files[name]))
        for name, table in tables.items()
    }


def load_experiment(cfgfile):
    """
    Build an Experiment from a YAML configuration file.

    Input file paths in the configuration are relative to the file's folder.
    """
    cfgfile = common.validate_file(cfgfile)
    settings = from_user_config(common.load_user_config(cfgfile))
    reader = io.get_reader(settings.reader, **settings.reader_options)

    def _read(key):
        if not settings.files.get(key):
            return None
        return reader.read(common.validate_file(cfgfile.parent / settings.files[key]))

    return Experiment(
        config=settings.config,
        chambers=settings.chambers,
        measurements=_read("measure"),
        pre_test=_read("pre_test"),
        post_test=_read("post_test"),
    )
