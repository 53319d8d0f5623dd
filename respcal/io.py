"""
Readers for respirometry logger exports and writers for result tables.

Every reader produces the common RawSample table (one row per chamber and
timestamp) so the pipeline never sees vendor column layouts.
"""

import logging
from pathlib import Path
from typing import Union

import pandas as pd

from respcal import get_respcal_config

cfg = get_respcal_config()
log = logging.getLogger(__name__)

CHAMBER = cfg.column["chamber"]
TIME = cfg.column["time"]
OXYGEN = cfg.column["oxygen"]
TEMP = cfg.column["temp"]
PHASE = cfg.column["phase"]

_DATE_FORMATS = {
    "DMY": "%d/%m/%Y",
    "MDY": "%m/%d/%Y",
    "YMD": "%Y/%m/%d",
}


def parse_datetime(values, date_format="DMY"):
    """
    Parse logger date-time strings.

    Accepts "/", "." or "-" as date separators, a space, "/" or "T" between
    date and time, and optional AM/PM suffixes (e.g. "19/08/2016/18:47:20",
    "08-19-2016 6:47:20 PM").

    Parameters
    ----------
    values : array-like of str
        Date-time strings
    date_format : str, optional
        Order of the date fields: "DMY", "MDY" or "YMD"

    Returns
    -------
    Series of datetime64
        Unparseable entries are NaT
    """
    if date_format not in _DATE_FORMATS:
        raise ValueError(f"date_format must be one of {list(_DATE_FORMATS)}")
    s = pd.Series(values, dtype=str).str.strip()
    parts = s.str.extract(r"^(\d+[./-]\d+[./-]\d+)[/ T]+(.*)$")
    date = parts[0].str.replace(r"[.-]", "/", regex=True)
    clock = parts[1].str.strip()

    if clock.str.contains(r"[AaPp][Mm]$", na=False).any():
        time_format = "%I:%M:%S %p"
    else:
        time_format = "%H:%M:%S"
    fmt = f"{_DATE_FORMATS[date_format]} {time_format}"
    return pd.to_datetime(date + " " + clock, format=fmt, errors="coerce")


def to_numeric(values):
    """Convert readings to float, accepting decimal commas."""
    s = pd.Series(values)
    if not pd.api.types.is_numeric_dtype(s):
        s = s.astype(str).str.replace(",", ".", regex=False).str.strip()
    return pd.to_numeric(s, errors="coerce")


class TabularReader:
    """
    Base class for logger readers.

    Subclasses set `sep` and `skiprows` and implement `to_samples`, mapping the
    raw (header-less) table to a RawSample table.
    """

    name = None
    sep = ","
    skiprows = 0
    header = None

    def __init__(self, date_format="DMY", n_chambers=None, **options):
        self.date_format = date_format
        self.n_chambers = n_chambers
        self.options = options

    def load(self, path: Union[str, Path]) -> pd.DataFrame:
        return pd.read_csv(
            path,
            sep=self.sep,
            skiprows=self.skiprows,
            header=self.header,
            dtype=str,
            skipinitialspace=True,
        )

    def read(self, path: Union[str, Path]) -> pd.DataFrame:
        """Read a logger export into a RawSample table."""
        log.info(f"Reading {path} with {self.name} reader")
        raw = self.load(path)
        samples = self.to_samples(raw)
        log.info(
            f"Loaded {len(samples)} samples for {samples[CHAMBER].nunique()} chamber(s)"
        )
        return samples

    def to_samples(self, raw: pd.DataFrame) -> pd.DataFrame:
        raise NotImplementedError

    def _melt(self, timestamps, phases, temp_cols, ox_cols, raw):
        """Stack per-chamber column pairs into a long table."""
        frames = []
        for i, (t_col, o_col) in enumerate(zip(temp_cols, ox_cols), start=1):
            frame = pd.DataFrame(
                {
                    CHAMBER: f"CH{i}",
                    TIME: timestamps.to_numpy(),
                    OXYGEN: to_numeric(raw[o_col]).to_numpy(),
                    TEMP: to_numeric(raw[t_col]).to_numpy(),
                }
            )
            if phases is not None:
                frame[PHASE] = phases.to_numpy()
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)


class FishRespReader(TabularReader):
    """
    Tab-separated "FishResp" layout: Date&Time, Phase, then Temp.N and Ox.N
    column pairs per chamber.
    """

    name = "fishresp"
    sep = "\t"
    skiprows = 1

    def to_samples(self, raw):
        n = self.n_chambers or (raw.shape[1] - 2) // 2
        temp_cols = [raw.columns[2 + 2 * i] for i in range(n)]
        ox_cols = [raw.columns[3 + 2 * i] for i in range(n)]
        timestamps = parse_datetime(raw[raw.columns[0]], self.date_format)
        return self._melt(timestamps, raw[raw.columns[1]], temp_cols, ox_cols, raw)


class AutoRespReader(TabularReader):
    """
    Loligo AutoResp export: 38 header lines, then date-time, phase and a
    (temperature, oxygen) pair every third column from the sixth column on.
    """

    name = "autoresp"
    sep = "\t"
    skiprows = 38

    def to_samples(self, raw):
        n = self.n_chambers or min(8, (raw.shape[1] - 4) // 3)
        temp_cols = [raw.columns[5 + 3 * i] for i in range(n)]
        ox_cols = [raw.columns[6 + 3 * i] for i in range(n)]
        timestamps = parse_datetime(raw[raw.columns[0]], self.date_format)
        return self._melt(timestamps, raw[raw.columns[1]], temp_cols, ox_cols, raw)


class QboxAquaReader(TabularReader):
    """
    Qubit Q-box Aqua export (single chamber): elapsed seconds in the first
    column, temperature in the fourth, flush valve state in the ninth (1 flush,
    0 measure) and oxygen in the last. Timestamps are offset from
    `set_date_time`, the time the log was started.
    """

    name = "qboxaqua"
    sep = ","
    skiprows = 2

    def __init__(self, set_date_time=None, **kwargs):
        super().__init__(**kwargs)
        if set_date_time is None:
            raise ValueError("QboxAqua logs need set_date_time")
        self.set_date_time = pd.Timestamp(set_date_time)

    def to_samples(self, raw):
        elapsed = to_numeric(raw[raw.columns[0]])
        timestamps = self.set_date_time + pd.to_timedelta(elapsed, unit="s")
        valve = to_numeric(raw[raw.columns[8]])
        phases = valve.map({1.0: "F", 0.0: "M"})
        return self._melt(
            timestamps, phases, [raw.columns[3]], [raw.columns[-1]], raw
        )


class LongFormatReader(TabularReader):
    """
    Delimited file already in long format with a header row. Column names are
    mapped through `columns` ({chamber_id: ..., timestamp: ..., oxygen: ...,
    temperature: ..., phase: ...}).
    """

    name = "long"
    header = 0

    def __init__(self, columns=None, sep=",", **kwargs):
        super().__init__(**kwargs)
        self.columns = dict(columns or {})
        self.sep = sep

    def to_samples(self, raw):
        rename = {v: k for k, v in self.columns.items()}
        df = raw.rename(columns=rename)
        missing = {CHAMBER, TIME, OXYGEN, TEMP} - set(df.columns)
        if missing:
            raise KeyError(f"Input is missing columns {sorted(missing)}")

        samples = pd.DataFrame(
            {
                CHAMBER: df[CHAMBER].astype(str).str.strip(),
                TIME: self._timestamps(df[TIME]),
                OXYGEN: to_numeric(df[OXYGEN]),
                TEMP: to_numeric(df[TEMP]),
            }
        )
        if PHASE in df.columns:
            samples[PHASE] = df[PHASE]
        return samples

    def _timestamps(self, values):
        parsed = parse_datetime(values, self.date_format)
        if parsed.isna().all():
            # ISO 8601 and other formats pandas infers on its own
            parsed = pd.to_datetime(values, errors="coerce")
        return parsed


READERS = {
    reader.name: reader
    for reader in (LongFormatReader, FishRespReader, AutoRespReader, QboxAquaReader)
}


def get_reader(name, **options):
    """
    Instantiate a reader by name.

    Parameters
    ----------
    name : str
        One of READERS ("long", "fishresp", "autoresp", "qboxaqua")
    **options
        Passed to the reader (date_format, n_chambers, columns, ...)
    """
    try:
        reader_class = READERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown logger '{name}', expected one of {list(READERS)}")
    return reader_class(**options)


def write_table(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """
    Write a result table as comma-separated (.csv) or tab-separated (.txt).
    """
    path = Path(path)
    if path.suffix == ".csv":
        df.to_csv(path, index=False)
    elif path.suffix == ".txt":
        df.to_csv(path, index=False, sep="\t")
    else:
        raise ValueError(f"Unsupported output format '{path.suffix}', use .csv or .txt")
    log.info(f"Wrote {len(df)} rows to {path}")
    return path
