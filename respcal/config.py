# package defaults, overridden per experiment by the user YAML file
#
# Phase types in cycle order
phase_types = ["flush", "wait", "measure"]

# Single letter phase labels written by logger software
phase_labels = {"F": "flush", "W": "wait", "M": "measure"}

# List of directories for I/O purposes
dirs = {
    "raw": "data/raw/",
    "background": "data/background/",
    "results": "data/results/",
    "logs": "data/logs/",
}

# Column names of the common RawSample table
column = {
    "chamber": "chamber_id",
    "time": "timestamp",
    "oxygen": "oxygen",
    "temp": "temperature",
    "phase": "phase",
}

# Time normalizer
duplicate_keep = "last"  # "first" or "last"
backstep_tolerance = 5  # seconds a log may jump backward before it is malformed

# Phase segmenter
truncation_tolerance = 0.90  # minimum fraction of the declared phase length

# Slope extractor
r2_threshold = 0.95
mixture_max_components = 4
mixture_seed = 0
residual_percentile = 95

# Background corrector
background_method = "linear"
background_aggregate = "mean"  # mean, median or delta (pooled regression)
background_init_points = 30  # readings averaged for the initial O2 of a test

# Metabolic rate calculator
do_unit = "mg/L"
body_density = 1.0  # kg/L
time_factor = 3600  # seconds per hour

# QC/extraction
trim_percent = 0
selection_method = "all"  # records used for the summary: all, min, max, lower_tail, upper_tail
selection_n = 1
selection_percent = 10
smr_method = "quantile"
smr_quantile = 0.2
smr_components = 4

# Output file names
output_files = {
    "slopes": "slopes.csv",
    "records": "records.csv",
    "summary": "summary.csv",
    "exclusions": "exclusions.csv",
}
