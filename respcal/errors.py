"""
Error kinds raised or recorded while processing respirometry data.

Fatal kinds (MalformedTimeseries, MissingBackgroundTest,
InvalidBackgroundTest, InvalidChamberGeometry) abort processing of a single
chamber. Recoverable kinds (InvalidPhase, RegressionQualityBelowThreshold)
exclude a single phase and are recorded in the exclusion report.
"""


class RespcalError(Exception):
    pass


class MalformedTimeseries(RespcalError):
    """Clock anomaly that cannot be repaired by sorting and gap filling."""


class InvalidPhase(RespcalError):
    """Degenerate or truncated phase."""


class MissingBackgroundTest(RespcalError):
    """Background correction requested without the test it needs."""


class InvalidBackgroundTest(RespcalError):
    """Background test rates that the chosen correction method cannot combine."""


class InvalidChamberGeometry(RespcalError):
    """Chamber volume does not exceed the animal volume, or bad animal mass."""


class RegressionQualityBelowThreshold(RespcalError):
    """Slope fit quality below the configured threshold."""
