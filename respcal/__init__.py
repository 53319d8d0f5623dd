"""
Library and command line tools for computing metabolic rates of aquatic
organisms from intermittent-flow respirometry logs.
"""

import logging
import pathlib
from importlib import resources
from importlib.metadata import PackageNotFoundError, version

log = logging.getLogger(__name__)

try:
    __version__ = version(__name__)
except PackageNotFoundError:
    # package is not installed
    pass


def get_respcal_config():
    """
    Package defaults from respcal/config.py as attributes of a class, e.g.
    `get_respcal_config().r2_threshold`.
    """
    defaults_file = pathlib.Path(resources.files("respcal")) / "config.py"
    namespace = {}
    try:
        code = compile(defaults_file.read_bytes(), str(defaults_file), "exec")
        exec(code, namespace)
    except OSError:
        log.error(f"Cannot read package defaults from {defaults_file}")

    settings = {k: v for k, v in namespace.items() if not k.startswith("__")}
    return type("config", (object,), settings)
