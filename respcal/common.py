"""
User configuration loading and path checks shared by the respcal modules.
"""
import logging
from pathlib import Path

import yaml
from munch import munchify

from respcal import get_respcal_config

log = logging.getLogger(__name__)
cfg = get_respcal_config()


# Configuration
def load_user_config(cfgfile):
    """
    Load user-defined parameters from a configuration file. Return a Munch
    object (dictionary).

    Parameters
    ----------
    cfgfile : str or Path-like
        Path to the configuration file.

    Returns
    -------
    Munch object
    """
    cfgfile = validate_file(cfgfile)
    with open(cfgfile, "r") as f:
        user_cfg = yaml.safe_load(f)
        if user_cfg is None:
            log.warning(f"Configuration file {cfgfile} is empty")
            user_cfg = {}
        return munchify(user_cfg)


# Input Validation
def _existing(p, kind, is_kind):
    if is_kind(p):
        return p
    if p.exists():
        raise FileExistsError(f"{p} is in the way of a {kind}")
    raise FileNotFoundError(f"No {kind} at {p}")


def validate_dir(pathname, create=False):
    """
    Return `pathname` as a Path once it is known to be a directory.

    Parameters
    ----------
    pathname : str or PathLike
        Directory to check
    create : bool, optional
        Make the directory (and its parents) when missing

    Raises
    ------
    FileExistsError
        If something other than a directory sits at `pathname`
    FileNotFoundError
        If the directory is missing and `create` is false
    """
    p = Path(pathname)
    if create:
        p.mkdir(parents=True, exist_ok=True)
    return _existing(p, "directory", Path.is_dir)


def validate_file(pathname, create=False):
    """
    Return `pathname` as a Path once it is known to be a regular file.

    With `create`, a missing file is touched (parent folders included) so
    writers can rely on the path. Raises like validate_dir.
    """
    p = Path(pathname)
    if create and not p.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
        p.touch()
    return _existing(p, "file", Path.is_file)


def make_data_dirs(base="."):
    """
    Build the default data folders (raw logs, background tests, results).

    Raises FileExistsError if a folder is already present.
    """
    created = []
    for sub_dir in cfg.dirs.values():
        path = Path(base, sub_dir)
        path.mkdir(parents=True)
        created.append(path)
    return created
