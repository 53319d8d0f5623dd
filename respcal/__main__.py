import logging

import click

from . import get_respcal_config
from .common import make_data_dirs

## logging settings
# terminal output
stream = logging.StreamHandler()
stream.setLevel(logging.WARNING)
stream.addFilter(logging.Filter("respcal"))  # filter out msgs from other modules

# respcal.log output
logfile_FORMAT = "%(asctime)s | %(funcName)s |  %(levelname)s: %(message)s"
logfile = logging.FileHandler("respcal.log", delay=True)
logfile.setLevel(logging.NOTSET)
logfile.addFilter(logging.Filter("respcal"))  # filter out msgs from other modules
logfile.setFormatter(logging.Formatter(logfile_FORMAT))

# global configs
FORMAT = "%(funcName)s: %(levelname)s: %(message)s"
logging.basicConfig(
    level=logging.NOTSET,
    format=FORMAT,
    datefmt="[%X]",
    handlers=[stream, logfile],
)

log = logging.getLogger(__name__)
cfg = get_respcal_config()


@click.group()
@click.option("--debug/--no-debug", default=False)
def cli(debug):
    """The respcal command computes metabolic rates from respirometry logs

    Run 'respcal init' to build the data folders, then 'respcal process'
    with an experiment configuration file.
    """
    if debug:
        click.echo("Debug mode on (displaying all levels)")
        stream.setLevel(logging.NOTSET)
    else:
        click.echo("Debug mode off (displaying 'WARNING' and higher levels)")
        stream.setLevel(logging.WARNING)


@cli.command()
def init():
    """Setup data folder with appropriate subfolders"""

    log.info(f"Building default data/ directories: \n {*cfg.dirs.keys(),}")
    make_data_dirs()


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "-o",
    "--outdir",
    type=click.Path(file_okay=False),
    default=cfg.dirs["results"],
    show_default=True,
    help="Folder for the output tables",
)
def process(config, outdir):
    """Run the metabolic rate pipeline for an experiment CONFIG file"""
    from .pipeline import load_experiment, run_experiment, write_results

    log.info(f"Starting processing run for {config}")
    experiment = load_experiment(config)
    results = run_experiment(experiment)
    paths = write_results(results, outdir)

    click.echo(
        f"{len(results.records)} metabolic rate records from "
        f"{results.summary.shape[0]} chamber(s), {len(results.report)} exclusions"
    )
    for name, path in paths.items():
        click.echo(f"  {name}: {path}")


@cli.command()
def readers():
    """List available logger formats"""
    from .io import READERS

    for name, reader in READERS.items():
        doc = (reader.__doc__ or "").strip().splitlines()
        click.echo(f"{name}: {doc[0] if doc else ''}")


if __name__ == "__main__":
    cli()
