"""
The ``deplock`` command.

``deplock`` takes a set of Python requirements and produces one installation
plan that is valid for every interpreter version and platform it targets.
The group defined here only handles what every subcommand shares: the
``[deplock]`` / ``[tool.deplock]`` configuration, verbosity and color.
The resolution itself lives in :mod:`deplock.commands.resolve`.

Configuration is looked up in this order: ``--config`` (or the
``DEPLOCK_CONFIG`` variable), then ``deplock.toml`` in the working directory,
then ``pyproject.toml``. Options given on the command line win over the file.

Exit codes returned by :func:`main`:

====  ==========================================================
0     A plan was produced for every target environment
1     No plan exists, or the inputs or metadata were unusable
2     The command line itself was wrong
130   Resolution was interrupted
====  ==========================================================
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from deplock.config import load_config
from deplock.__version__ import __version__
from deplock.context import DeplockContext
from deplock.exceptions import ConfigError, DeplockError, ResolutionCancelledError
from deplock.utils.logger import get_logger, setup_logging
from deplock.utils.console import print_error, print_warning, reconfigure_console

logger = get_logger("cli")

#: Log level per ``-v`` count; extra flags stay at DEBUG.
_LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-C",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read settings from this deplock.toml or pyproject.toml.",
    envvar="DEPLOCK_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Report solver progress (-v) or every decision and conflict (-vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Colorize tables and conflict reports.",
    envvar="DEPLOCK_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="deplock",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """Lock Python requirements for several interpreters and platforms at once.

    deplock runs a PubGrub solver over package metadata and splits the
    search wherever an environment marker makes a requirement apply to
    only some targets. The result is a single plan whose entries carry the
    markers they are installed under, or a derivation explaining why no
    plan exists.

    \b
    Examples:
      deplock resolve "flask>=2" requests
      deplock resolve -r requirements.txt -c constraints.txt --platform linux
      deplock resolve -r requirements.txt --python ">=3.9,<3.13" --format json
      deplock -vv resolve --index-file index.json a

    Settings not given on the command line come from the [deplock] table
    of deplock.toml or the [tool.deplock] table of pyproject.toml.
    """
    _configure_logging(verbose)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    deplock_ctx = DeplockContext()
    deplock_ctx.config_path = config or loaded_config.source_path
    deplock_ctx.config = loaded_config
    deplock_ctx.color = color
    deplock_ctx.verbose = verbose
    ctx.obj = deplock_ctx

    # rich and click both honor NO_COLOR.
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    logger.debug("deplock v%s", __version__)
    if deplock_ctx.config_path:
        logger.debug(
            "Settings from %s: %s",
            deplock_ctx.config_path,
            loaded_config.to_log_dict(),
        )
    else:
        logger.debug("No configuration file found, using defaults")


def _configure_logging(verbose: int) -> None:
    level = _LOG_LEVELS[min(max(verbose, 0), len(_LOG_LEVELS) - 1)]
    setup_logging(level=level)
    logger.debug("Logging at %s level", logging.getLevelName(level))


from deplock.commands.resolve import resolve  # noqa: E402

cli.add_command(resolve)


def main() -> int:
    """Run the ``deplock`` command and map its outcome to an exit code.

    Click usage errors keep Click's own code. Every :class:`DeplockError`
    (unsatisfiable requirements, unreachable indexes, bad configuration)
    is printed without a traceback, which ``-vv`` adds to the log.
    """
    try:
        cli(standalone_mode=False)
        return 0

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except (click.exceptions.Abort, KeyboardInterrupt, ResolutionCancelledError):
        print_warning("\nResolution interrupted")
        return 130

    except DeplockError as exc:
        print_error(str(exc))
        logger.debug("%s details: %s", type(exc).__name__, exc.details or "<none>", exc_info=True)
        return 1

    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in deplock")
        return 1


if __name__ == "__main__":
    sys.exit(main())
