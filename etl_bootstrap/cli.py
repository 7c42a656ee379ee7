"""
etl-bootstrap command line entry point.

Usage:
    etl-bootstrap                      # full setup using ~/.config/etl_bootstrap/bootstrap.ini
    etl-bootstrap --config other.ini   # alternative configuration file
    etl-bootstrap --verbose            # debug logging

The configuration file is created with defaults on first run.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .bootstrap import EnvironmentBootstrapper
from .config import load_or_create_config
from .errors import BootstrapError, ConfigError, FilesystemError

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"


def configure_logging(level: str = "INFO", logfile: Optional[Path] = None, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if logfile:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(logfile), encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def report_failure(error: BootstrapError) -> None:
    log = logging.getLogger(__name__)
    log.error("%s", error)
    if error.remediation:
        log.error("To fix this manually:\n%s", error.remediation)


def main(argv=None) -> int:
    p = argparse.ArgumentParser(
        description="Set up a reporting workstation: toolchain, ETL checkout, script folders, keys, and runtimes."
    )
    p.add_argument("--config", type=Path, default=None, help="Configuration file (created with defaults if missing)")
    p.add_argument("--verbose", action="store_true", help="Enable verbose (debug) logging")
    args = p.parse_args(argv)

    # Console only until the configuration names the log file
    configure_logging(verbose=args.verbose)
    try:
        config = load_or_create_config(args.config)
        configure_logging(config.log_level, config.log_file, args.verbose)
    except ConfigError as e:
        report_failure(e)
        return e.exit_code
    except OSError as e:
        report_failure(ConfigError(
            f"Cannot write the configuration or log file: {e}",
            "Check that your home directory is writable, or pass --config with a writable path.",
        ))
        return ConfigError.exit_code

    log = logging.getLogger(__name__)
    log.info("Using configuration %s", config.source)

    try:
        EnvironmentBootstrapper(config).execute()
    except BootstrapError as e:
        report_failure(e)
        return e.exit_code
    except OSError as e:
        report_failure(FilesystemError(
            f"Unexpected filesystem error: {e}",
            "Check the ownership and permissions of the path above, then run the setup again.",
        ))
        return FilesystemError.exit_code
    except KeyboardInterrupt:
        log.error("Interrupted. Destination folders may be partially written; run the setup again.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
