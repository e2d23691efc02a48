"""pkgreconcile: reconcile NuGet package versions across many projects."""

import json
import logging
import os
import sys

from args import parse_args
from cli_config import ConfigError, load_config
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes
from reconcile import Reconciler, create_cache, create_resolver, load_projects
from versioning.resolvers import ResolutionCancelled

logger = logging.getLogger(__name__)


def setup_logging(args) -> None:
    """Configure logging from --loglevel and --logfile."""
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.LOG_LEVEL_ENV] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def write_report(report: dict, output) -> None:
    """Write the JSON report to ``output`` or stdout."""
    text = json.dumps(report, indent=2, sort_keys=False)
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        logger.info("Report written to %s", output)
    else:
        sys.stdout.write(text + "\n")


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug("CLI start", extra=extra_context(event="function_entry", component="cli", action="main"))

    try:
        config = load_config(getattr(args, "CONFIG", None), args=args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)

    try:
        projects = load_projects(args.INPUT)
    except FileNotFoundError as exc:
        logger.error("File not found: %s, aborting", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)
    except (OSError, ValueError) as exc:
        logger.error("Could not read project file %s: %s, aborting", args.INPUT, exc)
        sys.exit(ExitCodes.FILE_ERROR.value)

    logger.info("Loaded %d projects from %s", len(projects), args.INPUT)

    cache = create_cache(config)
    try:
        resolver = create_resolver(config, cache, search_dir=os.path.dirname(os.path.abspath(args.INPUT)))
        reconciler = Reconciler.from_config(config, resolver)
        report = reconciler.run(projects, include_assemblies=getattr(args, "ASSEMBLIES", False))
    except ResolutionCancelled:
        logger.error("Resolution cancelled")
        sys.exit(ExitCodes.CONNECTION_ERROR.value)
    finally:
        if cache is not None:
            cache.shutdown()

    try:
        write_report(report.as_dict(), getattr(args, "OUTPUT", None))
    except OSError as exc:
        logger.error("Could not write report: %s", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)

    if not report.registry_reachable:
        logger.error("No package source could be reached")
        sys.exit(ExitCodes.CONNECTION_ERROR.value)

    if report.warnings:
        for warning in report.warnings:
            logger.warning(warning)
        if args.ERROR_ON_WARNINGS:
            logger.error("Warnings present, exiting with non-zero status code.")
            sys.exit(ExitCodes.EXIT_WARNINGS.value)

    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
