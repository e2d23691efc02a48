"""Argument parsing functionality for pkgreconcile."""

import argparse

from versioning.models import ConflictResolutionStrategy


def build_parser():
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pkgreconcile",
        description=(
            "pkgreconcile - NuGet package version resolution and conflict reconciliation across projects"
        ),
        add_help=True,
    )

    parser.add_argument("-i", "--input",
                        dest="INPUT",
                        help="JSON file mapping project paths to their package references",
                        action="store", type=str,
                        required=True)
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Path to the JSON report (default: stdout)",
                        action="store",
                        type=str)
    parser.add_argument("-s", "--strategy",
                        dest="STRATEGY",
                        help="Conflict resolution strategy (default: UseHighest)",
                        action="store",
                        type=str,
                        choices=[s.value for s in ConflictResolutionStrategy])
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to a YAML or JSON configuration file",
                        action="store",
                        type=str)
    parser.add_argument("--nuget-config",
                        dest="NUGET_CONFIG",
                        help="Path to a nuget.config file with package sources",
                        action="store",
                        type=str)
    parser.add_argument("--packages-path",
                        dest="PACKAGES_PATH",
                        help="Solution packages folder used to list package assemblies",
                        action="store",
                        type=str)
    parser.add_argument("--offline",
                        dest="OFFLINE",
                        help="Use the built-in offline version table instead of package sources",
                        action="store_true")
    parser.add_argument("--resolve-wildcards",
                        dest="RESOLVE_WILDCARDS",
                        help="Resolve '*' and floating versions to the latest stable version before reconciling",
                        action="store_true")
    parser.add_argument("--registry-dependencies",
                        dest="REGISTRY_DEPENDENCIES",
                        help="Use registry-reported dependencies when classifying transitive packages",
                        action="store_true")
    parser.add_argument("--assemblies",
                        dest="ASSEMBLIES",
                        help="Include the assemblies provided by each project's packages in the report",
                        action="store_true")
    parser.add_argument("--no-cache",
                        dest="NO_CACHE",
                        help="Disable the in-memory version cache",
                        action="store_true")
    parser.add_argument("-j", "--max-concurrency",
                        dest="MAX_CONCURRENCY",
                        help="Maximum number of projects processed in parallel",
                        action="store",
                        type=int)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("--error-on-warnings",
                        dest="ERROR_ON_WARNINGS",
                        help="Exit with a non-zero status code if warnings are present.",
                        action="store_true")
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
