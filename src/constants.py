"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONNECTION_ERROR = 2
    FILE_ERROR = 1
    EXIT_WARNINGS = 3


class CacheKind(Enum):
    """Kinds of facts held by the version cache."""

    VERSION = "version"
    VERSION_LIST = "all"
    RESOLUTION = "resolution"
    DEPENDENCY = "deps"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NUGET_V3 = "https://api.nuget.org/v3/index.json"
    REGISTRY_NAME_NUGET = "nuget.org"
    NUGET_RESOURCE_FLAT_CONTAINER = "PackageBaseAddress/3.0.0"
    NUGET_RESOURCE_REGISTRATION = "RegistrationsBaseUrl/3.6.0"
    NUGET_CONFIG_FILE = "nuget.config"
    NUGET_PACKAGES_ENV = "NUGET_PACKAGES"

    WILDCARD_VERSION = "*"
    ANY_FRAMEWORK = "any"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "PKGRECONCILE_LOG_LEVEL"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3

    CACHE_TTL_MINUTES = 60
    CACHE_SWEEP_INTERVAL_SEC = 300
    CACHE_BUCKETS = 16

    MAX_CONCURRENCY = 8

    CONFIG_FILE_NAMES = ["pkgreconcile.yml", "pkgreconcile.yaml"]
    CONFIG_USER_DIR = "~/.config/pkgreconcile"
    ENV_CACHE_TTL = "PKGRECONCILE_CACHE_TTL"
    ENV_CACHE_DISABLED = "PKGRECONCILE_CACHE_DISABLED"
    ENV_MAX_CONCURRENCY = "PKGRECONCILE_MAX_CONCURRENCY"
