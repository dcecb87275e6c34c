"""
Centralized constants for deplock.

This module defines immutable configuration values used across deplock,
including network settings, resolver defaults, known target platforms,
and logging formats. All values are intended to be treated as read-only.
"""

from typing import Final, Mapping

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "deplock/{version}"

# ---------------------------------------------------------------------------
# PyPI endpoints
# ---------------------------------------------------------------------------

#: Base URL for the PyPI JSON API (project level).
PYPI_JSON_API: Final[str] = "https://pypi.org/pypi/{package}/json"

#: PyPI JSON API for a single release.
PYPI_RELEASE_JSON_API: Final[str] = "https://pypi.org/pypi/{package}/{version}/json"

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

# ---------------------------------------------------------------------------
# Resolver defaults
# ---------------------------------------------------------------------------

#: Name given to the virtual root package when the manifest has none.
DEFAULT_ROOT_NAME: Final[str] = "root"

#: Default upper bound on in-flight metadata fetches.
DEFAULT_CONCURRENT_LIMIT: Final[int] = 10

#: Default resolution strategy.
DEFAULT_RESOLUTION_MODE: Final[str] = "highest"

#: Default pre-release policy.
DEFAULT_PRERELEASE_MODE: Final[str] = "if-necessary-or-explicit"

#: Default interpreter range targeted when nothing is configured.
DEFAULT_REQUIRES_PYTHON: Final[str] = ">=3.9"

#: Default target platforms when nothing is configured.
DEFAULT_PLATFORMS: Final[tuple] = ("linux", "macos", "windows")

# ---------------------------------------------------------------------------
# Known target platforms
# ---------------------------------------------------------------------------

#: Marker values for each platform tag accepted by ``--platform`` and the
#: ``platforms`` configuration key.
KNOWN_PLATFORMS: Final[Mapping[str, Mapping[str, str]]] = {
    "linux": {
        "sys_platform": "linux",
        "platform_system": "Linux",
        "os_name": "posix",
        "platform_machine": "x86_64",
    },
    "linux-aarch64": {
        "sys_platform": "linux",
        "platform_system": "Linux",
        "os_name": "posix",
        "platform_machine": "aarch64",
    },
    "macos": {
        "sys_platform": "darwin",
        "platform_system": "Darwin",
        "os_name": "posix",
        "platform_machine": "arm64",
    },
    "macos-x86_64": {
        "sys_platform": "darwin",
        "platform_system": "Darwin",
        "os_name": "posix",
        "platform_machine": "x86_64",
    },
    "windows": {
        "sys_platform": "win32",
        "platform_system": "Windows",
        "os_name": "nt",
        "platform_machine": "AMD64",
    },
}

#: Interpreter implementation assumed for every platform.
DEFAULT_IMPLEMENTATION: Final[Mapping[str, str]] = {
    "implementation_name": "cpython",
    "platform_python_implementation": "CPython",
}

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
