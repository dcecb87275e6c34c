"""Configuration file loader for deplock.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``deplock.toml``: settings under ``[deplock]`` table
- ``pyproject.toml``: settings under ``[tool.deplock]`` table

Discovery order:

1. Explicit path from ``--config`` or ``DEPLOCK_CONFIG``
2. ``deplock.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.deplock]`` section

Configuration precedence: defaults < config file < CLI args.

Typical usage::

    config = load_config()  # Auto-discover
    config = load_config(Path("custom.toml"))  # Explicit path

Example (``deplock.toml``)::

    [deplock]
    resolution_mode = "lowest-direct"
    requires_python = ">=3.10"
    platforms = ["linux", "windows"]
"""

from __future__ import annotations

import tomli as tomllib
from pathlib import Path
from datetime import date
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from deplock.exceptions import ConfigError
from deplock.utils.logger import get_logger
from deplock.models.manifest import (
    DependencyMode,
    ExcludeNewer,
    PrereleaseMode,
    ResolutionMode,
)
from deplock.constants import (
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_PLATFORMS,
    DEFAULT_PRERELEASE_MODE,
    DEFAULT_REQUIRES_PYTHON,
    DEFAULT_RESOLUTION_MODE,
    KNOWN_PLATFORMS,
)

logger = get_logger("config")


@dataclass
class DeplockConfig:
    """Parsed and validated deplock configuration.

    All fields have defaults, so empty config files are valid.

    Attributes:
        resolution_mode: Version ordering policy.
        prerelease_mode: Pre-release admission policy.
        concurrent_limit: Upper bound on in-flight metadata fetches.
        requires_python: Interpreter range to resolve for.
        platforms: Platform tags to resolve for.
        extras: Project extras to activate.
        dependency_mode: Follow transitive requirements or only direct ones.
        exclude_newer: Ignore releases uploaded at or after this cutoff.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    resolution_mode: ResolutionMode = ResolutionMode(DEFAULT_RESOLUTION_MODE)
    prerelease_mode: PrereleaseMode = PrereleaseMode(DEFAULT_PRERELEASE_MODE)
    concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT
    requires_python: str = DEFAULT_REQUIRES_PYTHON
    platforms: List[str] = field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    extras: List[str] = field(default_factory=list)
    dependency_mode: DependencyMode = DependencyMode.TRANSITIVE
    exclude_newer: Optional[ExcludeNewer] = None

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging."""
        return {
            "resolution_mode": self.resolution_mode.value,
            "prerelease_mode": self.prerelease_mode.value,
            "concurrent_limit": self.concurrent_limit,
            "requires_python": self.requires_python,
            "platforms": list(self.platforms),
            "extras": list(self.extras),
            "dependency_mode": self.dependency_mode.value,
            "exclude_newer": str(self.exclude_newer) if self.exclude_newer else None,
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path`` (from ``--config`` or ``DEPLOCK_CONFIG``)
    2. ``deplock.toml`` in current directory
    3. ``pyproject.toml`` with ``[tool.deplock]`` section in current directory

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    deplock_toml = cwd / "deplock.toml"
    if deplock_toml.is_file():
        logger.debug("Found deplock.toml: %s", deplock_toml)
        return deplock_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_deplock_section(pyproject_toml):
        logger.debug("Found [tool.deplock] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_deplock_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.deplock]`` section.

    A pyproject.toml that cannot be parsed is treated as having none, so an
    unrelated broken file never blocks a run.
    """
    try:
        raw = _read_toml(path)
    except ConfigError:
        return False
    return "deplock" in raw.get("tool", {})


def load_config(config_path: Optional[Path] = None) -> DeplockConfig:
    """Load and validate deplock configuration.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`DeplockConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return DeplockConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("deplock", {})
    else:
        section = raw.get("deplock", {})

    if not section:
        logger.debug("Config file found but no deplock section, using defaults")
        return DeplockConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


_KNOWN_KEYS = frozenset(
    {
        "resolution_mode",
        "prerelease_mode",
        "concurrent_limit",
        "requires_python",
        "platforms",
        "extras",
        "dependency_mode",
        "exclude_newer",
    }
)


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> DeplockConfig:
    """Parse and validate the ``[deplock]`` or ``[tool.deplock]`` table.

    Raises:
        ConfigError: Unknown keys, incorrect types or invalid values.
    """
    config = DeplockConfig()

    unknown = set(section.keys()) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    if "resolution_mode" in section:
        val = _expect_str(section, "resolution_mode", config_path)
        try:
            config.resolution_mode = ResolutionMode(val)
        except ValueError:
            choices = ", ".join(m.value for m in ResolutionMode)
            raise ConfigError(
                f"resolution_mode must be one of {choices}, got {val!r}",
                config_path=config_path,
                option="resolution_mode",
            ) from None

    if "prerelease_mode" in section:
        val = _expect_str(section, "prerelease_mode", config_path)
        try:
            config.prerelease_mode = PrereleaseMode(val)
        except ValueError:
            choices = ", ".join(m.value for m in PrereleaseMode)
            raise ConfigError(
                f"prerelease_mode must be one of {choices}, got {val!r}",
                config_path=config_path,
                option="prerelease_mode",
            ) from None

    if "concurrent_limit" in section:
        val = section["concurrent_limit"]
        # bool is a subclass of int
        if not isinstance(val, int) or isinstance(val, bool):
            raise ConfigError(
                f"concurrent_limit must be an integer, got {type(val).__name__}",
                config_path=config_path,
                option="concurrent_limit",
            )
        if val < 1:
            raise ConfigError(
                f"concurrent_limit must be at least 1, got {val}",
                config_path=config_path,
                option="concurrent_limit",
            )
        config.concurrent_limit = val

    if "requires_python" in section:
        val = _expect_str(section, "requires_python", config_path)
        try:
            SpecifierSet(val)
        except InvalidSpecifier:
            raise ConfigError(
                f"requires_python is not a valid version specifier: {val!r}",
                config_path=config_path,
                option="requires_python",
            ) from None
        config.requires_python = val

    if "platforms" in section:
        platforms = _expect_str_list(section, "platforms", config_path)
        unknown_platforms = sorted(set(platforms) - set(KNOWN_PLATFORMS))
        if unknown_platforms:
            raise ConfigError(
                f"Unknown platforms: {', '.join(unknown_platforms)} "
                f"(known: {', '.join(sorted(KNOWN_PLATFORMS))})",
                config_path=config_path,
                option="platforms",
            )
        if not platforms:
            raise ConfigError(
                "platforms must name at least one platform",
                config_path=config_path,
                option="platforms",
            )
        config.platforms = platforms

    if "extras" in section:
        config.extras = _expect_str_list(section, "extras", config_path)

    if "dependency_mode" in section:
        val = _expect_str(section, "dependency_mode", config_path)
        try:
            config.dependency_mode = DependencyMode(val)
        except ValueError:
            choices = ", ".join(m.value for m in DependencyMode)
            raise ConfigError(
                f"dependency_mode must be one of {choices}, got {val!r}",
                config_path=config_path,
                option="dependency_mode",
            ) from None

    if "exclude_newer" in section:
        val = section["exclude_newer"]
        # TOML dates and date-times arrive already parsed.
        if not isinstance(val, (str, date)):
            raise ConfigError(
                f"exclude_newer must be a date or date-time, got {type(val).__name__}",
                config_path=config_path,
                option="exclude_newer",
            )
        try:
            config.exclude_newer = ExcludeNewer.parse(val)
        except ValueError as exc:
            raise ConfigError(
                f"exclude_newer: {exc}",
                config_path=config_path,
                option="exclude_newer",
            ) from None

    return config


def _expect_str(section: Dict[str, Any], key: str, config_path: str) -> str:
    val = section[key]
    if not isinstance(val, str):
        raise ConfigError(
            f"{key} must be a string, got {type(val).__name__}",
            config_path=config_path,
            option=key,
        )
    return val


def _expect_str_list(section: Dict[str, Any], key: str, config_path: str) -> List[str]:
    val = section[key]
    if not isinstance(val, list) or not all(isinstance(item, str) for item in val):
        raise ConfigError(
            f"{key} must be a list of strings",
            config_path=config_path,
            option=key,
        )
    return list(val)
