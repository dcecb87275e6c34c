"""In-memory metadata backends.

:class:`InMemoryRegistry` serves registry packages from a mapping held in
memory, and :class:`DirectSourceBackend` serves packages pinned to a path,
VCS or URL source whose metadata the caller already knows. Both can be
loaded from a JSON *index file*, which is how the CLI resolves against an
offline package universe and how the tests describe scenarios.

Index file format::

    {
      "packages": {
        "a": {
          "1.0": {"requires": ["b>=1"], "requires_python": ">=3.8"},
          "2.0": {"requires": ["b>=2"], "extras": ["fast"], "yanked": true},
          "2.1": {"upload_time": "2024-03-01T09:30:00Z"}
        }
      },
      "direct": {
        "git+https://example.com/c.git": {"name": "c", "version": "0.3"}
      }
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from packaging.version import InvalidVersion, Version

from deplock.core.provider import SourceBackend
from deplock.exceptions import (
    ConfigError,
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    RequirementParseError,
)
from deplock.models.candidate import Candidate
from deplock.models.manifest import ExcludeNewer
from deplock.models.requirement import Requirement, Source, SourceKind, normalize_name
from deplock.utils.logger import get_logger

logger = get_logger("registry")

__all__ = ["DirectSourceBackend", "InMemoryRegistry", "load_index"]

_ReleaseKey = Tuple[str, Version]


def _parse_release_version(name: str, raw: Any) -> Version:
    try:
        return Version(str(raw))
    except InvalidVersion as exc:
        raise ProviderMalformedError(
            f"Invalid version {raw!r}", package_name=name, version=str(raw)
        ) from exc


def _parse_requires(name: str, version: str, requires: Iterable[str]) -> Tuple[Requirement, ...]:
    origin = f"{name}=={version}"
    try:
        return tuple(Requirement.parse(text, origin=origin) for text in requires)
    except RequirementParseError as exc:
        raise ProviderMalformedError(
            f"Invalid requirement in metadata: {exc.message}",
            package_name=name,
            version=version,
        ) from exc


class InMemoryRegistry(SourceBackend):
    """A package registry held in memory.

    Yanked releases, and releases not uploaded before *exclude_newer*, are
    omitted from :meth:`list_versions` but can still be fetched by exact
    version. Releases can be flagged unavailable or
    malformed to exercise provider failure handling.

    Example::

        >>> registry = InMemoryRegistry()
        >>> registry.add("a", "1.0", requires=["b>=1"])
        >>> registry.add("b", "1.0")
    """

    kinds = (SourceKind.REGISTRY,)

    def __init__(self, *, exclude_newer: Optional[ExcludeNewer] = None) -> None:
        self.exclude_newer = exclude_newer
        self._releases: Dict[str, Dict[Version, Candidate]] = {}
        self._uploaded: Dict[_ReleaseKey, Optional[str]] = {}
        self._unavailable: Set[Union[str, _ReleaseKey]] = set()
        self._malformed: Set[_ReleaseKey] = set()
        self.calls: List[Tuple[str, str, Optional[str]]] = []

    def add(
        self,
        name: str,
        version: Union[str, Version],
        *,
        requires: Iterable[str] = (),
        extras: Iterable[str] = (),
        requires_python: Optional[str] = None,
        yanked: bool = False,
        artifact: Optional[str] = None,
        hashes: Iterable[str] = (),
        upload_time: Optional[str] = None,
    ) -> Candidate:
        """Register one release and return its candidate."""
        name = normalize_name(name)
        parsed = _parse_release_version(name, version)
        candidate = Candidate(
            name=name,
            version=parsed,
            source=Source.registry(),
            requires=_parse_requires(name, str(parsed), requires),
            extras=frozenset(normalize_name(e) for e in extras),
            requires_python=requires_python,
            artifact=artifact,
            hashes=tuple(hashes),
            yanked=yanked,
        )
        self._releases.setdefault(name, {})[parsed] = candidate
        self._uploaded[(name, parsed)] = upload_time
        return candidate

    def mark_unavailable(self, name: str, version: Optional[str] = None) -> None:
        """Make the package (or one release) fail with a transient error."""
        name = normalize_name(name)
        self._unavailable.add(name if version is None else (name, Version(version)))

    def mark_malformed(self, name: str, version: str) -> None:
        self._malformed.add((normalize_name(name), Version(version)))

    def packages(self) -> List[str]:
        return sorted(self._releases)

    # ------------------------------------------------------------------
    # SourceBackend
    # ------------------------------------------------------------------

    async def list_versions(self, name: str, source: Source) -> List[Version]:
        self.calls.append(("list_versions", name, None))
        if name in self._unavailable:
            raise ProviderUnavailableError("Registry unavailable", package_name=name)
        releases = self._releases.get(name)
        if releases is None:
            raise ProviderNotFoundError(
                f"Package '{name}' not found in registry", package_name=name
            )
        return sorted(
            (
                v
                for v, candidate in releases.items()
                if not candidate.yanked and self._in_time(name, v)
            ),
            reverse=True,
        )

    def _in_time(self, name: str, version: Version) -> bool:
        if self.exclude_newer is None:
            return True
        return self.exclude_newer.admits(self._uploaded.get((name, version)))

    async def fetch_candidate(
        self, name: str, version: Version, source: Source
    ) -> Candidate:
        self.calls.append(("fetch_candidate", name, str(version)))
        if name in self._unavailable or (name, version) in self._unavailable:
            raise ProviderUnavailableError(
                "Registry unavailable", package_name=name, version=str(version)
            )
        if (name, version) in self._malformed:
            raise ProviderMalformedError(
                "Metadata could not be parsed", package_name=name, version=str(version)
            )
        try:
            return self._releases[name][version]
        except KeyError:
            raise ProviderNotFoundError(
                f"Release '{name}=={version}' not found in registry",
                package_name=name,
                version=str(version),
            ) from None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_json(
        cls,
        data: Mapping[str, Any],
        *,
        exclude_newer: Optional[ExcludeNewer] = None,
    ) -> "InMemoryRegistry":
        """Build a registry from the ``packages`` section of an index."""
        registry = cls(exclude_newer=exclude_newer)
        packages = data.get("packages", {})
        if not isinstance(packages, Mapping):
            raise ProviderMalformedError("'packages' must be an object")
        for name, releases in packages.items():
            if not isinstance(releases, Mapping):
                raise ProviderMalformedError(
                    "Releases must be an object keyed by version", package_name=name
                )
            for version, meta in releases.items():
                meta = meta or {}
                registry.add(
                    name,
                    version,
                    requires=meta.get("requires", ()),
                    extras=meta.get("extras", ()),
                    requires_python=meta.get("requires_python"),
                    yanked=bool(meta.get("yanked", False)),
                    artifact=meta.get("artifact"),
                    hashes=meta.get("hashes", ()),
                    upload_time=meta.get("upload_time"),
                )
        return registry


class DirectSourceBackend(SourceBackend):
    """Serves packages pinned to a path, VCS repository or URL.

    Fetching and building such sources is out of scope; their metadata is
    supplied up front, keyed by source location.
    """

    kinds = (SourceKind.PATH, SourceKind.GIT, SourceKind.URL)

    def __init__(self) -> None:
        self._by_location: Dict[str, Candidate] = {}

    def add(
        self,
        location: str,
        name: str,
        version: Union[str, Version],
        *,
        requires: Iterable[str] = (),
        extras: Iterable[str] = (),
        requires_python: Optional[str] = None,
    ) -> Candidate:
        source = Source.from_url(location)
        name = normalize_name(name)
        parsed = _parse_release_version(name, version)
        candidate = Candidate(
            name=name,
            version=parsed,
            source=source,
            requires=_parse_requires(name, str(parsed), requires),
            extras=frozenset(normalize_name(e) for e in extras),
            requires_python=requires_python,
            artifact=location,
        )
        self._by_location[str(source)] = candidate
        return candidate

    def __len__(self) -> int:
        return len(self._by_location)

    def _lookup(self, name: str, source: Source) -> Candidate:
        candidate = self._by_location.get(str(source))
        if candidate is None or candidate.name != name:
            raise ProviderNotFoundError(
                f"No metadata known for {name} at {source}", package_name=name
            )
        return candidate

    async def list_versions(self, name: str, source: Source) -> List[Version]:
        return [self._lookup(name, source).version]

    async def fetch_candidate(
        self, name: str, version: Version, source: Source
    ) -> Candidate:
        candidate = self._lookup(name, source)
        if candidate.version != version:
            raise ProviderNotFoundError(
                f"{source} provides {candidate}, not {name}=={version}",
                package_name=name,
                version=str(version),
            )
        return candidate

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "DirectSourceBackend":
        """Build a backend from the ``direct`` section of an index."""
        backend = cls()
        for location, meta in (data.get("direct") or {}).items():
            try:
                name, version = meta["name"], meta["version"]
            except (KeyError, TypeError) as exc:
                raise ProviderMalformedError(
                    f"Direct source {location!r} needs 'name' and 'version'"
                ) from exc
            backend.add(
                location,
                name,
                version,
                requires=meta.get("requires", ()),
                extras=meta.get("extras", ()),
                requires_python=meta.get("requires_python"),
            )
        return backend


def load_index(
    path: Union[str, Path],
    *,
    exclude_newer: Optional[ExcludeNewer] = None,
) -> Tuple[InMemoryRegistry, DirectSourceBackend]:
    """Load an index file into a registry and a direct-source backend.

    *exclude_newer* is applied to the registry releases.

    Raises:
        ConfigError: The file cannot be read or is not valid JSON.
        ProviderMalformedError: The index content is invalid.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read index file: {exc}", config_path=str(path)) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in index file: {exc}", config_path=str(path)) from exc

    if not isinstance(data, dict):
        raise ConfigError("Index file must contain a JSON object", config_path=str(path))

    registry = InMemoryRegistry.from_json(data, exclude_newer=exclude_newer)
    direct = DirectSourceBackend.from_json(data)
    logger.debug(
        "Loaded index %s: %d packages, %d direct sources",
        path,
        len(registry.packages()),
        len(direct),
    )
    return registry, direct
