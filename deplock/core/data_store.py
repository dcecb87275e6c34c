"""PyPI metadata backend for deplock.

Reads the PyPI JSON API through :class:`~deplock.utils.http.HTTPClient`:

- ``/pypi/{name}/json`` for the list of releases;
- ``/pypi/{name}/{version}/json`` for one release's ``requires_dist``,
  ``requires_python``, ``provides_extra`` and files.

With an :class:`~deplock.models.manifest.ExcludeNewer` cutoff, files uploaded
at or after the cutoff (or without an upload time) are ignored, and a
release with no file left is not listed.

The backend itself does not cache. Memoization and concurrency limits live
in :class:`~deplock.core.provider.MetadataProvider`, which every solver
call goes through.

Typical usage::

    async with HTTPClient() as client:
        provider = MetadataProvider([PyPIBackend(client)])
        versions = await provider.list_versions("requests")
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from packaging.version import InvalidVersion, Version

from deplock.constants import PYPI_JSON_API, PYPI_RELEASE_JSON_API
from deplock.core.provider import SourceBackend
from deplock.exceptions import (
    NetworkError,
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    PyPIError,
    RequirementParseError,
)
from deplock.models.candidate import Candidate
from deplock.models.manifest import ExcludeNewer
from deplock.models.requirement import Requirement, Source, SourceKind, normalize_name
from deplock.utils.http import HTTPClient
from deplock.utils.logger import get_logger

logger = get_logger("data_store")

__all__ = ["PyPIBackend"]


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class PyPIBackend(SourceBackend):
    """Registry backend backed by the PyPI JSON API.

    Args:
        http_client: A pre-configured :class:`HTTPClient` (owns the
            connection pool). Closed by :meth:`close` only when
            ``owns_client`` is true.
        owns_client: Whether :meth:`close` should close *http_client*.
        exclude_newer: Ignore files uploaded at or after this cutoff.

    Example::

        async with HTTPClient() as client:
            backend = PyPIBackend(client)
            await backend.list_versions("flask", Source())
    """

    kinds = (SourceKind.REGISTRY,)

    def __init__(
        self,
        http_client: HTTPClient,
        *,
        owns_client: bool = False,
        exclude_newer: Optional[ExcludeNewer] = None,
    ) -> None:
        self.http_client = http_client
        self.owns_client = owns_client
        self.exclude_newer = exclude_newer

    async def close(self) -> None:
        if self.owns_client:
            await self.http_client.close()

    # ------------------------------------------------------------------
    # SourceBackend
    # ------------------------------------------------------------------

    async def list_versions(self, name: str, source: Source) -> List[Version]:
        """Return non-yanked releases that have at least one file.

        Versions that are not valid PEP 440 are skipped.
        """
        data = await self._get_json(PYPI_JSON_API.format(package=name), name)
        releases = data.get("releases")
        if not isinstance(releases, dict):
            raise ProviderMalformedError(
                "PyPI response has no 'releases' object", package_name=name
            )

        versions: List[Version] = []
        for raw, files in releases.items():
            files = self._in_time(files or [])
            # Phantom versions without uploads cannot be installed.
            if not files:
                continue
            if all(file_info.get("yanked", False) for file_info in files):
                continue
            try:
                versions.append(Version(raw))
            except InvalidVersion:
                logger.debug("Skipping non-PEP 440 version %r of %s", raw, name)
        versions.sort(reverse=True)
        return versions

    async def fetch_candidate(
        self, name: str, version: Version, source: Source
    ) -> Candidate:
        url = PYPI_RELEASE_JSON_API.format(package=name, version=version)
        data = await self._get_json(url, name, str(version))
        info = data.get("info")
        if not isinstance(info, dict):
            raise ProviderMalformedError(
                "PyPI response has no 'info' object",
                package_name=name,
                version=str(version),
            )

        requires = _parse_requires_dist(info, name, str(version))
        files = self._in_time(data.get("urls") or [])
        if not files and self.exclude_newer is not None:
            raise ProviderNotFoundError(
                f"'{name}=={version}' has no files uploaded before {self.exclude_newer}",
                package_name=name,
                version=str(version),
            )
        artifact, hashes, yanked = _pick_artifact(files)
        return Candidate(
            name=normalize_name(name),
            version=version,
            source=source,
            requires=requires,
            extras=frozenset(normalize_name(e) for e in info.get("provides_extra") or []),
            requires_python=info.get("requires_python") or None,
            artifact=artifact,
            hashes=hashes,
            yanked=yanked,
        )

    def _in_time(self, files: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.exclude_newer is None:
            return files
        return [f for f in files if self.exclude_newer.admits(_upload_time(f))]

    # ------------------------------------------------------------------
    # Network helpers (private)
    # ------------------------------------------------------------------

    async def _get_json(
        self, url: str, name: str, version: Optional[str] = None
    ) -> Dict[str, Any]:
        """Fetch *url*, translating HTTP failures into provider errors."""
        try:
            return await self.http_client.get_json(url)
        except NetworkError as exc:
            if exc.status_code == 404:
                raise ProviderNotFoundError(
                    f"'{name}' not found on PyPI", package_name=name, version=version
                ) from exc
            if exc.status_code is None and exc.response_body is not None:
                raise ProviderMalformedError(
                    exc.message, package_name=name, version=version
                ) from exc
            raise ProviderUnavailableError(
                str(PyPIError(exc.message, package_name=name, url=url)),
                package_name=name,
                version=version,
            ) from exc


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse_requires_dist(
    info: Dict[str, Any], name: str, version: str
) -> Tuple[Requirement, ...]:
    """Parse ``requires_dist``, keeping markers and extras intact."""
    requires: List[Requirement] = []
    for text in info.get("requires_dist") or []:
        try:
            requires.append(Requirement.parse(text, origin=f"{name}=={version}"))
        except RequirementParseError as exc:
            raise ProviderMalformedError(
                f"Invalid requirement {text!r} in metadata",
                package_name=name,
                version=version,
            ) from exc
    return tuple(requires)


def _upload_time(file_info: Dict[str, Any]) -> Optional[str]:
    return file_info.get("upload_time_iso_8601") or file_info.get("upload_time")


def _pick_artifact(files: List[Dict[str, Any]]) -> Tuple[Optional[str], Tuple[str, ...], bool]:
    """Choose the artifact to report: the first wheel, else the first file."""
    if not files:
        return None, (), False
    wheels = [f for f in files if f.get("packagetype") == "bdist_wheel"]
    chosen = (wheels or files)[0]
    digests = chosen.get("digests") or {}
    hashes = tuple(
        f"{algorithm}:{digest}" for algorithm, digest in sorted(digests.items())
        if algorithm == "sha256"
    )
    yanked = all(f.get("yanked", False) for f in files)
    return chosen.get("filename"), hashes, yanked
