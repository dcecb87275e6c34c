"""Metadata provider: the solver's only window onto package metadata.

:class:`MetadataProvider` answers two questions, "which versions of this
package exist?" and "what does this release require?", by dispatching to
one :class:`SourceBackend` per :class:`~deplock.models.requirement.SourceKind`.

Every answer is memoized for the provider's lifetime. A key is fetched at
most once: concurrent callers asking for the same key await the same
in-flight task instead of issuing a second request, and an
:class:`asyncio.Semaphore` bounds how many backend calls run at once.

Failure kinds:

- :class:`~deplock.exceptions.ProviderNotFoundError` is permanent and
  memoized like a result;
- :class:`~deplock.exceptions.ProviderMalformedError` is permanent too;
- :class:`~deplock.exceptions.ProviderUnavailableError` (and cancellation)
  is transient: the key is evicted so a later call may retry.

Typical usage::

    registry = InMemoryRegistry()
    registry.add("attrs", "23.1.0")
    provider = MetadataProvider([registry])
    versions = await provider.list_versions("attrs")
"""

from __future__ import annotations

import abc
import asyncio
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Hashable,
    Iterable,
    List,
    Optional,
    Tuple,
)

from packaging.version import Version

from deplock.constants import DEFAULT_CONCURRENT_LIMIT
from deplock.exceptions import (
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderUnavailableError,
)
from deplock.models.candidate import Candidate
from deplock.models.requirement import Source, SourceKind, normalize_name
from deplock.utils.logger import get_logger

logger = get_logger("provider")

__all__ = ["MetadataProvider", "SourceBackend"]

_PERMANENT = (ProviderNotFoundError, ProviderMalformedError)


class SourceBackend(abc.ABC):
    """Fetches metadata for one family of sources.

    Backends are not expected to cache; :class:`MetadataProvider` does.
    """

    #: Source kinds this backend serves.
    kinds: Tuple[SourceKind, ...] = ()

    @abc.abstractmethod
    async def list_versions(self, name: str, source: Source) -> List[Version]:
        """Return every available version of *name*, newest first.

        Raises:
            ProviderNotFoundError: The package does not exist.
            ProviderUnavailableError: The source could not be reached.
        """

    @abc.abstractmethod
    async def fetch_candidate(
        self, name: str, version: Version, source: Source
    ) -> Candidate:
        """Return the metadata of one release.

        Raises:
            ProviderNotFoundError: The release does not exist.
            ProviderUnavailableError: The source could not be reached.
            ProviderMalformedError: The metadata cannot be interpreted.
        """

    async def close(self) -> None:
        """Release backend resources."""


class MetadataProvider:
    """Memoizing, source-dispatching front for a set of backends.

    Args:
        backends: The backends to dispatch to. When two backends claim the
            same source kind the first one wins.
        concurrent_limit: Maximum number of backend calls in flight.

    Example::

        >>> provider = MetadataProvider([InMemoryRegistry.from_json(data)])
        >>> candidate = await provider.fetch_candidate("a", Version("1.0"))
        >>> provider.fetch_count
        1
    """

    def __init__(
        self,
        backends: Iterable[SourceBackend],
        *,
        concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT,
    ) -> None:
        self._backends: Dict[SourceKind, SourceBackend] = {}
        for backend in backends:
            for kind in backend.kinds:
                self._backends.setdefault(kind, backend)

        self._semaphore = asyncio.Semaphore(concurrent_limit)
        self._versions: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self._candidates: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self.fetch_count = 0

    async def __aenter__(self) -> "MetadataProvider":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel fetches still in flight and close every backend once."""
        for cache in (self._versions, self._candidates):
            for task in list(cache.values()):
                if not task.done():
                    task.cancel()
        seen: List[SourceBackend] = []
        for backend in self._backends.values():
            if not any(backend is other for other in seen):
                seen.append(backend)
                await backend.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_versions(
        self, name: str, source: Optional[Source] = None
    ) -> Tuple[Version, ...]:
        """Return the versions of *name* available from *source*, newest first."""
        name = normalize_name(name)
        source = source or Source()
        backend = self._backend_for(name, source)

        async def fetch() -> Tuple[Version, ...]:
            versions = await backend.list_versions(name, source)
            return tuple(sorted(set(versions), reverse=True))

        return await self._memoized(self._versions, (name, source), fetch)

    async def fetch_candidate(
        self,
        name: str,
        version: Version,
        source: Optional[Source] = None,
    ) -> Candidate:
        """Return the metadata of ``name==version`` from *source*."""
        name = normalize_name(name)
        source = source or Source()
        backend = self._backend_for(name, source)

        async def fetch() -> Candidate:
            candidate = await backend.fetch_candidate(name, version, source)
            if candidate.name != name or candidate.version != version:
                raise ProviderMalformedError(
                    f"Backend returned {candidate} when asked for {name}=={version}",
                    package_name=name,
                    version=str(version),
                )
            return candidate

        return await self._memoized(self._candidates, (name, version, source), fetch)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _backend_for(self, name: str, source: Source) -> SourceBackend:
        try:
            return self._backends[source.kind]
        except KeyError:
            raise ProviderUnavailableError(
                f"No metadata backend configured for {source.kind.value} sources",
                package_name=name,
            ) from None

    async def _memoized(
        self,
        cache: Dict[Hashable, "asyncio.Task[Any]"],
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
    ) -> Any:
        task = cache.get(key)
        if task is None:
            task = asyncio.ensure_future(self._guarded(factory))
            cache[key] = task
            task.add_done_callback(lambda done: self._evict_transient(cache, key, done))
        else:
            logger.debug("Provider cache hit for %s", key)
        # Shielded so one cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(task)

    async def _guarded(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            self.fetch_count += 1
            return await factory()

    @staticmethod
    def _evict_transient(
        cache: Dict[Hashable, "asyncio.Task[Any]"],
        key: Hashable,
        task: "asyncio.Task[Any]",
    ) -> None:
        if task.cancelled():
            cache.pop(key, None)
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, _PERMANENT):
            logger.debug("Evicting transient failure for %s: %s", key, exc)
            cache.pop(key, None)
