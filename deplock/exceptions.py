"""
Custom exception hierarchy for deplock.

All exceptions inherit from :class:`DeplockError` and carry optional
structured metadata via the ``details`` attribute, which is rendered by
``__str__`` and surfaced by the CLI at debug verbosity.

The resolver distinguishes five failure families:

- :class:`UnsatisfiableError`: search finished and no solution exists.
- :class:`ProviderError` and subclasses: a metadata backend failed.
- :class:`InternalInvariantError`: a solver bug; never recovered.
- :class:`ResolutionCancelledError`: the caller aborted the run.
- :class:`ConfigError` / :class:`RequirementParseError`: bad input.
"""

from __future__ import annotations

from typing import Any, List, Mapping, MutableMapping, Optional, Sequence


class DeplockError(Exception):
    """Base exception for all deplock errors.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------


class RequirementParseError(DeplockError):
    """Raised when a requirement string is not valid PEP 508.

    Args:
        message: Error description.
        requirement: The offending requirement text.
        source: Where the requirement came from (file, package, CLI).
    """

    __slots__ = ("requirement", "source")

    def __init__(
        self,
        message: str,
        *,
        requirement: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "requirement", requirement)
        _add_if(details, "source", source)

        super().__init__(message, details)

        self.requirement = requirement
        self.source = source


class ConfigError(DeplockError):
    """Raised when configuration is invalid or cannot be loaded.

    Args:
        message: Error description.
        config_path: Path to the configuration file.
        option: Configuration option that caused the error.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(DeplockError):
    """Base class for failures reported by a metadata backend.

    Args:
        message: Error description.
        package_name: Package being queried.
        version: Version being queried, if any.
    """

    __slots__ = ("package_name", "version")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        version: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        _add_if(details, "version", version)

        super().__init__(message, details)

        self.package_name = package_name
        self.version = version


class ProviderNotFoundError(ProviderError):
    """The package or version does not exist; permanent for this run."""


class ProviderUnavailableError(ProviderError):
    """A transient failure; the caller decides whether to retry."""


class ProviderMalformedError(ProviderError):
    """The backend returned metadata that could not be interpreted."""


class NetworkError(DeplockError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    __slots__ = ("url", "status_code", "response_body")

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class PyPIError(NetworkError):
    """Raised for failures related to the PyPI API.

    Args:
        message: Error description.
        package_name: Name of the package involved.
        **kwargs: Additional arguments forwarded to ``NetworkError``.
    """

    __slots__ = ("package_name",)

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

        self.package_name = package_name
        if package_name is not None:
            self.details["package"] = package_name


# ---------------------------------------------------------------------------
# Resolution outcomes
# ---------------------------------------------------------------------------


class ResolutionError(DeplockError):
    """Base class for errors raised by the resolution engine."""


class UnsatisfiableError(ResolutionError):
    """No valid resolution exists for at least one target environment.

    Args:
        message: Error description.
        explanations: One :class:`~deplock.core.explanation.Explanation`
            per failed fork, ordered by environment.
        resolved_environments: Environment descriptions of forks that did
            succeed, for context.
    """

    __slots__ = ("explanations", "resolved_environments")

    def __init__(
        self,
        message: str,
        *,
        explanations: Sequence[Any] = (),
        resolved_environments: Sequence[str] = (),
    ) -> None:
        details: MutableMapping[str, Any] = {}
        if len(explanations) > 1:
            details["failed_forks"] = len(explanations)

        super().__init__(message, details)

        self.explanations: List[Any] = list(explanations)
        self.resolved_environments: List[str] = list(resolved_environments)

    def render(self) -> str:
        """Return the full human-readable report for every failed fork."""
        blocks = [self.message]
        for explanation in self.explanations:
            blocks.append(explanation.render())
        return "\n\n".join(blocks)


class ConflictingSourcesError(ResolutionError):
    """Two requirements pin the same package to different direct sources.

    Args:
        message: Error description.
        package_name: The package with conflicting sources.
        sources: The conflicting source descriptions.
    """

    __slots__ = ("package_name", "sources")

    def __init__(
        self,
        message: str,
        *,
        package_name: str,
        sources: Sequence[str],
    ) -> None:
        super().__init__(
            message,
            {"package": package_name, "sources": ", ".join(sources)},
        )
        self.package_name = package_name
        self.sources = list(sources)


class InternalInvariantError(ResolutionError):
    """A structural invariant of the engine was violated.

    Indicates a solver bug; always fatal.

    Args:
        message: Error description.
        invariant: Short name of the violated invariant.
    """

    __slots__ = ("invariant",)

    def __init__(self, message: str, *, invariant: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "invariant", invariant)
        super().__init__(message, details)
        self.invariant = invariant


class ResolutionCancelledError(ResolutionError):
    """The caller aborted the resolution run."""
