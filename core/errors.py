from __future__ import annotations


class CacheError(Exception):
    """Base class for snapshot cache failures."""


class SourceUnavailable(CacheError):
    """The external fetch failed: network, auth, timeout or malformed payload."""


class EmptySource(CacheError):
    """The source answered but reported no sheets or no rows."""


class TransformError(CacheError):
    """A single row could not be normalised. Never escapes the refresher."""


class RegistryMiss(CacheError, LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown dataset: {name}")
        self.name = name


class DuplicateDatasetError(CacheError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"dataset already registered: {name}")
        self.name = name


class StartupRefreshError(CacheError):
    """One or more required datasets failed their boot-time refresh."""

    def __init__(self, failed: dict[str, str]) -> None:
        detail = ", ".join(f"{name}: {error}" for name, error in sorted(failed.items()))
        super().__init__(f"initial refresh failed ({detail})")
        self.failed = failed
