"""Errors raised by the topology cache."""


class CacheError(Exception):
    """Base class for topology cache errors."""


class NotFoundError(CacheError):
    """The system of record has no such entity."""


class TransientFetchError(CacheError):
    """Talking to the system of record failed; worth retrying."""


class LockContentionError(CacheError):
    """Another refresher currently holds the refresh lock."""


class UnavailableError(CacheError):
    """Nothing cached and the value could not be recomputed in time."""
