class DBSyncError(Exception):
    """Base class for sync service errors."""


class CacheError(DBSyncError):
    pass


class ResourceExhaustedError(CacheError):
    """The cache refused a write because it is out of memory."""


class SourceConnectionError(DBSyncError):
    """A source database could not be opened."""


class KeyResolutionError(DBSyncError, ValueError):
    """No usable identity column could be determined for a source."""


class PayloadError(DBSyncError, ValueError):
    """A cached payload could not be decoded back into a row."""
