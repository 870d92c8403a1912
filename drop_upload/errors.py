"""Exception hierarchy for Drop Uploader."""


class DropUploadError(Exception):
    """Base class for all Drop Uploader errors."""


class ConfigError(DropUploadError):
    """The configuration file is missing values or holds invalid ones."""


class LockError(DropUploadError):
    """The instance lock could not be acquired within its retry budget."""


class ScanError(DropUploadError):
    """Listing or stat-ing the watch folder failed for this cycle."""


class RemoteStoreError(DropUploadError):
    """A remote store operation failed; the file will be retried."""


class FatalRemoteError(RemoteStoreError):
    """The remote store can never succeed with the current setup (credentials, bucket)."""
