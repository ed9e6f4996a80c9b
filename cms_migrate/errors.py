"""Exception types raised by the migration engine."""


class MigrationError(Exception):
    """Base class for all migration errors."""


class SourceConnectionError(MigrationError):
    """The source store could not be reached. Fatal for the run."""


class SourceQueryError(MigrationError):
    """A query against the source store failed."""


class TargetStoreError(MigrationError):
    """A call to the target store failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RecordNotFoundError(TargetStoreError):
    """The requested target record does not exist."""


class MediaTransferError(MigrationError):
    """A media asset could not be downloaded, processed or uploaded.

    Always handled as a soft failure: the owning record is written without
    the asset.
    """


class MappingConfigError(MigrationError):
    """A saved field mapping file is malformed or of an unsupported version."""
