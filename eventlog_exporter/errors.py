"""Channel-scoped export errors. None of them is fatal to the process."""


class ExportError(Exception):
    """Base class for failures that abort one channel's export cycle."""

    kind = "export_error"
    skipped = 0

    def __init__(self, channel: str, message: str):
        super().__init__(f"[{channel}] {message}")
        self.channel = channel


class SourceUnavailable(ExportError):
    """The event source could not be queried for a channel this cycle."""

    kind = "source_unavailable"


class RecordUnreadable(ExportError):
    """A single fetched entry could not be normalized."""

    kind = "record_unreadable"


class EncodeFailure(ExportError):
    """The Parquet write failed; the published file is left untouched."""

    kind = "encode_failure"


class PublishFailure(ExportError):
    """The atomic rename onto the published path failed."""

    kind = "publish_failure"


class ConfigError(Exception):
    """Raised at startup when configuration is invalid."""
