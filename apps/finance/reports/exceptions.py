class SourceUnavailable(Exception):
    """A record source could not be read (missing table, store not provisioned)."""

    def __init__(self, source, message=''):
        self.source = source
        super().__init__(message or f'Record source "{source}" is unavailable.')


class MalformedRecord(ValueError):
    """A raw row cannot be turned into an engine record at all."""

    def __init__(self, source, row, reason):
        self.source = source
        self.row = row
        self.reason = reason
        super().__init__(f'Malformed {source} record: {reason}')


class ExportError(Exception):
    """CSV or PDF rendering failed; no partial output is returned."""
