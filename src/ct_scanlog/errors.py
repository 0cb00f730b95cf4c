"""Exception hierarchy for ct-scanlog."""


class ScanLogError(Exception):
    """Base class for all scanner errors"""


class ConfigError(ScanLogError):
    """Scan configuration is missing, unreadable or invalid"""


class CheckpointError(ScanLogError):
    """Checkpoint file is corrupt or cannot be written"""


class ClientError(ScanLogError):
    """A client for the log endpoint cannot be constructed"""


class FetchError(ScanLogError):
    """Fetching entries from the log failed"""

    def __init__(self, message: str, start: int = -1, end: int = -1):
        super().__init__(message)
        self.start = start
        self.end = end
