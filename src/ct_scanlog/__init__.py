"""
Certificate Transparency Log Scanner
Scans a classic CT log in ranged batches with bounded async fetch
concurrency and resumes from a JSON checkpoint after restarts.
"""

__version__ = "1.0.0"

from .client import LogClient, decode_leaf, parse_log_uri  # noqa: E402
from .config import ScanConfig, load_config  # noqa: E402
from .director import Director, FatalLogger, LoggingFatalLogger, build_director  # noqa: E402
from .errors import (  # noqa: E402
    CheckpointError,
    ClientError,
    ConfigError,
    FetchError,
    ScanLogError,
)
from .fetcher import LogScanner  # noqa: E402
from .httpx_ratelimit import RateLimitedTransport  # noqa: E402
from .models import EntryType, LogEntry, Result, ScanStats, SignedTreeHead, Task  # noqa: E402
from .processor import ArtifactProcessor, EntrySummary, Processor  # noqa: E402
from .scheduler import Checkpoint, FileCheckpointScheduler, Scheduler  # noqa: E402

__all__ = [
    "ArtifactProcessor",
    "Checkpoint",
    "CheckpointError",
    "ClientError",
    "ConfigError",
    "Director",
    "EntrySummary",
    "EntryType",
    "FatalLogger",
    "FetchError",
    "FileCheckpointScheduler",
    "LogClient",
    "LogEntry",
    "LogScanner",
    "LoggingFatalLogger",
    "Processor",
    "RateLimitedTransport",
    "Result",
    "ScanConfig",
    "ScanLogError",
    "ScanStats",
    "Scheduler",
    "SignedTreeHead",
    "Task",
    "build_director",
    "decode_leaf",
    "load_config",
    "parse_log_uri",
]
