"""Data carriers shared by the scanner, scheduler and processor."""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import List, Optional


class EntryType(IntEnum):
    """CT log entry types"""

    X509_ENTRY = 0
    PRECERT_ENTRY = 1
    UNKNOWN = 0xFFFF


@dataclass
class SignedTreeHead:
    """Signed Tree Head from a CT log"""

    tree_size: int
    timestamp: int
    sha256_root_hash: str
    tree_head_signature: str


@dataclass
class LogEntry:
    """Single leaf entry from a CT log"""

    index: int
    timestamp: int
    entry_type: EntryType
    leaf_input: bytes
    cert_data: bytes = b""  # leaf cert DER, or the pre-certificate for precerts
    tbs_certificate: bytes = b""  # precerts only
    issuer_key_hash: bytes = b""  # precerts only
    chain: List[bytes] = field(default_factory=list)
    parse_error: Optional[str] = None


@dataclass
class ScanStats:
    """Counters for a single scan"""

    certs: int = 0
    precerts: int = 0
    unknown: int = 0
    skipped: int = 0
    batches: int = 0
    retries: int = 0

    @property
    def total(self) -> int:
        return self.certs + self.precerts + self.unknown + self.skipped


@dataclass
class Result:
    """Outcome of one task"""

    success: bool
    error: Optional[BaseException] = None
    next_index: Optional[int] = None  # first index after the scanned range
    end_bound: Optional[int] = None  # resolved end of the scan lineage
    stats: ScanStats = field(default_factory=ScanStats)


@dataclass
class Task:
    """
    One unit of scan work over the half-open range [start_index, end_index).

    end_index=None means "tree size read from the log when the scan starts".
    limit caps how many entries this task covers; None means no cap.
    """

    log_uri: str
    batch_size: int
    concurrency: int
    start_index: int
    end_index: Optional[int] = None
    precerts_only: bool = False
    limit: Optional[int] = None
    result: Optional[Result] = None

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {self.concurrency}")
        if self.start_index < 0:
            raise ValueError(f"start_index must be non-negative, got {self.start_index}")
        if self.end_index is not None and self.end_index < self.start_index:
            raise ValueError(
                f"end_index {self.end_index} is before start_index {self.start_index}"
            )
        if self.limit is not None and self.limit <= 0:
            raise ValueError(f"limit must be positive, got {self.limit}")

    def successor(self, start_index: int) -> "Task":
        """Copy of this task starting at start_index, without a result."""
        return replace(self, start_index=start_index, result=None)

    def effective_end(self, tree_size: Optional[int] = None) -> int:
        """
        Exclusive upper bound this task actually scans.

        A fixed end_index is clamped to tree_size when one is given.

        Args:
            tree_size: Current tree size, required when end_index is None
        """
        end = self.end_index
        if end is None:
            if tree_size is None:
                raise ValueError("tree_size is required for a dynamic end_index")
            end = tree_size
        elif tree_size is not None:
            end = min(end, tree_size)
        end = max(end, self.start_index)
        if self.limit is not None:
            end = min(end, self.start_index + self.limit)
        return end
