"""
Scan scheduling: a durable cursor over the log's index space.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .config import ScanConfig
from .errors import CheckpointError
from .models import Task

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Proposes tasks. Never decides when the scan is finished."""

    def initial_task(self) -> Task:
        ...

    def next(self, completed: Task) -> Task:
        ...


def _checkpoint_int(data: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = data.get(key, default)
    if value is None:
        raise CheckpointError(f"Checkpoint is missing {key!r}")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise CheckpointError(f"Checkpoint field {key!r} must be a non-negative integer, got {value!r}")
    return value


@dataclass
class Checkpoint:
    """Persisted scheduler state. end=0 means the dynamic tree-size bound."""

    log_uri: str
    current_batch: int
    batch_size: int
    save_data: str
    start: int
    end: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uri": self.log_uri,
            "current": self.current_batch,
            "batchSize": self.batch_size,
            "saveData": self.save_data,
            "start": self.start,
            "end": self.end,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], save_data: str) -> "Checkpoint":
        """
        Decode a checkpoint. Unlike the scan configuration, nothing here is
        defaulted silently: a damaged file must stop the scan.

        Args:
            data: Decoded JSON object
            save_data: Path the checkpoint was read from; later writes go here
        """
        if not isinstance(data, dict):
            raise CheckpointError(f"Checkpoint must be a JSON object, got {type(data).__name__}")
        log_uri = data.get("uri")
        if not log_uri or not isinstance(log_uri, str):
            raise CheckpointError("Checkpoint is missing 'uri'")

        checkpoint = cls(
            log_uri=log_uri,
            current_batch=_checkpoint_int(data, "current", 0),
            batch_size=_checkpoint_int(data, "batchSize"),
            save_data=save_data,
            start=_checkpoint_int(data, "start"),
            end=_checkpoint_int(data, "end", 0),
        )
        if checkpoint.batch_size == 0:
            raise CheckpointError("Checkpoint batchSize must be positive")
        if checkpoint.end and checkpoint.start > checkpoint.end:
            raise CheckpointError(
                f"Checkpoint start ({checkpoint.start}) is after end ({checkpoint.end})"
            )
        return checkpoint

    @classmethod
    def load(cls, path: str) -> Optional["Checkpoint"]:
        """
        Read a checkpoint file.

        Returns:
            The checkpoint, or None if the file does not exist

        Raises:
            CheckpointError: if the file exists but cannot be read or decoded
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointError(f"Cannot read checkpoint {path}: {e}") from e

        try:
            data = json.loads(content)
        except ValueError as e:
            raise CheckpointError(f"Corrupt checkpoint {path}: {e}") from e
        return cls.from_dict(data, save_data=path)

    def save(self) -> None:
        """Atomically replace the checkpoint file."""
        target = Path(self.save_data)
        directory = target.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self.to_dict(), f)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CheckpointError(f"Cannot write checkpoint {self.save_data}: {e}") from e


class FileCheckpointScheduler:
    """
    Scheduler backed by a JSON checkpoint file.

    Each task covers at most batch_size * concurrency entries, so the
    checkpoint is rewritten after every round of parallel batches. The cursor
    advances to the index the scan actually reached (Result.next_index); only
    when a completed task carries no such index does it fall back to
    advancing by one batch width.
    """

    def __init__(self, checkpoint: Checkpoint, concurrency: int = 1, precerts_only: bool = False):
        self.checkpoint = checkpoint
        self.concurrency = concurrency
        self.precerts_only = precerts_only

    @classmethod
    def start(cls, config: ScanConfig) -> "FileCheckpointScheduler":
        """
        Resume from config.save_data if it exists, otherwise start fresh from
        the configuration. A fresh state is persisted before it is used.

        Raises:
            CheckpointError: if an existing checkpoint is corrupt or the fresh
                             one cannot be written
        """
        checkpoint = Checkpoint.load(config.save_data)
        if checkpoint is not None:
            if checkpoint.log_uri != config.log_uri:
                logger.warning(
                    f"Checkpoint {config.save_data} is for {checkpoint.log_uri}, "
                    f"not the configured {config.log_uri}; resuming the checkpoint"
                )
            logger.info(
                f"Resuming {checkpoint.log_uri} at index {checkpoint.start} "
                f"(batch {checkpoint.current_batch})"
            )
        else:
            checkpoint = Checkpoint(
                log_uri=config.log_uri,
                current_batch=0,
                batch_size=config.batch_size,
                save_data=config.save_data,
                start=config.start,
                end=config.end,
            )
            checkpoint.save()
            logger.info(f"Starting {checkpoint.log_uri} at index {checkpoint.start}")

        return cls(checkpoint, concurrency=config.concurrency, precerts_only=config.precerts_only)

    def initial_task(self) -> Task:
        cp = self.checkpoint
        return Task(
            log_uri=cp.log_uri,
            batch_size=cp.batch_size,
            concurrency=self.concurrency,
            start_index=cp.start,
            end_index=cp.end or None,
            precerts_only=self.precerts_only,
            limit=cp.batch_size * self.concurrency,
        )

    def next(self, completed: Task) -> Task:
        """
        Persist the progress of a completed task and return its successor.

        A failed task is handed back unchanged and nothing is persisted.
        """
        result = completed.result
        if result is not None and not result.success:
            logger.warning(
                f"Task at index {completed.start_index} failed; checkpoint stays at "
                f"{self.checkpoint.start}"
            )
            return completed.successor(completed.start_index)

        if result is not None and result.next_index is not None:
            scanned_to = result.next_index
        else:
            scanned_to = completed.start_index + completed.batch_size
        if completed.end_index is not None:
            scanned_to = min(scanned_to, completed.end_index)

        scanned = max(scanned_to - completed.start_index, 0)
        new_start = max(self.checkpoint.start, scanned_to)

        checkpoint = replace(
            self.checkpoint,
            current_batch=self.checkpoint.current_batch + -(-scanned // completed.batch_size),
            start=new_start,
        )
        checkpoint.save()
        self.checkpoint = checkpoint
        logger.debug(
            f"Checkpoint {checkpoint.save_data}: start={new_start} "
            f"batch={checkpoint.current_batch}"
        )

        return completed.successor(new_start)
