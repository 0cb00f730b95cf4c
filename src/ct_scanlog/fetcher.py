"""
Batch-fetch pipeline: scans one task's index range with a bounded pool of
asyncio workers and hands every leaf to the processor.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .client import LogClient, parse_log_uri
from .errors import FetchError
from .httpx_ratelimit import RateLimitedTransport
from .models import EntryType, LogEntry, Result, ScanStats, Task
from .processor import Processor

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], LogClient]


class LogScanner:
    """
    Fetches [start_index, end_index) of a task in batches of batch_size, with
    at most `concurrency` batches in flight.

    Entries inside a batch are delivered in ascending index order once the
    whole batch is fetched. Batches may complete, and deliver, out of order.
    Any batch failure fails the task; nothing is reported about the batches
    that did succeed.
    """

    def __init__(
        self,
        processor: Processor,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport_options: Optional[Dict[str, Any]] = None,
        fetch_retries: int = 0,
        retry_delay: float = 10.0,
    ):
        """
        Args:
            processor: Receives certificate and precertificate entries
            client_factory: Builds a LogClient for a log URI. Defaults to a
                            client over a RateLimitedTransport
            timeout: HTTP request timeout
            user_agent: Custom user agent string
            transport_options: Keyword arguments for RateLimitedTransport
            fetch_retries: Retries per batch before the task fails (0 = none)
            retry_delay: Delay between batch retries (seconds)
        """
        self.processor = processor
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport_options = transport_options or {}
        self.fetch_retries = fetch_retries
        self.retry_delay = retry_delay
        self._client_factory = client_factory or self._default_client

    def _default_client(self, log_uri: str) -> LogClient:
        parse_log_uri(log_uri)
        return LogClient(
            log_uri,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=RateLimitedTransport(**self.transport_options),
        )

    async def scan(self, task: Task) -> Result:
        """
        Scan the task's range and return its outcome.

        The tree size is read on every scan; a fixed end_index past the tree
        head is clamped to it and reported as the result's end_bound.

        Raises:
            ClientError: if no client can be built for task.log_uri
        """
        stats = ScanStats()
        if task.end_index is not None and task.start_index >= task.end_index:
            return Result(
                success=True,
                next_index=task.start_index,
                end_bound=task.end_index,
                stats=stats,
            )

        async with self._client_factory(task.log_uri) as client:
            end_bound = task.end_index
            try:
                tree_size = await client.fetch_tree_size()
                if end_bound is None or end_bound > tree_size:
                    end_bound = max(tree_size, task.start_index)
                end = task.effective_end(tree_size)

                if task.start_index < end:
                    logger.info(
                        f"Scanning {task.log_uri} [{task.start_index}, {end}) "
                        f"batch_size={task.batch_size} concurrency={task.concurrency}"
                    )
                    await self._run_workers(client, task, end, stats)
            except FetchError as e:
                err_msg = str(e).split("\n")[0]
                logger.error(
                    f"Scan of {task.log_uri} from {task.start_index} failed after "
                    f"{stats.batches} batch(es): {err_msg}"
                )
                return Result(success=False, error=e, end_bound=end_bound, stats=stats)

        logger.info(
            f"Scanned {task.log_uri} [{task.start_index}, {end}): "
            f"{stats.certs} certs, {stats.precerts} precerts, "
            f"{stats.unknown} unknown, {stats.skipped} skipped"
        )
        return Result(success=True, next_index=end, end_bound=end_bound, stats=stats)

    @staticmethod
    def partition(start: int, end: int, batch_size: int) -> List[Tuple[int, int]]:
        """Split [start, end) into contiguous [batch_start, batch_end) ranges."""
        return [(s, min(s + batch_size, end)) for s in range(start, end, batch_size)]

    async def _run_workers(
        self, client: LogClient, task: Task, end: int, stats: ScanStats
    ) -> None:
        queue: "asyncio.Queue[Tuple[int, int]]" = asyncio.Queue()
        for batch in self.partition(task.start_index, end, task.batch_size):
            queue.put_nowait(batch)

        n_workers = min(task.concurrency, queue.qsize())
        workers = [
            asyncio.create_task(self._worker(client, task, queue, stats))
            for _ in range(n_workers)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self,
        client: LogClient,
        task: Task,
        queue: "asyncio.Queue[Tuple[int, int]]",
        stats: ScanStats,
    ) -> None:
        while True:
            try:
                batch_start, batch_end = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            entries = await self._fetch_batch(client, batch_start, batch_end, stats)
            await self._deliver(task, entries, stats)
            stats.batches += 1

    async def _fetch_batch(
        self, client: LogClient, start: int, end: int, stats: ScanStats
    ) -> List[LogEntry]:
        """Fetch [start, end) completely, retrying up to fetch_retries times."""
        attempt = 0
        while True:
            try:
                return await self._fetch_range(client, start, end)
            except FetchError as e:
                attempt += 1
                if attempt > self.fetch_retries:
                    raise
                stats.retries += 1
                err_msg = str(e).split("\n")[0]
                logger.warning(
                    f"Batch [{start}, {end}) from {client.log_uri} failed "
                    f"(retry {attempt}/{self.fetch_retries}): {err_msg}"
                )
                await asyncio.sleep(self.retry_delay)

    @staticmethod
    async def _fetch_range(client: LogClient, start: int, end: int) -> List[LogEntry]:
        entries: List[LogEntry] = []
        current = start
        while current < end:
            chunk = await client.get_entries(current, end - 1)
            if not chunk:
                raise FetchError(
                    f"{client.log_uri} returned no entries for [{current}, {end - 1}]",
                    current,
                    end - 1,
                )
            entries.extend(chunk)
            current += len(chunk)
        return entries

    async def _deliver(self, task: Task, entries: List[LogEntry], stats: ScanStats) -> None:
        for entry in entries:
            if entry.entry_type == EntryType.X509_ENTRY:
                if task.precerts_only:
                    stats.skipped += 1
                    continue
                stats.certs += 1
                await self._invoke(self.processor.process_cert, entry)
            elif entry.entry_type == EntryType.PRECERT_ENTRY:
                stats.precerts += 1
                await self._invoke(self.processor.process_precert, entry)
            else:
                stats.unknown += 1
                logger.warning(
                    f"Unknown log entry type at index {entry.index}: "
                    f"{entry.parse_error or entry.entry_type}"
                )

    @staticmethod
    async def _invoke(callback: Callable[[LogEntry], Any], entry: LogEntry) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(entry)
            else:
                callback(entry)
        except Exception as e:
            logger.error(
                f"Error in {getattr(callback, '__name__', 'callback')} for entry {entry.index}: {e}",
                exc_info=True,
            )
