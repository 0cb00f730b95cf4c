"""
Composition root and driving loop.
"""

import functools
import logging
from typing import Callable, Optional, Protocol, Tuple

from .config import ScanConfig
from .errors import ScanLogError
from .fetcher import ClientFactory, LogScanner
from .models import Result, Task
from .processor import ArtifactProcessor, EntrySummary
from .scheduler import FileCheckpointScheduler, Scheduler

logger = logging.getLogger(__name__)

Starter = Callable[[], Scheduler]


class FatalLogger(Protocol):
    """Single choke point for errors that end the scan."""

    def fatal(self, err: BaseException) -> None:
        ...


class LoggingFatalLogger:
    """Reports fatal errors through the logging module."""

    def __init__(self, name: str = "ct_scanlog"):
        self._logger = logging.getLogger(name)

    def fatal(self, err: BaseException) -> None:
        err_msg = str(err).split("\n")[0]
        self._logger.error(f"Fatal: {type(err).__name__}: {err_msg}", exc_info=err)


class Director:
    """
    Drives scan tasks one at a time until the end bound is reached or a
    collaborator reports a fatal error.
    """

    def __init__(
        self,
        starter: Starter,
        scanner: LogScanner,
        fatal_logger: Optional[FatalLogger] = None,
    ):
        self.starter = starter
        self.scanner = scanner
        self.fatal_logger = fatal_logger or LoggingFatalLogger()
        self.scheduler: Optional[Scheduler] = None

    def start(self) -> Task:
        """
        Build the scheduler and return the initial task.

        Raises:
            ScanLogError: on configuration or checkpoint errors, after they
                          have been reported as fatal
        """
        return self._open()[1]

    def _open(self) -> Tuple[Scheduler, Task]:
        try:
            scheduler = self.starter()
            task = scheduler.initial_task()
        except ScanLogError as e:
            self.fatal_logger.fatal(e)
            raise
        self.scheduler = scheduler
        return scheduler, task

    async def run(self) -> Result:
        """
        Run tasks to completion.

        Returns:
            The last successful Result, or the first failed one. The
            checkpoint is never advanced past a failed task.
        """
        try:
            scheduler, task = self._open()
        except ScanLogError as e:
            return Result(success=False, error=e)

        last = Result(success=True, next_index=task.start_index, end_bound=task.end_index)
        tasks_run = 0
        while True:
            if task.end_index is not None and task.start_index >= task.end_index:
                break

            try:
                result = await self.scanner.scan(task)
            except ScanLogError as e:
                result = Result(success=False, error=e)
            task.result = result

            if not result.success:
                self.fatal_logger.fatal(result.error or RuntimeError("scan failed"))
                return result

            last = result
            tasks_run += 1
            try:
                task = scheduler.next(task)
            except ScanLogError as e:
                self.fatal_logger.fatal(e)
                return Result(success=False, error=e, end_bound=result.end_bound, stats=result.stats)

            if result.end_bound is not None and task.start_index >= result.end_bound:
                break

        logger.info(f"Scan of {task.log_uri} complete at index {task.start_index} after {tasks_run} task(s)")
        return last


def build_director(
    config: ScanConfig,
    client_factory: Optional[ClientFactory] = None,
    on_summary: Optional[Callable[[EntrySummary], None]] = None,
    fatal_logger: Optional[FatalLogger] = None,
) -> Director:
    """Wire processor, scanner and checkpoint scheduler for a configuration."""
    processor = ArtifactProcessor(
        dump_dir=config.dump_dir,
        save_artifacts=config.save_artifacts,
        on_summary=on_summary,
    )
    scanner = LogScanner(
        processor,
        client_factory=client_factory,
        timeout=config.timeout,
        user_agent=config.user_agent,
        transport_options={
            "max_connections": config.max_connections,
            "max_keepalive_connections": config.max_keepalive_connections,
        },
        fetch_retries=config.fetch_retries,
        retry_delay=config.retry_delay,
    )
    starter = functools.partial(FileCheckpointScheduler.start, config)
    return Director(starter, scanner, fatal_logger)
