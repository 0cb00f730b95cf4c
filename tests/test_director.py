"""End-to-end tests for the Director driving loop."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import LOG_URI, FakeLog, cert_leaf, make_cert, mixed_log, read_checkpoint
from ct_scanlog.config import ScanConfig
from ct_scanlog.director import Director, build_director
from ct_scanlog.errors import CheckpointError, ClientError, FetchError
from ct_scanlog.fetcher import LogScanner
from ct_scanlog.scheduler import FileCheckpointScheduler


def _config(tmp_path: Path, **overrides) -> ScanConfig:
    values = dict(
        log_uri=LOG_URI,
        save_data=str(tmp_path / "checkpoint.json"),
        batch_size=5,
        concurrency=2,
        start=0,
        end=10,
        dump_dir=str(tmp_path / "dump"),
    )
    values.update(overrides)
    return ScanConfig(**values)


def _director(config, log, processor, fatal_logger) -> Director:
    scanner = LogScanner(processor, client_factory=log.client_factory)
    return Director(lambda: FileCheckpointScheduler.start(config), scanner, fatal_logger)


class TestDirector:

    @pytest.mark.asyncio
    async def test_scan_to_end_delivers_every_entry_once(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path)
        log = FakeLog(mixed_log(6, 4))

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert result.success
        assert sorted(recording_processor.certs) == [0, 2, 4, 6, 8, 9]
        assert sorted(recording_processor.precerts) == [1, 3, 5, 7]
        assert fatal_logger.errors == []
        checkpoint = read_checkpoint(Path(config.save_data))
        assert checkpoint["start"] == 10
        assert checkpoint["current"] == 2

    @pytest.mark.asyncio
    async def test_many_tasks_cover_range_without_gaps_or_repeats(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, batch_size=3, concurrency=2, start=1, end=23)
        log = FakeLog([cert_leaf(make_cert()) for _ in range(30)])

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert result.success
        assert sorted(recording_processor.certs) == list(range(1, 23))
        assert read_checkpoint(Path(config.save_data))["start"] == 23

    @pytest.mark.asyncio
    async def test_dynamic_end_scans_to_tree_size(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, end=0, batch_size=4, concurrency=1)
        log = FakeLog([cert_leaf(make_cert()) for _ in range(9)])

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert result.success
        assert result.end_bound == 9
        assert sorted(recording_processor.certs) == list(range(9))
        assert read_checkpoint(Path(config.save_data))["start"] == 9

    @pytest.mark.asyncio
    async def test_fixed_end_past_tree_size_commits_progress(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, start=0, end=10, batch_size=5, concurrency=2)
        log = FakeLog([cert_leaf(make_cert()) for _ in range(7)])

        first = await _director(config, log, recording_processor, fatal_logger).run()

        assert first.success
        assert first.end_bound == 7
        assert fatal_logger.errors == []
        assert sorted(recording_processor.certs) == list(range(7))
        checkpoint = read_checkpoint(Path(config.save_data))
        assert checkpoint["start"] == 7
        assert checkpoint["end"] == 10

        log.leaves.extend(cert_leaf(make_cert()) for _ in range(5))
        second = await _director(config, log, recording_processor, fatal_logger).run()

        assert second.success
        assert sorted(recording_processor.certs) == list(range(10))
        assert read_checkpoint(Path(config.save_data))["start"] == 10

    @pytest.mark.asyncio
    async def test_already_finished_checkpoint_does_nothing(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, start=10, end=10)
        log = FakeLog(mixed_log(6, 4))

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert result.success
        assert log.requests == []

    @pytest.mark.asyncio
    async def test_restart_resumes_after_failure(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, batch_size=5, concurrency=1, end=15)
        log = FakeLog([cert_leaf(make_cert()) for _ in range(15)])
        log.fail_starts = {10}

        first = await _director(config, log, recording_processor, fatal_logger).run()

        assert not first.success
        assert isinstance(first.error, FetchError)
        assert fatal_logger.errors == [first.error]
        assert read_checkpoint(Path(config.save_data))["start"] == 10

        log.fail_starts.clear()
        second = await _director(config, log, recording_processor, fatal_logger).run()

        assert second.success
        assert recording_processor.certs == list(range(15))

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_checkpoint_untouched(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, batch_size=5, concurrency=2)
        log = FakeLog(mixed_log(6, 4))
        log.fail_starts = {5}

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert not result.success
        assert len(fatal_logger.errors) == 1
        checkpoint = read_checkpoint(Path(config.save_data))
        assert checkpoint["start"] == 0
        assert checkpoint["current"] == 0

    @pytest.mark.asyncio
    async def test_corrupt_checkpoint_is_reported(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path)
        Path(config.save_data).write_text("{broken")
        log = FakeLog(mixed_log(6, 4))

        result = await _director(config, log, recording_processor, fatal_logger).run()

        assert not result.success
        assert isinstance(result.error, CheckpointError)
        assert fatal_logger.errors == [result.error]
        assert log.requests == []

    @pytest.mark.asyncio
    async def test_client_construction_failure_is_fatal(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, log_uri="ct.example.test/no-scheme")
        scanner = LogScanner(recording_processor)
        director = Director(lambda: FileCheckpointScheduler.start(config), scanner, fatal_logger)

        result = await director.run()

        assert not result.success
        assert isinstance(result.error, ClientError)
        assert fatal_logger.errors == [result.error]

    def test_start_returns_initial_task(self, tmp_path, recording_processor, fatal_logger):
        config = _config(tmp_path, start=3)
        director = _director(config, FakeLog([]), recording_processor, fatal_logger)

        task = director.start()

        assert task.start_index == 3
        assert task.end_index == 10
        assert director.scheduler.checkpoint.start == 3


class TestBuildDirector:

    @pytest.mark.asyncio
    async def test_wires_processor_and_dumps_artifacts(self, tmp_path, fatal_logger):
        config = _config(tmp_path, end=4, batch_size=2)
        log = FakeLog(mixed_log(2, 2))
        summaries = []

        director = build_director(
            config,
            client_factory=log.client_factory,
            on_summary=summaries.append,
            fatal_logger=fatal_logger,
        )
        result = await director.run()

        assert result.success
        assert sorted(s.index for s in summaries) == [0, 1, 2, 3]
        assert {s.classification for s in summaries} == {"cert", "precert"}
        dumped = sorted(p.name for p in (tmp_path / "dump").iterdir())
        assert "cert-00000000000000-leaf.der" in dumped
        assert "precert-00000000000001-precert.der" in dumped
        assert "cert-00000000000000-00.der" in dumped
