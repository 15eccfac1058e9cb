"""Pytest configuration and shared fixtures.

Source/replica trees live under tmp_path. Tests pin modification times with
os.utime so change detection never depends on filesystem timestamp
resolution.
"""

import logging
from pathlib import Path

import pytest
from dir_mirror import (
    DiffEngine,
    IgnoreMatcher,
    MirrorConfig,
    MirrorScheduler,
    Replicator,
    SnapshotStore,
)


@pytest.fixture
def source(tmp_path: Path) -> Path:
    """Empty source tree."""
    root = tmp_path / "source"
    root.mkdir()
    return root


@pytest.fixture
def replica(tmp_path: Path) -> Path:
    """Empty replica tree."""
    root = tmp_path / "replica"
    root.mkdir()
    return root


@pytest.fixture
def logger() -> logging.Logger:
    """Propagating logger so caplog sees every record."""
    log = logging.getLogger("dir_mirror_tests")
    log.setLevel(logging.DEBUG)
    log.propagate = True
    return log


@pytest.fixture
def store() -> SnapshotStore:
    return SnapshotStore()


@pytest.fixture
def engine(source: Path, logger: logging.Logger) -> DiffEngine:
    return DiffEngine(source, IgnoreMatcher(), logger)


@pytest.fixture
def replicator(source: Path, replica: Path, logger: logging.Logger) -> Replicator:
    return Replicator(source, replica, IgnoreMatcher(), logger)


@pytest.fixture
def config(source: Path, replica: Path, tmp_path: Path) -> MirrorConfig:
    return MirrorConfig(
        source_root=source,
        replica_root=replica,
        poll_interval_sec=1,
        log_file=tmp_path / "logs" / "mirror.log",
    )


@pytest.fixture
def scheduler(config: MirrorConfig, logger: logging.Logger):
    """Scheduler that is always shut down after the test."""
    sched = MirrorScheduler(config, logger)
    yield sched
    sched.shutdown(timeout=5)
