"""Shared fixtures: fast transfer config, credentials and in-memory projects."""

import pytest

from fake_backend import FakeProject
from studio_transfer.config import TransferConfig
from studio_transfer.migration.checkpoint import CheckpointStore, MemoryKeyValueStore


@pytest.fixture
def config(tmp_path):
    """No sleeping between attribute creates or worker polls."""
    return TransferConfig(
        attribute_delay=0,
        worker_poll_interval=0,
        worker_poll_retries=3,
        transfer_poll_retries=3,
        checkpoint_file=str(tmp_path / "checkpoints.json"),
    )


@pytest.fixture
def source():
    return FakeProject("src")


@pytest.fixture
def dest():
    return FakeProject("dst")


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def checkpoint(store):
    return CheckpointStore(store, "src", "dst")
