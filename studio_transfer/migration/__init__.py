"""
Studio Transfer Migration Module
================================

Moves databases, storage, functions, users and teams between projects.

Components:
    - MigrationPlanner: Scans a source project into an editable plan
    - MigrationExecutor: Runs a plan phase by phase with checkpoint/resume
    - MigrationService: Façade wiring clients, checkpoints and executor
    - CheckpointStore: Per-stream cursors over an injected key-value store
    - RemoteWorkerDispatcher: Ephemeral worker functions for proxied transfers
    - BucketConsolidation / DocumentTransfer: Worker-dispatched batch flows
"""

from .models import (
    MigrationOptions,
    MigrationPlan,
    MigrationResource,
    MigrationResult,
    MigrationStatus,
    PhaseStats,
    ResourceType,
    TransferResult,
    TransferStatus,
)
from .cancellation import CancellationToken
from .checkpoint import (
    CheckpointStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from .planner import MigrationPlanner
from .executor import MigrationExecutor
from .service import MigrationService
from .worker import RemoteWorkerDispatcher, WorkerResponse, WorkerTemplate
from .transfers import BucketConsolidation, BucketTarget, CollectionMapping, DocumentTransfer
from .report import TransferReport

__all__ = [
    'MigrationOptions',
    'MigrationPlan',
    'MigrationResource',
    'MigrationResult',
    'MigrationStatus',
    'PhaseStats',
    'ResourceType',
    'TransferResult',
    'TransferStatus',
    'CancellationToken',
    'CheckpointStore',
    'JsonFileKeyValueStore',
    'KeyValueStore',
    'MemoryKeyValueStore',
    'MigrationPlanner',
    'MigrationExecutor',
    'MigrationService',
    'RemoteWorkerDispatcher',
    'WorkerResponse',
    'WorkerTemplate',
    'BucketConsolidation',
    'BucketTarget',
    'CollectionMapping',
    'DocumentTransfer',
    'TransferReport',
]
