"""
Migration Service
=================

Façade wiring a (source, destination) project pair together: clients, the
checkpoint store, the planner and the executor.

Usage:
    service = MigrationService(source_credentials, dest_credentials)
    plan = await service.get_migration_plan(MigrationOptions())
    result = await service.start_migration(plan, resume=service.has_checkpoint())
    await service.close()
"""

import logging
import time
from typing import Callable, Optional

from ..client.appwrite import AppwriteClient
from ..client.base import ResourceClient
from ..config import ProjectCredentials, TransferConfig
from ..errors import MigrationStopped, error_message
from ..utils import LogSink
from .cancellation import CancellationToken
from .checkpoint import CheckpointStore, JsonFileKeyValueStore, KeyValueStore
from .executor import MigrationExecutor
from .models import MigrationOptions, MigrationPlan, MigrationResult, MigrationStatus
from .planner import MigrationPlanner

logger = logging.getLogger(__name__)


class MigrationService:
    """
    Runs scans and migrations between two projects.

    Features:
    - Checkpoint/resume through an injected key-value store
    - Force stop from another task via stop()
    - Never raises from start_migration(); the outcome is in the result
    """

    def __init__(
        self,
        source: ProjectCredentials,
        dest: ProjectCredentials,
        config: Optional[TransferConfig] = None,
        store: Optional[KeyValueStore] = None,
        log: Optional[Callable[[str], None]] = None,
        source_client: Optional[ResourceClient] = None,
        dest_client: Optional[ResourceClient] = None,
    ):
        """
        Initialize the service.

        Args:
            source: Source project credentials
            dest: Destination project credentials
            config: Transfer tuning (defaults loaded from TransferConfig())
            store: Checkpoint backend (defaults to the JSON file in config)
            log: Progress callback receiving every log line
            source_client: Pre-built client (tests use an in-memory backend)
            dest_client: Pre-built client
        """
        self.source_credentials = source
        self.dest_credentials = dest
        self.config = config or TransferConfig()
        self.log_callback = log
        self.log = LogSink(log, logger)

        self.source = source_client or AppwriteClient(source, timeout=self.config.request_timeout)
        self.dest = dest_client or AppwriteClient(dest, timeout=self.config.request_timeout)

        self.store = store or JsonFileKeyValueStore(self.config.checkpoint_file)
        self.checkpoint = CheckpointStore(self.store, source.project_id, dest.project_id)
        self.token = CancellationToken()

    async def close(self) -> None:
        await self.source.close()
        await self.dest.close()

    async def __aenter__(self) -> 'MigrationService':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def has_checkpoint(self) -> bool:
        return self.checkpoint.has_checkpoint()

    def clear_checkpoint(self) -> None:
        self.checkpoint.clear()
        self.log(f"Checkpoint cleared ({self.source_credentials.label} -> {self.dest_credentials.label}).")

    def stop(self) -> None:
        """Request a force stop of the running migration."""
        self.token.cancel("Force stop requested. Finishing current item...")

    async def get_migration_plan(self, options: Optional[MigrationOptions] = None) -> MigrationPlan:
        """Scan the source project. Errors propagate."""
        planner = MigrationPlanner(self.source, self.config, self.log_callback)
        return await planner.scan(options)

    async def start_migration(self, plan: MigrationPlan, resume: bool = False) -> MigrationResult:
        """
        Execute a plan.

        Returns:
            MigrationResult with status COMPLETED, STOPPED or FAILED
        """
        start_time = time.time()
        self.token = CancellationToken()
        executor = MigrationExecutor(
            self.source,
            self.dest,
            self.checkpoint,
            config=self.config,
            source_credentials=self.source_credentials,
            dest_credentials=self.dest_credentials,
            log=self.log_callback,
        )

        try:
            return await executor.run(plan, resume=resume, token=self.token)
        except MigrationStopped as e:
            self.log.warning(str(e))
            return MigrationResult(
                success=False,
                status=MigrationStatus.STOPPED,
                message=str(e),
                duration_seconds=time.time() - start_time,
                phases=executor.phases,
                results=executor.results,
            )
        except Exception as e:
            self.log.error(f"Migration failed: {error_message(e)}")
            return MigrationResult(
                success=False,
                status=MigrationStatus.FAILED,
                message=f"Migration failed: {error_message(e)}",
                duration_seconds=time.time() - start_time,
                phases=executor.phases,
                results=executor.results,
            )
