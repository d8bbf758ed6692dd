"""
Migration Executor
==================

Runs an edited MigrationPlan against a destination project, phase by phase:

    1. databases -> collections -> attributes -> relationship attributes
       -> indexes -> documents
    2. buckets -> files
    3. functions -> variables -> deployment
    4. users
    5. teams -> memberships

Every create is idempotent: the target is looked up by ID first and only
created when missing; a conflict on create also counts as "already there".
Per-item failures are logged and counted without stopping the run. Setup
failures and cancellation (MigrationStopped) propagate out of run().
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..archive import pack_files, unpack_archive
from ..client.base import Query, ResourceClient
from ..config import ProjectCredentials, TransferConfig
from ..errors import (
    AuthenticationError,
    BackendError,
    ConflictError,
    NotFoundError,
    WorkerDeploymentError,
    error_message,
)
from ..utils import LogSink, format_file_size
from .attributes import IntegerAttribute, effective_kind, parse_attribute
from .cancellation import CancellationToken
from .checkpoint import CheckpointStore
from .models import (
    MigrationPlan,
    MigrationResource,
    MigrationResult,
    MigrationStatus,
    PhaseStats,
    TransferResult,
    TransferStatus,
)
from .streaming import BatchStreamer, DirectFileTransport, FileTransport, ProxyFileTransport
from .worker import RemoteWorkerDispatcher, WorkerTemplate

logger = logging.getLogger(__name__)

PHASES = (
    'databases', 'collections', 'attributes', 'indexes', 'documents',
    'buckets', 'files',
    'functions', 'variables', 'deployments',
    'users',
    'teams', 'memberships',
)

# Bucket fields copied from the source snapshot (REST names)
BUCKET_SETTINGS = (
    'fileSecurity', 'enabled', 'maximumFileSize', 'allowedFileExtensions',
    'compression', 'encryption', 'antivirus',
)

# Function fields copied from the source snapshot (REST names)
FUNCTION_SETTINGS = (
    'execute', 'events', 'schedule', 'timeout', 'enabled', 'logging',
    'entrypoint', 'commands', 'scopes',
)

MEMBERSHIP_REDIRECT_URL = "http://localhost"


class MigrationExecutor:
    """
    Executes a migration plan from one project into another.

    Args:
        source: Client of the source project
        dest: Client of the destination project
        checkpoint: Cursor store of this (source, destination) pair
        config: Page sizes, delays and worker settings
        source_credentials: Needed only for the cloud proxy (worker payloads)
        dest_credentials: Needed only for the cloud proxy
        log: Optional progress callback
    """

    def __init__(
        self,
        source: ResourceClient,
        dest: ResourceClient,
        checkpoint: CheckpointStore,
        config: Optional[TransferConfig] = None,
        source_credentials: Optional[ProjectCredentials] = None,
        dest_credentials: Optional[ProjectCredentials] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.source = source
        self.dest = dest
        self.checkpoint = checkpoint
        self.config = config or TransferConfig()
        self.source_credentials = source_credentials
        self.dest_credentials = dest_credentials
        self.log = LogSink(log, logger)
        self.token = CancellationToken()
        self.phases: Dict[str, PhaseStats] = {}
        self.results: List[TransferResult] = []

    async def run(
        self,
        plan: MigrationPlan,
        resume: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> MigrationResult:
        """
        Execute the plan.

        Args:
            plan: Edited plan (read-only during execution)
            resume: Keep existing cursors; otherwise checkpoints are cleared first
            token: Cancellation token (defaults to the executor's own)

        Returns:
            MigrationResult with status COMPLETED

        Raises:
            MigrationStopped: Cancellation was requested; checkpoints are kept
            BackendError: Setup failure (authentication, container listing/creation)
        """
        if token is not None:
            self.token = token
        start_time = time.time()
        self.phases = {name: PhaseStats() for name in PHASES}
        self.results = []

        self.log('Resuming execution phase from last checkpoint...' if resume else 'Starting execution phase...')
        if not resume:
            self.checkpoint.clear()

        opts = plan.options
        dispatcher: Optional[RemoteWorkerDispatcher] = None
        worker_id: Optional[str] = None
        if opts.use_cloud_proxy and opts.migrate_storage and opts.migrate_files:
            dispatcher, worker_id = await self._deploy_cloud_worker()

        try:
            if worker_id:
                transport: FileTransport = ProxyFileTransport(
                    dispatcher, worker_id, self.source_credentials, self.dest_credentials
                )
            else:
                transport = DirectFileTransport(self.source, self.dest)
            streamer = BatchStreamer(
                self.source, self.dest, self.checkpoint, self.config, self.token, self.log
            )

            if opts.migrate_databases:
                await self._migrate_databases(plan.databases, opts.migrate_documents, streamer)
            self.token.raise_if_cancelled()
            if opts.migrate_storage:
                await self._migrate_storage(plan.buckets, opts.migrate_files, streamer, transport)
            self.token.raise_if_cancelled()
            if opts.migrate_functions:
                await self._migrate_functions(plan.functions)
            self.token.raise_if_cancelled()
            if opts.migrate_users:
                await self._migrate_users(plan.users)
            self.token.raise_if_cancelled()
            if opts.migrate_teams:
                await self._migrate_teams(plan.teams)
        finally:
            if dispatcher and worker_id:
                self.log('Cleaning up cloud worker...')
                await dispatcher.teardown(worker_id)

        self.checkpoint.clear()
        failed = sum(stats.failed for stats in self.phases.values())
        message = 'Migration completed.' if not failed else f'Migration completed with {failed} failed items.'
        self.log(message)
        return MigrationResult(
            success=True,
            status=MigrationStatus.COMPLETED,
            message=message,
            duration_seconds=time.time() - start_time,
            phases=self.phases,
            results=self.results,
        )

    # --- Helpers ---------------------------------------------------------

    async def _deploy_cloud_worker(self):
        if not (self.source_credentials and self.dest_credentials):
            self.log.warning('Cloud proxy requires project credentials. Falling back to direct transfer.')
            return None, None
        dispatcher = RemoteWorkerDispatcher(
            self.dest,
            WorkerTemplate.FILE_TRANSFER,
            name='_studio_migration_worker',
            config=self.config,
            poll_retries=self.config.worker_poll_retries,
            log=self.log,
        )
        self.log('Deploying cloud proxy worker to destination project...')
        try:
            return dispatcher, await dispatcher.deploy()
        except WorkerDeploymentError as e:
            self.log.error(f'ERROR deploying cloud worker, falling back to direct transfer: {e}')
            return None, None

    async def _ensure(
        self,
        phase: str,
        label: str,
        get: Callable[[], Awaitable[Dict[str, Any]]],
        create: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Get-or-create.

        Returns:
            The existing destination resource, or None if it was created now
        """
        try:
            existing = await get()
            self.log(f'  - {label} exists.')
            self.phases[phase].record(TransferStatus.SKIPPED)
            return existing
        except NotFoundError:
            pass
        try:
            await create()
        except ConflictError:
            self.log(f'  - {label} exists.')
            self.phases[phase].record(TransferStatus.SKIPPED)
            return {}
        self.log(f'  - Created {label}.')
        self.phases[phase].record(TransferStatus.MIGRATED)
        return None

    def _fail(self, phase: str, what: str, err: BaseException) -> None:
        self.log.error(f'ERROR {what}: {error_message(err)}')
        self.phases[phase].record(TransferStatus.FAILED)

    def _recorder(self, phase: str) -> Callable[[TransferResult], None]:
        """Per-item sink for a stream; counts survive a stop mid-stream."""
        def record(result: TransferResult) -> None:
            self.phases[phase].record(result.status)
            self.results.append(result)
        return record

    def _log_stream(self, phase: str, results: List[TransferResult]) -> None:
        migrated = sum(1 for r in results if r.status == TransferStatus.MIGRATED)
        if migrated:
            self.log(f'    - Migrated {migrated} {phase}.')

    # --- Databases -------------------------------------------------------

    async def _migrate_databases(self, databases: List[MigrationResource], migrate_documents: bool,
                                 streamer: BatchStreamer) -> None:
        self.log('Migrating Databases...')
        for db in databases:
            self.token.raise_if_cancelled()
            if not db.enabled:
                continue
            self.log(f'Processing Database: {db.source_name} -> {db.target_name}')
            await self._ensure(
                'databases', f'database {db.target_id}',
                lambda: self.dest.get_database(db.target_id),
                lambda: self.dest.create_database(
                    db.target_id, db.target_name, enabled=db.original_data.get('enabled', True)
                ),
            )
            await self._migrate_collections(db, migrate_documents, streamer)

    async def _migrate_collections(self, db: MigrationResource, migrate_documents: bool,
                                   streamer: BatchStreamer) -> None:
        collections = [c for c in db.children if c.enabled]
        # Relationship attributes must point at the renamed targets
        collection_ids = {c.source_id: c.target_id for c in collections}

        for col in collections:
            self.token.raise_if_cancelled()
            data = col.original_data
            await self._ensure(
                'collections', f'collection {col.target_id}',
                lambda: self.dest.get_collection(db.target_id, col.target_id),
                lambda: self.dest.create_collection(
                    db.target_id,
                    col.target_id,
                    col.target_name,
                    permissions=data.get('$permissions') or [],
                    document_security=bool(data.get('documentSecurity', False)),
                    enabled=data.get('enabled', True),
                ),
            )

        for col in collections:
            self.token.raise_if_cancelled()
            await self._migrate_attributes(db, col, collection_ids, relationships=False)
        for col in collections:
            self.token.raise_if_cancelled()
            await self._migrate_attributes(db, col, collection_ids, relationships=True)
        for col in collections:
            self.token.raise_if_cancelled()
            await self._migrate_indexes(db, col)

        if migrate_documents:
            for col in collections:
                self.token.raise_if_cancelled()
                self.log(f'    Migrating documents of {col.source_name}...')
                results = await streamer.stream_documents(
                    db.source_id, col.source_id, db.target_id, col.target_id,
                    on_result=self._recorder('documents'),
                )
                self._log_stream('documents', results)

    async def _migrate_attributes(self, db: MigrationResource, col: MigrationResource,
                                  collection_ids: Dict[str, str], relationships: bool) -> None:
        source_attrs = await self.source.list_attributes(db.source_id, col.source_id)
        dest_attrs = await self.dest.list_attributes(db.target_id, col.target_id)
        existing = {a.get('key') for a in dest_attrs.get('attributes', [])}

        for raw in source_attrs.get('attributes', []):
            self.token.raise_if_cancelled()
            if (effective_kind(raw) == 'relationship') != relationships:
                continue
            key = raw.get('key')
            if key in existing:
                self.phases['attributes'].record(TransferStatus.SKIPPED)
                continue
            try:
                attribute = parse_attribute(raw)
                if relationships:
                    attribute = attribute.retarget(collection_ids)
                await self._create_attribute(db.target_id, col.target_id, attribute)
            except ConflictError:
                self.phases['attributes'].record(TransferStatus.SKIPPED)
                continue
            except AuthenticationError:
                raise
            except Exception as e:
                self._fail('attributes', f'creating attribute {key}', e)
                continue
            existing.add(key)
            self.phases['attributes'].record(TransferStatus.MIGRATED)
            self.log(f'    - Created attribute: {key}')
            # Attributes are built asynchronously by the backend
            await asyncio.sleep(self.config.attribute_delay)

    async def _create_attribute(self, database_id: str, collection_id: str, attribute) -> None:
        try:
            await self.dest.create_attribute(database_id, collection_id, attribute.kind, attribute.params())
        except (ConflictError, AuthenticationError):
            raise
        except BackendError as e:
            if not isinstance(attribute, IntegerAttribute):
                raise
            self.log(f'    - Integer attribute {attribute.key} rejected ({e.message}), retrying without constraints')
            plain = attribute.without_constraints()
            await self.dest.create_attribute(database_id, collection_id, plain.kind, plain.params())

    async def _migrate_indexes(self, db: MigrationResource, col: MigrationResource) -> None:
        source_indexes = await self.source.list_indexes(db.source_id, col.source_id)
        dest_indexes = await self.dest.list_indexes(db.target_id, col.target_id)
        existing = {i.get('key') for i in dest_indexes.get('indexes', [])}

        for idx in source_indexes.get('indexes', []):
            self.token.raise_if_cancelled()
            if idx.get('key') in existing:
                self.phases['indexes'].record(TransferStatus.SKIPPED)
                continue
            try:
                await self.dest.create_index(
                    db.target_id, col.target_id, idx['key'], idx['type'],
                    list(idx.get('attributes') or []), idx.get('orders') or None,
                )
            except ConflictError:
                self.phases['indexes'].record(TransferStatus.SKIPPED)
                continue
            except AuthenticationError:
                raise
            except Exception as e:
                self._fail('indexes', f"creating index {idx.get('key')}", e)
                continue
            self.phases['indexes'].record(TransferStatus.MIGRATED)
            self.log(f"    - Created index: {idx['key']}")

    # --- Storage ---------------------------------------------------------

    async def _migrate_storage(self, buckets: List[MigrationResource], migrate_files: bool,
                               streamer: BatchStreamer, transport: FileTransport) -> None:
        self.log('Migrating Storage...')
        for bucket in buckets:
            self.token.raise_if_cancelled()
            if not bucket.enabled:
                continue
            data = bucket.original_data
            self.log(f'Processing Bucket: {bucket.source_name} -> {bucket.target_name}')
            settings = {key: data.get(key) for key in BUCKET_SETTINGS}
            settings['permissions'] = data.get('$permissions') or []
            await self._ensure(
                'buckets', f'bucket {bucket.target_id}',
                lambda: self.dest.get_bucket(bucket.target_id),
                lambda: self.dest.create_bucket(bucket.target_id, bucket.target_name, settings),
            )
            if migrate_files:
                results = await streamer.stream_files(
                    bucket.source_id, bucket.target_id, transport, on_result=self._recorder('files'),
                )
                self._log_stream('files', results)

    # --- Functions -------------------------------------------------------

    async def _migrate_functions(self, functions: List[MigrationResource]) -> None:
        self.log('Migrating Functions...')
        for func in functions:
            self.token.raise_if_cancelled()
            if not func.enabled:
                continue
            data = func.original_data
            self.log(f'Processing Function: {func.source_name} -> {func.target_name}')
            existing = await self._ensure(
                'functions', f'function {func.target_id}',
                lambda: self.dest.get_function(func.target_id),
                lambda: self.dest.create_function(
                    func.target_id, func.target_name, data.get('runtime'),
                    {key: data.get(key) for key in FUNCTION_SETTINGS},
                ),
            )

            await self._migrate_variables(func)

            if existing and existing.get('deployment'):
                self.log('  - Deployment exists.')
                self.phases['deployments'].record(TransferStatus.SKIPPED)
                continue
            try:
                await self._mirror_deployment(func)
            except AuthenticationError:
                raise
            except Exception as e:
                self._fail('deployments', f'migrating deployment for {func.source_name}', e)

    async def _migrate_variables(self, func: MigrationResource) -> None:
        variables = await self.source.list_variables(func.source_id)
        dest_variables = await self.dest.list_variables(func.target_id)
        existing_keys = {v.get('key') for v in dest_variables.get('variables', [])}

        for var in variables.get('variables', []):
            self.token.raise_if_cancelled()
            try:
                try:
                    await self.dest.get_variable(func.target_id, var['$id'])
                    self.phases['variables'].record(TransferStatus.SKIPPED)
                    continue
                except NotFoundError:
                    pass
                if var.get('key') in existing_keys:
                    self.phases['variables'].record(TransferStatus.SKIPPED)
                    continue
                await self.dest.create_variable(func.target_id, var['key'], var.get('value', ''))
            except ConflictError:
                self.phases['variables'].record(TransferStatus.SKIPPED)
                continue
            except AuthenticationError:
                raise
            except Exception as e:
                self._fail('variables', f"creating variable {var.get('key')}", e)
                continue
            self.phases['variables'].record(TransferStatus.MIGRATED)

    async def _mirror_deployment(self, func: MigrationResource) -> None:
        """Copy the active (or most recent) deployment's code and activate it."""
        data = func.original_data
        deployment_id = data.get('deployment')
        if not deployment_id:
            response = await self.source.list_deployments(
                func.source_id, [Query.limit(1), Query.order_desc('$createdAt')]
            )
            deployments = response.get('deployments') or []
            if deployments:
                deployment_id = deployments[0]['$id']
                self.log(f'  - Found latest deployment: {deployment_id}')
        if not deployment_id:
            self.log('  - Skipped deployment (none found).')
            self.phases['deployments'].record(TransferStatus.SKIPPED)
            return

        try:
            metadata = await self.source.get_deployment(func.source_id, deployment_id)
        except NotFoundError:
            metadata = {}
        entrypoint = metadata.get('entrypoint') or data.get('entrypoint')
        commands = metadata.get('commands') or data.get('commands')

        self.log('  - Downloading source code...')
        files = unpack_archive(await self.source.download_deployment(func.source_id, deployment_id))
        if not files:
            self.log.warning('  - Warning: Deployment appears empty or could not be unpacked. Skipping code upload.')
            self.phases['deployments'].record(TransferStatus.SKIPPED)
            return

        is_node = str(data.get('runtime') or '').startswith('node')
        if not commands and is_node and any(f.name == 'package.json' for f in files):
            commands = 'npm install'
            self.log("  - Auto-detect: forcing build command 'npm install'")

        size = format_file_size(sum(f.size for f in files))
        self.log(f'  - Verified {len(files)} files ({size}). Repacking and deploying...')
        deployment = await self.dest.create_deployment(
            func.target_id, pack_files(files), activate=True, entrypoint=entrypoint, commands=commands,
        )
        self.phases['deployments'].record(TransferStatus.MIGRATED)
        self.log(f"  - Migrated deployment (ID: {deployment.get('$id')}).")

    # --- Users -----------------------------------------------------------

    async def _migrate_users(self, users: List[MigrationResource]) -> None:
        self.log('Migrating Users...')
        for res in users:
            self.token.raise_if_cancelled()
            if not res.enabled:
                continue
            user = res.original_data
            try:
                try:
                    await self.dest.get_user(res.target_id)
                    self.phases['users'].record(TransferStatus.SKIPPED)
                    continue
                except NotFoundError:
                    pass
                await self._create_user(res, user)
            except ConflictError:
                self.phases['users'].record(TransferStatus.SKIPPED)
                continue
            except AuthenticationError:
                raise
            except Exception as e:
                self._fail('users', f"creating user {user.get('email') or res.target_id}", e)
                continue
            self.phases['users'].record(TransferStatus.MIGRATED)

    async def _create_user(self, res: MigrationResource, user: Dict[str, Any]) -> None:
        # target_name falls back to the email when the source user has no name
        name = res.target_name if res.target_name != res.source_name else user.get('name')
        if user.get('password') and user.get('hash') == 'argon2':
            await self.dest.create_argon2_user(res.target_id, user.get('email'), user['password'], name=name or None)
        else:
            await self.dest.create_user(
                res.target_id, email=user.get('email') or None, phone=user.get('phone') or None,
                name=name or None,
            )
        self.log(f"  - Created user {user.get('email') or res.target_id}")

        if user.get('status') is False:
            await self.dest.update_user_status(res.target_id, False)
        if user.get('emailVerification'):
            await self.dest.update_email_verification(res.target_id, True)
        if user.get('phoneVerification'):
            await self.dest.update_phone_verification(res.target_id, True)
        if user.get('labels'):
            await self.dest.update_labels(res.target_id, list(user['labels']))
        if user.get('prefs'):
            await self.dest.update_prefs(res.target_id, dict(user['prefs']))

    # --- Teams -----------------------------------------------------------

    async def _migrate_teams(self, teams: List[MigrationResource]) -> None:
        self.log('Migrating Teams...')
        for team in teams:
            self.token.raise_if_cancelled()
            if not team.enabled:
                continue
            await self._ensure(
                'teams', f'team {team.target_name}',
                lambda: self.dest.get_team(team.target_id),
                lambda: self.dest.create_team(team.target_id, team.target_name),
            )
            members = await self.source.list_memberships(team.source_id)
            for membership in members.get('memberships', []):
                self.token.raise_if_cancelled()
                try:
                    await self.dest.create_membership(
                        team.target_id,
                        list(membership.get('roles') or []),
                        email=membership.get('userEmail') or None,
                        name=membership.get('userName') or None,
                        url=MEMBERSHIP_REDIRECT_URL,
                    )
                except ConflictError:
                    self.phases['memberships'].record(TransferStatus.SKIPPED)
                    continue
                except AuthenticationError:
                    raise
                except Exception as e:
                    self._fail('memberships', f"adding {membership.get('userEmail')} to {team.target_id}", e)
                    continue
                self.phases['memberships'].record(TransferStatus.MIGRATED)
