"""
Worker-Dispatched Batch Transfers
=================================

Two flows that run an ephemeral worker inside the *active* project and
fan out one worker execution per item, a page at a time:

- BucketConsolidation: copy or move every file of several buckets into
  one destination bucket (same or another project)
- DocumentTransfer: copy or move documents between collection pairs

Both return a TransferReport. The worker is deleted in a ``finally``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence

from ..client.base import ResourceClient
from ..config import ProjectCredentials, TransferConfig
from ..errors import ConfigError, WorkerInvocationError, error_message
from ..utils import LogSink
from .cancellation import CancellationToken
from .models import TransferResult, TransferStatus
from .report import TransferReport
from .streaming import page_queries, strip_system_fields
from .worker import (
    RemoteWorkerDispatcher,
    WorkerTemplate,
    document_transfer_payload,
    file_transfer_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class BucketTarget:
    """Destination of a consolidation (project + bucket)."""
    credentials: ProjectCredentials
    bucket_id: str


@dataclass
class CollectionMapping:
    """One source collection copied into one destination collection."""
    source_db_id: str
    source_collection_id: str
    dest_db_id: str
    dest_collection_id: str

    @property
    def complete(self) -> bool:
        return all((self.source_db_id, self.source_collection_id, self.dest_db_id, self.dest_collection_id))

    @classmethod
    def parse(cls, text: str) -> 'CollectionMapping':
        """
        Parse 'srcDb/srcCol:dstDb/dstCol' (CLI form).

        Examples:
            >>> CollectionMapping.parse("db1/posts:db2/articles").dest_collection_id
            'articles'
        """
        try:
            source, dest = text.split(':', 1)
            source_db, source_col = source.split('/', 1)
            dest_db, dest_col = dest.split('/', 1)
        except ValueError as e:
            raise ConfigError(f"Invalid mapping '{text}', expected srcDb/srcCol:dstDb/dstCol") from e
        return cls(source_db.strip(), source_col.strip(), dest_db.strip(), dest_col.strip())


class _WorkerBatch:
    """Shared plumbing: worker lifecycle, page fan-out, logging."""

    template: WorkerTemplate
    worker_name: str
    # Outcomes after which the worker has deleted the source item in move mode
    moved_statuses: FrozenSet[TransferStatus] = frozenset()

    def __init__(
        self,
        client: ResourceClient,
        credentials: ProjectCredentials,
        config: Optional[TransferConfig] = None,
        token: Optional[CancellationToken] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.client = client
        self.credentials = credentials
        self.config = config or TransferConfig()
        self.token = token or CancellationToken()
        self.log = LogSink(log, logger)
        self.dispatcher = RemoteWorkerDispatcher(
            client,
            self.template,
            name=self.worker_name,
            config=self.config,
            poll_retries=self.config.transfer_poll_retries,
            log=self.log,
        )

    async def _invoke(self, worker_id: str, payload: dict, item_id: str, container_id: str) -> TransferResult:
        try:
            response = await self.dispatcher.invoke(worker_id, payload)
        except WorkerInvocationError as e:
            self.log.error(f"Failed to transfer {item_id}: {error_message(e)}")
            return TransferResult(item_id, container_id, TransferStatus.FAILED, error_message(e))
        return TransferResult(response.id or item_id, container_id, response.status)

    async def _transfer_all(
        self,
        worker_id: str,
        fetch: Callable[[List[str]], Awaitable[Dict[str, Any]]],
        items_key: str,
        container_id: str,
        make_payload: Callable[[Dict[str, Any]], dict],
        report: TransferReport,
        delete_originals: bool,
    ) -> None:
        """
        Page through a container and invoke the worker once per item.

        In move mode the items just moved are gone from the source, so the
        next page is anchored on the last item of this page that is still
        there (failed or kept), or re-read from the previous anchor when the
        whole page was moved.
        """
        page_size = self.config.transfer_page_size
        cursor: Optional[str] = None
        processed = 0
        while True:
            self.token.raise_if_cancelled()
            response = await fetch(page_queries(page_size, cursor))
            items = response.get(items_key) or []
            if not items:
                return

            results = await asyncio.gather(*(
                self._invoke(worker_id, make_payload(item), item['$id'], container_id)
                for item in items
            ))
            report.extend(results)
            processed += len(results)
            self.log(f"  {container_id}: {processed} {items_key} processed")

            if not delete_originals:
                cursor = items[-1]['$id']
            else:
                remaining = [
                    item['$id'] for item, result in zip(items, results)
                    if result.status not in self.moved_statuses
                ]
                if remaining:
                    cursor = remaining[-1]
            if len(items) < page_size:
                return


class BucketConsolidation(_WorkerBatch):
    """
    Merge files of several buckets into one destination bucket.

    Usage:
        flow = BucketConsolidation(client, credentials)
        report = await flow.run(['avatars', 'uploads'], BucketTarget(credentials, 'all-files'))
    """

    template = WorkerTemplate.FILE_TRANSFER
    worker_name = "_studio_transfer_worker"
    # The file worker deletes the source after a copy and after a conflict skip
    moved_statuses = frozenset({TransferStatus.MIGRATED, TransferStatus.SKIPPED})

    def validate(self, source_bucket_ids: Sequence[str], dest: BucketTarget) -> None:
        if not source_bucket_ids:
            raise ConfigError("Select at least one source bucket.")
        if not dest.bucket_id:
            raise ConfigError("Select a destination bucket.")
        same_project = (
            dest.credentials.endpoint == self.credentials.endpoint
            and dest.credentials.project_id == self.credentials.project_id
        )
        if same_project and dest.bucket_id in source_bucket_ids:
            raise ConfigError("Destination bucket cannot be one of the source buckets.")

    async def run(self, source_bucket_ids: Sequence[str], dest: BucketTarget,
                  delete_originals: bool = False) -> TransferReport:
        """
        Copy (or move) every file of the source buckets.

        Raises:
            ConfigError: Invalid selection
            WorkerDeploymentError: Worker could not be deployed
            MigrationStopped: Cancellation requested
        """
        self.validate(source_bucket_ids, dest)
        report = TransferReport(self.credentials.label, self.credentials.project_id)

        async with self.dispatcher.deployed() as worker_id:
            self.log("Worker ready. Starting batch processing...")
            for bucket_id in source_bucket_ids:
                self.token.raise_if_cancelled()
                self.log(f"Processing bucket: {bucket_id}")

                def fetch(queries, bucket_id=bucket_id):
                    return self.client.list_files(bucket_id, queries)

                def make_payload(file, bucket_id=bucket_id):
                    return file_transfer_payload(
                        self.credentials, dest.credentials, bucket_id, dest.bucket_id,
                        file['$id'], delete_source=delete_originals,
                    )

                await self._transfer_all(worker_id, fetch, 'files', bucket_id, make_payload,
                                         report, delete_originals)

        self.log(f"Consolidation finished: {report.count(TransferStatus.MIGRATED)} migrated, "
                 f"{report.count(TransferStatus.SKIPPED)} skipped, {len(report.errors)} failed.")
        return report


class DocumentTransfer(_WorkerBatch):
    """
    Copy (or move) documents between collections, possibly across projects.

    Usage:
        flow = DocumentTransfer(client, credentials)
        report = await flow.run([CollectionMapping('db1', 'posts', 'db2', 'articles')], dest_credentials)
    """

    template = WorkerTemplate.DOCUMENT_TRANSFER
    worker_name = "_studio_doc_transfer_worker"
    moved_statuses = frozenset({TransferStatus.MIGRATED})

    def validate(self, mappings: Sequence[CollectionMapping]) -> None:
        if not mappings or not all(m.complete for m in mappings):
            raise ConfigError("Please complete all mappings.")

    async def run(self, mappings: Sequence[CollectionMapping], dest: Optional[ProjectCredentials] = None,
                  delete_originals: bool = False) -> TransferReport:
        """
        Transfer every document of each mapping's source collection.

        Args:
            mappings: Source/destination collection pairs
            dest: Destination project (defaults to the active project)
            delete_originals: Delete source documents after a successful copy
        """
        self.validate(mappings)
        dest = dest or self.credentials
        report = TransferReport(self.credentials.label, self.credentials.project_id)

        async with self.dispatcher.deployed() as worker_id:
            for mapping in mappings:
                self.token.raise_if_cancelled()
                self.log(f"Processing collection: {mapping.source_collection_id}")

                def fetch(queries, mapping=mapping):
                    return self.client.list_documents(mapping.source_db_id, mapping.source_collection_id, queries)

                def make_payload(doc, mapping=mapping):
                    return document_transfer_payload(
                        self.credentials, dest,
                        mapping.source_db_id, mapping.source_collection_id,
                        mapping.dest_db_id, mapping.dest_collection_id,
                        doc['$id'], strip_system_fields(doc),
                        permissions=doc.get('$permissions'),
                        delete_source=delete_originals,
                    )

                await self._transfer_all(worker_id, fetch, 'documents', mapping.source_collection_id,
                                         make_payload, report, delete_originals)

        self.log("Operation finished.")
        return report
