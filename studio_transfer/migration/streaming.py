"""
Document and File Streaming
===========================

Cursor-after pagination over a collection's documents or a bucket's files,
ordered by creation time, with a per-item create-or-skip and a checkpoint
cursor written after every item.

A crash between an item's create and its cursor write means that one item
is seen again on resume; the existence check turns it into a skip.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..client.base import Query, ResourceClient
from ..config import ProjectCredentials, TransferConfig
from ..errors import AuthenticationError, ConflictError, NotFoundError, error_message
from ..utils import LogSink
from .cancellation import CancellationToken
from .checkpoint import CheckpointStore, document_stream_key, file_stream_key
from .models import TransferResult, TransferStatus
from .worker import RemoteWorkerDispatcher, file_transfer_payload

logger = logging.getLogger(__name__)

# Metadata the backend assigns; never sent back on create
SYSTEM_FIELDS = (
    '$id', '$createdAt', '$updatedAt', '$permissions',
    '$databaseId', '$collectionId', '$sequence', '$tenant',
)


def strip_system_fields(document: Dict[str, Any]) -> Dict[str, Any]:
    """Return the document's user data only."""
    return {k: v for k, v in document.items() if k not in SYSTEM_FIELDS}


def page_queries(page_size: int, cursor: Optional[str] = None) -> List[str]:
    """Queries for one page, oldest first, after the cursor item if any."""
    queries = [Query.limit(page_size), Query.order_asc('$createdAt')]
    if cursor:
        queries.append(Query.cursor_after(cursor))
    return queries


async def iter_pages(
    fetch: Callable[[List[str]], Awaitable[Dict[str, Any]]],
    items_key: str,
    page_size: int,
    cursor: Optional[str] = None,
    token: Optional[CancellationToken] = None,
) -> AsyncIterator[List[Dict[str, Any]]]:
    """
    Yield pages of a list endpoint, oldest first.

    Args:
        fetch: Coroutine taking query strings and returning the list response
        items_key: Response key holding the items ('documents', 'files')
        page_size: Items per request
        cursor: Resume after this item ID
        token: Checked before every request

    Stops on an empty page or a page shorter than page_size.
    """
    while True:
        if token:
            token.raise_if_cancelled()
        response = await fetch(page_queries(page_size, cursor))
        items = response.get(items_key) or []
        if not items:
            return
        yield items

        cursor = items[-1]['$id']
        if len(items) < page_size:
            return


class FileTransport(ABC):
    """Moves the bytes of one file into the destination bucket."""

    @abstractmethod
    async def transfer(self, file: Dict[str, Any], source_bucket_id: str, dest_bucket_id: str) -> TransferStatus:
        ...


class DirectFileTransport(FileTransport):
    """Download from the source, multipart upload to the destination."""

    def __init__(self, source: ResourceClient, dest: ResourceClient):
        self.source = source
        self.dest = dest

    async def transfer(self, file, source_bucket_id, dest_bucket_id):
        content = await self.source.download_file(source_bucket_id, file['$id'])
        await self.dest.upload_file(
            dest_bucket_id,
            file['$id'],
            file.get('name') or file['$id'],
            content,
            permissions=file.get('$permissions'),
            mime_type=file.get('mimeType'),
        )
        return TransferStatus.MIGRATED


class ProxyFileTransport(FileTransport):
    """Let a worker running next to the destination copy the file."""

    def __init__(self, dispatcher: RemoteWorkerDispatcher, worker_id: str,
                 source: ProjectCredentials, dest: ProjectCredentials):
        self.dispatcher = dispatcher
        self.worker_id = worker_id
        self.source = source
        self.dest = dest

    async def transfer(self, file, source_bucket_id, dest_bucket_id):
        payload = file_transfer_payload(
            self.source, self.dest, source_bucket_id, dest_bucket_id, file['$id']
        )
        response = await self.dispatcher.invoke(self.worker_id, payload)
        return response.status


class BatchStreamer:
    """
    Streams documents and files from source to destination.

    Items are processed one at a time so the saved cursor always points at
    the last item whose create-or-skip was attempted.
    """

    def __init__(
        self,
        source: ResourceClient,
        dest: ResourceClient,
        checkpoint: Optional[CheckpointStore] = None,
        config: Optional[TransferConfig] = None,
        token: Optional[CancellationToken] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.source = source
        self.dest = dest
        self.checkpoint = checkpoint
        self.config = config or TransferConfig()
        self.token = token or CancellationToken()
        self.log = LogSink(log, logger)

    def _resume_cursor(self, stream_key: str) -> Optional[str]:
        if not self.checkpoint:
            return None
        cursor = self.checkpoint.get_cursor(stream_key)
        if cursor:
            self.log(f"  Resuming {stream_key} after {cursor}")
        return cursor

    def _advance(self, stream_key: str, item_id: str) -> None:
        if self.checkpoint:
            self.checkpoint.save_cursor(stream_key, item_id)

    @staticmethod
    def _emit(results: List[TransferResult], result: TransferResult,
              on_result: Optional[Callable[[TransferResult], None]]) -> None:
        results.append(result)
        if on_result:
            on_result(result)

    # --- Documents -------------------------------------------------------

    async def stream_documents(
        self,
        source_db_id: str,
        source_collection_id: str,
        dest_db_id: str,
        dest_collection_id: str,
        on_result: Optional[Callable[[TransferResult], None]] = None,
    ) -> List[TransferResult]:
        """
        Copy every document of a collection, resuming from its checkpoint.

        on_result is called with each item's outcome as soon as it is known,
        so callers keep partial counts when a stop unwinds the stream.
        """
        stream_key = document_stream_key(source_collection_id)
        results: List[TransferResult] = []

        def fetch(queries):
            return self.source.list_documents(source_db_id, source_collection_id, queries)

        pages = iter_pages(
            fetch, 'documents', self.config.document_page_size,
            cursor=self._resume_cursor(stream_key), token=self.token,
        )
        async for page in pages:
            for document in page:
                self.token.raise_if_cancelled()
                status, error = await self._copy_document(document, dest_db_id, dest_collection_id)
                self._emit(results, TransferResult(document['$id'], source_collection_id, status, error), on_result)
                self._advance(stream_key, document['$id'])
            self.log(f"    {source_collection_id}: {len(results)} documents processed")

        return results

    async def _copy_document(self, document, dest_db_id, dest_collection_id):
        document_id = document['$id']
        try:
            try:
                await self.dest.get_document(dest_db_id, dest_collection_id, document_id)
                return TransferStatus.SKIPPED, None
            except NotFoundError:
                pass
            await self.dest.create_document(
                dest_db_id,
                dest_collection_id,
                document_id,
                strip_system_fields(document),
                permissions=document.get('$permissions'),
            )
            return TransferStatus.MIGRATED, None
        except ConflictError:
            return TransferStatus.SKIPPED, None
        except AuthenticationError:
            raise
        except Exception as e:
            self.log.error(f"ERROR document {document_id}: {error_message(e)}")
            return TransferStatus.FAILED, error_message(e)

    # --- Files -----------------------------------------------------------

    async def stream_files(
        self,
        source_bucket_id: str,
        dest_bucket_id: str,
        transport: Optional[FileTransport] = None,
        on_result: Optional[Callable[[TransferResult], None]] = None,
    ) -> List[TransferResult]:
        """Copy every file of a bucket through the given transport (direct by default)."""
        transport = transport or DirectFileTransport(self.source, self.dest)
        stream_key = file_stream_key(source_bucket_id)
        results: List[TransferResult] = []

        def fetch(queries):
            return self.source.list_files(source_bucket_id, queries)

        pages = iter_pages(
            fetch, 'files', self.config.file_page_size,
            cursor=self._resume_cursor(stream_key), token=self.token,
        )
        async for page in pages:
            for file in page:
                self.token.raise_if_cancelled()
                status, error = await self._copy_file(file, source_bucket_id, dest_bucket_id, transport)
                self._emit(results, TransferResult(file['$id'], source_bucket_id, status, error), on_result)
                self._advance(stream_key, file['$id'])
            self.log(f"    {source_bucket_id}: {len(results)} files processed")

        return results

    async def _copy_file(self, file, source_bucket_id, dest_bucket_id, transport):
        file_id = file['$id']
        try:
            try:
                await self.dest.get_file(dest_bucket_id, file_id)
                return TransferStatus.SKIPPED, None
            except NotFoundError:
                pass
            status = await transport.transfer(file, source_bucket_id, dest_bucket_id)
            return status, None
        except ConflictError:
            return TransferStatus.SKIPPED, None
        except AuthenticationError:
            raise
        except Exception as e:
            self.log.error(f"ERROR file {file_id}: {error_message(e)}")
            return TransferStatus.FAILED, error_message(e)
