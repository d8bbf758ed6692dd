"""
Remote Worker Dispatcher
========================

Deploys an ephemeral Node function into a project, waits for its build,
invokes it synchronously with JSON payloads and deletes it afterwards.

The worker source is a static template shipped in ``studio_transfer/templates``:

    file_transfer/       copy or move one file between buckets/projects
    document_transfer/   create one document in a destination collection

Usage:
    dispatcher = RemoteWorkerDispatcher(dest_client, WorkerTemplate.FILE_TRANSFER)
    async with dispatcher.deployed() as worker_id:
        response = await dispatcher.invoke(worker_id, payload)
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..archive import SourceFile, pack_files
from ..client.appwrite import decode_response_body
from ..client.base import Query, ResourceClient
from ..config import ProjectCredentials, TransferConfig
from ..errors import BackendError, WorkerDeploymentError, WorkerInvocationError
from ..utils import LogSink
from .models import TransferStatus

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

WORKER_ENTRYPOINT = "src/main.js"
WORKER_BUILD_COMMAND = "npm install"


class WorkerTemplate(str, Enum):
    """Available worker templates (directory names under templates/)."""
    FILE_TRANSFER = "file_transfer"
    DOCUMENT_TRANSFER = "document_transfer"


def load_template(template: WorkerTemplate) -> List[SourceFile]:
    """Read every file of a template directory, with paths relative to it."""
    root = TEMPLATES_DIR / WorkerTemplate(template).value
    if not root.is_dir():
        raise WorkerDeploymentError(f"Worker template not found: {root}")
    return [
        SourceFile(name=path.relative_to(root).as_posix(), content=path.read_bytes())
        for path in sorted(root.rglob("*"))
        if path.is_file()
    ]


@dataclass
class WorkerResponse:
    """Decoded result of one worker execution."""
    success: bool
    status: TransferStatus
    id: Optional[str] = None
    error: Optional[str] = None
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.status == TransferStatus.SKIPPED


def _is_conflict(body: Dict[str, Any]) -> bool:
    return body.get("code") == 409 or "already exists" in str(body.get("error") or "").lower()


class RemoteWorkerDispatcher:
    """
    Manage the lifecycle of one ephemeral worker function.

    Args:
        client: Client of the project the worker runs in
        template: Worker source template
        name: Function display name
        config: Runtime, timeout and poll settings
        poll_retries: Max build polls (defaults to config.worker_poll_retries)
        log: Optional progress callback
    """

    def __init__(
        self,
        client: ResourceClient,
        template: WorkerTemplate,
        name: str = "_studio_transfer_worker",
        config: Optional[TransferConfig] = None,
        poll_retries: Optional[int] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.client = client
        self.template = WorkerTemplate(template)
        self.name = name
        self.config = config or TransferConfig()
        self.poll_retries = poll_retries or self.config.worker_poll_retries
        self.log = LogSink(log, logger)

    async def deploy(self) -> str:
        """
        Create the function, upload the template and wait for the build.

        Returns:
            Worker (function) ID

        Raises:
            WorkerDeploymentError: Build failed, timed out or could not start
        """
        function_id = uuid.uuid4().hex[:20]
        self.log(f"Deploying worker '{self.name}' ({self.template.value}) to project {self.client.project_id}...")

        try:
            await self.client.create_function(
                function_id,
                self.name,
                self.config.worker_runtime,
                settings={
                    "schedule": "",
                    "timeout": self.config.worker_timeout,
                    "enabled": True,
                    "logging": True,
                },
            )
        except BackendError as e:
            raise WorkerDeploymentError(f"Could not create worker function: {e}") from e

        try:
            archive = pack_files(load_template(self.template))
            await self.client.create_deployment(
                function_id,
                archive,
                activate=True,
                entrypoint=WORKER_ENTRYPOINT,
                commands=WORKER_BUILD_COMMAND,
            )
            self.log(f"Worker deployed ({function_id}). Waiting for build...")
            await self._wait_until_ready(function_id)
        except BaseException as e:
            # A half-built function is useless; remove it before reporting
            await self.teardown(function_id)
            if isinstance(e, BackendError):
                raise WorkerDeploymentError(f"Could not deploy worker: {e}") from e
            raise

        self.log(f"Worker {function_id} ready.")
        return function_id

    async def _wait_until_ready(self, function_id: str) -> None:
        for _ in range(self.poll_retries):
            await asyncio.sleep(self.config.worker_poll_interval)
            response = await self.client.list_deployments(
                function_id, [Query.order_desc("$createdAt"), Query.limit(1)]
            )
            deployments = response.get("deployments") or []
            if not deployments:
                continue
            status = deployments[0].get("status")
            if status == "ready":
                return
            if status == "failed":
                raise WorkerDeploymentError("Worker build failed.")
        raise WorkerDeploymentError("Worker build timed out.")

    async def invoke(self, worker_id: str, payload: Dict[str, Any]) -> WorkerResponse:
        """
        Run the worker synchronously with a JSON payload.

        Raises:
            WorkerInvocationError: Execution failed or the worker reported failure
        """
        try:
            execution = await self.client.create_execution(worker_id, json.dumps(payload), run_async=False)
        except BackendError as e:
            raise WorkerInvocationError(f"Worker execution failed: {e}") from e

        body = decode_response_body(execution)
        item_id = body.get("id")

        if body.get("status") == "skipped" or (not body.get("success") and _is_conflict(body)):
            return WorkerResponse(success=True, status=TransferStatus.SKIPPED, id=item_id, body=body)

        if execution.get("status") == "failed" and not body:
            raise WorkerInvocationError(
                f"Worker execution failed: {execution.get('responseBody') or execution.get('errors') or 'no output'}"
            )
        if not body.get("success"):
            raise WorkerInvocationError(body.get("error") or "Worker reported an unsuccessful result")

        return WorkerResponse(success=True, status=TransferStatus.MIGRATED, id=item_id, body=body)

    async def teardown(self, worker_id: str) -> None:
        """Delete the worker function. Failures are logged, never raised."""
        try:
            await self.client.delete_function(worker_id)
            logger.debug(f"Deleted worker {worker_id}")
        except BackendError as e:
            self.log.warning(f"Could not delete worker {worker_id}: {e}")

    @asynccontextmanager
    async def deployed(self) -> AsyncIterator[str]:
        """Deploy on enter, tear down on exit (including cancellation and errors)."""
        worker_id = await self.deploy()
        try:
            yield worker_id
        finally:
            await self.teardown(worker_id)


def file_transfer_payload(
    source: ProjectCredentials,
    dest: ProjectCredentials,
    source_bucket_id: str,
    dest_bucket_id: str,
    file_id: str,
    delete_source: bool = False,
) -> Dict[str, Any]:
    """Payload for the file_transfer worker. Credentials travel only in the payload."""
    return {
        "sourceEndpoint": source.endpoint,
        "sourceProject": source.project_id,
        "sourceKey": source.api_key,
        "sourceBucketId": source_bucket_id,
        "destEndpoint": dest.endpoint,
        "destProject": dest.project_id,
        "destKey": dest.api_key,
        "destBucketId": dest_bucket_id,
        "fileId": file_id,
        "deleteSource": delete_source,
    }


def document_transfer_payload(
    source: ProjectCredentials,
    dest: ProjectCredentials,
    source_db_id: str,
    source_collection_id: str,
    dest_db_id: str,
    dest_collection_id: str,
    document_id: str,
    data: Dict[str, Any],
    permissions: Optional[List[str]] = None,
    delete_source: bool = False,
) -> Dict[str, Any]:
    """Payload for the document_transfer worker."""
    return {
        "sourceEndpoint": source.endpoint,
        "sourceProject": source.project_id,
        "sourceKey": source.api_key,
        "sourceDbId": source_db_id,
        "sourceCollId": source_collection_id,
        "destEndpoint": dest.endpoint,
        "destProject": dest.project_id,
        "destKey": dest.api_key,
        "destDbId": dest_db_id,
        "destCollId": dest_collection_id,
        "docId": document_id,
        "docData": data,
        "permissions": permissions,
        "deleteSource": delete_source,
    }
