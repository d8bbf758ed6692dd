#!/usr/bin/env python3
"""
Remote worker dispatcher tests.

Deploy waits for the build, failed builds are cleaned up, invocations are
decoded into migrated / skipped / error.
"""

import asyncio
import json

import pytest

from fake_backend import make_credentials
from studio_transfer.archive import unpack_archive
from studio_transfer.errors import BackendError, WorkerDeploymentError, WorkerInvocationError
from studio_transfer.migration.models import TransferStatus
from studio_transfer.migration.worker import (
    RemoteWorkerDispatcher,
    WorkerTemplate,
    document_transfer_payload,
    file_transfer_payload,
    load_template,
)


# =============================================================================
# Helper Functions
# =============================================================================

def respond(body, status="completed"):
    """Execution handler returning a fixed response body."""
    raw = body if isinstance(body, str) else json.dumps(body)
    return lambda function_id, payload: {"status": status, "responseBody": raw}


def deployed_worker(dest, config):
    dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.FILE_TRANSFER, config=config)
    worker_id = asyncio.run(dispatcher.deploy())
    return dispatcher, worker_id


# =============================================================================
# Tests
# =============================================================================

class TestTemplates:
    """Static worker sources shipped with the package."""

    @pytest.mark.parametrize("template", list(WorkerTemplate))
    def test_template_has_manifest_and_entrypoint(self, template):
        names = [f.name for f in load_template(template)]

        assert "package.json" in names
        assert "src/main.js" in names
        manifest = [f for f in load_template(template) if f.name == "package.json"][0]
        assert "node-appwrite" in json.loads(manifest.content)["dependencies"]


class TestDeploy:
    """Function creation, build polling and cleanup."""

    def test_deploy_waits_for_ready_build(self, dest, config):
        """Test that deploy creates the function and uploads the template."""
        dispatcher, worker_id = deployed_worker(dest, config)

        (function_id, name, runtime, settings), = dest.calls_to("create_function")
        assert function_id == worker_id
        assert len(worker_id) == 20
        assert name == "_studio_transfer_worker"
        assert runtime == "node-18.0"
        assert settings["timeout"] == 15
        assert settings["enabled"] is True

        (deployed_id, entrypoint, commands), = dest.calls_to("create_deployment")
        assert (deployed_id, entrypoint, commands) == (worker_id, "src/main.js", "npm install")
        files = unpack_archive(dest.deployment_archives[(worker_id, dest.functions[worker_id]["deployment"])])
        assert "src/main.js" in [f.name for f in files]

    def test_failed_build_removes_function(self, dest, config):
        dest.deployment_status = "failed"
        dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.FILE_TRANSFER, config=config)

        with pytest.raises(WorkerDeploymentError, match="build failed"):
            asyncio.run(dispatcher.deploy())
        assert dest.functions == {}
        assert len(dest.calls_to("delete_function")) == 1

    def test_build_timeout_after_poll_retries(self, dest, config):
        """Test that a build never reaching 'ready' times out after poll_retries polls."""
        dest.deployment_status = "building"
        dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.FILE_TRANSFER, config=config, poll_retries=4)

        with pytest.raises(WorkerDeploymentError, match="timed out"):
            asyncio.run(dispatcher.deploy())
        assert len(dest.calls_to("list_deployments")) == 4
        assert dest.functions == {}

    def test_create_function_error_is_deployment_error(self, dest, config):
        dest.fail("create_function", BackendError("Function limit reached", 400))
        dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.FILE_TRANSFER, config=config)

        with pytest.raises(WorkerDeploymentError, match="Function limit reached"):
            asyncio.run(dispatcher.deploy())
        assert dest.calls_to("delete_function") == []

    def test_teardown_failure_is_logged(self, dest, config):
        """Test that a failing delete never raises."""
        logs = []
        dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.FILE_TRANSFER, config=config, log=logs.append)

        asyncio.run(dispatcher.teardown("does-not-exist"))

        assert any("Could not delete worker does-not-exist" in line for line in logs)

    def test_deployed_context_tears_down_on_error(self, dest, config):
        dispatcher = RemoteWorkerDispatcher(dest, WorkerTemplate.DOCUMENT_TRANSFER, config=config)

        async def use_worker():
            async with dispatcher.deployed():
                raise RuntimeError("interrupted")

        with pytest.raises(RuntimeError):
            asyncio.run(use_worker())
        assert dest.functions == {}


class TestInvoke:
    """Decoding of worker responses."""

    def test_migrated(self, dest, config):
        dispatcher, worker_id = deployed_worker(dest, config)
        dest.execution_handler = respond({"success": True, "status": "migrated", "id": "f1"})

        response = asyncio.run(dispatcher.invoke(worker_id, {"fileId": "f1"}))

        assert response.status == TransferStatus.MIGRATED
        assert response.id == "f1"
        assert json.loads(dest.calls_to("create_execution")[0][1]) == {"fileId": "f1"}

    def test_skipped_status(self, dest, config):
        dispatcher, worker_id = deployed_worker(dest, config)
        dest.execution_handler = respond({"success": True, "status": "skipped", "id": "f1"})

        response = asyncio.run(dispatcher.invoke(worker_id, {}))

        assert response.skipped

    def test_conflict_error_counts_as_skipped(self, dest, config):
        """Test that a worker-reported 409 is treated as already migrated."""
        dispatcher, worker_id = deployed_worker(dest, config)
        dest.execution_handler = respond({"success": False, "error": "File already exists", "code": 409})

        response = asyncio.run(dispatcher.invoke(worker_id, {}))

        assert response.status == TransferStatus.SKIPPED

    def test_unsuccessful_body_raises(self, dest, config):
        dispatcher, worker_id = deployed_worker(dest, config)
        dest.execution_handler = respond({"success": False, "status": "failed", "error": "Storage quota exceeded"})

        with pytest.raises(WorkerInvocationError, match="Storage quota exceeded"):
            asyncio.run(dispatcher.invoke(worker_id, {}))

    def test_failed_execution_without_body_raises(self, dest, config):
        dispatcher, worker_id = deployed_worker(dest, config)
        dest.execution_handler = respond("", status="failed")

        with pytest.raises(WorkerInvocationError, match="Worker execution failed"):
            asyncio.run(dispatcher.invoke(worker_id, {}))


class TestPayloads:
    """Credentials travel in the payload."""

    def test_file_payload(self):
        payload = file_transfer_payload(
            make_credentials("src"), make_credentials("dst"), "avatars", "files", "f1", delete_source=True,
        )

        assert payload["sourceEndpoint"] == "https://cloud.example.io/v1"
        assert payload["sourceKey"] == "key-src"
        assert payload["destProject"] == "dst"
        assert (payload["sourceBucketId"], payload["destBucketId"], payload["fileId"]) == ("avatars", "files", "f1")
        assert payload["deleteSource"] is True

    def test_document_payload(self):
        payload = document_transfer_payload(
            make_credentials("src"), make_credentials("dst"), "db1", "posts", "db2", "articles",
            "p1", {"title": "Hello"}, permissions=['read("any")'],
        )

        assert (payload["sourceDbId"], payload["sourceCollId"]) == ("db1", "posts")
        assert (payload["destDbId"], payload["destCollId"]) == ("db2", "articles")
        assert payload["docId"] == "p1"
        assert payload["docData"] == {"title": "Hello"}
        assert payload["permissions"] == ['read("any")']
        assert payload["deleteSource"] is False
