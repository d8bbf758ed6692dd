"""
Appwrite REST Adapter
=====================

ResourceClient implementation over the Appwrite REST API using httpx.

Usage:
    async with AppwriteClient(ProjectCredentials(...)) as client:
        dbs = await client.list_databases([Query.limit(100)])
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import ProjectCredentials
from ..errors import (
    AuthenticationError,
    BackendError,
    ConflictError,
    NotFoundError,
    RateLimitError,
)
from .base import ResourceClient

logger = logging.getLogger(__name__)

# Uploads larger than this are sent as Content-Range chunks
CHUNK_SIZE = 5 * 1024 * 1024

RESPONSE_FORMAT = "1.6.0"


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an error response into the BackendError hierarchy."""
    if response.status_code < 400:
        return

    try:
        body = response.json()
    except ValueError:
        body = {"message": response.text}
    if not isinstance(body, dict):
        body = {"message": str(body)}

    message = body.get("message") or f"HTTP {response.status_code}"
    error_type = body.get("type")
    code = response.status_code

    if code == 404:
        raise NotFoundError(message, code, error_type, body)
    if code == 409:
        raise ConflictError(message, code, error_type, body)
    if code in (401, 403):
        raise AuthenticationError(message, code, error_type, body)
    if code == 429:
        raise RateLimitError(message, code, error_type, body)
    raise BackendError(message, code, error_type, body)


def retry_delay(response: httpx.Response, attempt: int) -> float:
    """
    Seconds to wait before retrying a 429.

    Retry-After may hold seconds or an HTTP date; anything that is not a
    number falls back to exponential backoff.
    """
    value = response.headers.get("Retry-After")
    if value:
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
    return float(2 ** attempt)


class AppwriteClient(ResourceClient):
    """
    Admin-level client for one project.

    Features:
    - Error mapping to NotFoundError/ConflictError/AuthenticationError
    - Retry with backoff on HTTP 429
    - Chunked uploads for large files
    """

    def __init__(
        self,
        credentials: ProjectCredentials,
        timeout: float = 60.0,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            credentials: Project endpoint, ID and API key
            timeout: Request timeout in seconds
            max_retries: Retries for rate-limited requests
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.credentials = credentials
        self.project_id = credentials.project_id
        self.max_retries = max_retries
        self._http = httpx.AsyncClient(
            base_url=credentials.endpoint,
            timeout=timeout,
            transport=transport,
            headers={
                "X-Appwrite-Project": credentials.project_id,
                "X-Appwrite-Key": credentials.api_key,
                "X-Appwrite-Response-Format": RESPONSE_FORMAT,
            },
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        queries: Optional[List[str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        params = {"queries[]": queries} if queries else None
        attempt = 0
        while True:
            try:
                response = await self._http.request(
                    method, path, params=params, json=json_body, data=data,
                    files=files, headers=headers,
                )
            except httpx.HTTPError as e:
                raise BackendError(f"{method} {path} failed: {e}") from e

            if response.status_code == 429 and attempt < self.max_retries:
                attempt += 1
                delay = retry_delay(response, attempt)
                logger.warning(f"Rate limited on {path}, retrying in {delay:.1f}s ({attempt}/{self.max_retries})")
                await asyncio.sleep(delay)
                continue

            _raise_for_status(response)
            return response

    async def _json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        if not response.content:
            return {}
        return response.json()

    async def _delete(self, path: str) -> None:
        await self._request("DELETE", path)

    # --- Databases -------------------------------------------------------

    async def list_databases(self, queries=None):
        return await self._json("GET", "/databases", queries=queries)

    async def get_database(self, database_id):
        return await self._json("GET", f"/databases/{database_id}")

    async def create_database(self, database_id, name, enabled=True):
        return await self._json("POST", "/databases", json_body={
            "databaseId": database_id, "name": name, "enabled": enabled,
        })

    async def list_collections(self, database_id, queries=None):
        return await self._json("GET", f"/databases/{database_id}/collections", queries=queries)

    async def get_collection(self, database_id, collection_id):
        return await self._json("GET", f"/databases/{database_id}/collections/{collection_id}")

    async def create_collection(self, database_id, collection_id, name, permissions=None,
                                document_security=False, enabled=True):
        return await self._json("POST", f"/databases/{database_id}/collections", json_body={
            "collectionId": collection_id,
            "name": name,
            "permissions": permissions or [],
            "documentSecurity": document_security,
            "enabled": enabled,
        })

    async def list_attributes(self, database_id, collection_id):
        return await self._json("GET", f"/databases/{database_id}/collections/{collection_id}/attributes")

    async def create_attribute(self, database_id, collection_id, kind, params):
        body = {k: v for k, v in params.items() if v is not None}
        return await self._json(
            "POST", f"/databases/{database_id}/collections/{collection_id}/attributes/{kind}",
            json_body=body,
        )

    async def list_indexes(self, database_id, collection_id):
        return await self._json("GET", f"/databases/{database_id}/collections/{collection_id}/indexes")

    async def create_index(self, database_id, collection_id, key, type, attributes, orders=None):
        body: Dict[str, Any] = {"key": key, "type": type, "attributes": attributes}
        if orders:
            body["orders"] = orders
        return await self._json(
            "POST", f"/databases/{database_id}/collections/{collection_id}/indexes", json_body=body,
        )

    async def list_documents(self, database_id, collection_id, queries=None):
        return await self._json(
            "GET", f"/databases/{database_id}/collections/{collection_id}/documents", queries=queries,
        )

    async def get_document(self, database_id, collection_id, document_id):
        return await self._json(
            "GET", f"/databases/{database_id}/collections/{collection_id}/documents/{document_id}",
        )

    async def create_document(self, database_id, collection_id, document_id, data, permissions=None):
        body: Dict[str, Any] = {"documentId": document_id, "data": data}
        if permissions is not None:
            body["permissions"] = permissions
        return await self._json(
            "POST", f"/databases/{database_id}/collections/{collection_id}/documents", json_body=body,
        )

    async def delete_document(self, database_id, collection_id, document_id):
        await self._delete(f"/databases/{database_id}/collections/{collection_id}/documents/{document_id}")

    # --- Storage ---------------------------------------------------------

    async def list_buckets(self, queries=None):
        return await self._json("GET", "/storage/buckets", queries=queries)

    async def get_bucket(self, bucket_id):
        return await self._json("GET", f"/storage/buckets/{bucket_id}")

    async def create_bucket(self, bucket_id, name, settings=None):
        body = {"bucketId": bucket_id, "name": name}
        body.update({k: v for k, v in (settings or {}).items() if v is not None})
        return await self._json("POST", "/storage/buckets", json_body=body)

    async def list_files(self, bucket_id, queries=None):
        return await self._json("GET", f"/storage/buckets/{bucket_id}/files", queries=queries)

    async def get_file(self, bucket_id, file_id):
        return await self._json("GET", f"/storage/buckets/{bucket_id}/files/{file_id}")

    async def download_file(self, bucket_id, file_id):
        response = await self._request("GET", f"/storage/buckets/{bucket_id}/files/{file_id}/download")
        return response.content

    async def upload_file(self, bucket_id, file_id, filename, content, permissions=None, mime_type=None):
        path = f"/storage/buckets/{bucket_id}/files"
        data: Dict[str, Any] = {"fileId": file_id}
        for i, permission in enumerate(permissions or []):
            data[f"permissions[{i}]"] = permission
        mime = mime_type or "application/octet-stream"

        if len(content) <= CHUNK_SIZE:
            return await self._json("POST", path, data=data, files={"file": (filename, content, mime)})

        # Chunked upload: every chunk carries its byte range, later chunks the file ID
        total = len(content)
        result: Dict[str, Any] = {}
        for start in range(0, total, CHUNK_SIZE):
            end = min(start + CHUNK_SIZE, total) - 1
            headers = {"Content-Range": f"bytes {start}-{end}/{total}"}
            if start > 0:
                headers["X-Appwrite-ID"] = file_id
            chunk = content[start:end + 1]
            result = await self._json(
                "POST", path, data=data, files={"file": (filename, chunk, mime)}, headers=headers,
            )
        return result

    async def delete_file(self, bucket_id, file_id):
        await self._delete(f"/storage/buckets/{bucket_id}/files/{file_id}")

    # --- Functions -------------------------------------------------------

    async def list_functions(self, queries=None):
        return await self._json("GET", "/functions", queries=queries)

    async def get_function(self, function_id):
        return await self._json("GET", f"/functions/{function_id}")

    async def create_function(self, function_id, name, runtime, settings=None):
        body = {"functionId": function_id, "name": name, "runtime": runtime}
        body.update({k: v for k, v in (settings or {}).items() if v is not None})
        return await self._json("POST", "/functions", json_body=body)

    async def delete_function(self, function_id):
        await self._delete(f"/functions/{function_id}")

    async def list_deployments(self, function_id, queries=None):
        return await self._json("GET", f"/functions/{function_id}/deployments", queries=queries)

    async def get_deployment(self, function_id, deployment_id):
        return await self._json("GET", f"/functions/{function_id}/deployments/{deployment_id}")

    async def download_deployment(self, function_id, deployment_id):
        response = await self._request("GET", f"/functions/{function_id}/deployments/{deployment_id}/download")
        return response.content

    async def create_deployment(self, function_id, archive, activate=True, entrypoint=None, commands=None):
        data: Dict[str, Any] = {"activate": "true" if activate else "false"}
        if entrypoint:
            data["entrypoint"] = entrypoint
        if commands:
            data["commands"] = commands
        return await self._json(
            "POST", f"/functions/{function_id}/deployments",
            data=data, files={"code": ("code.tar.gz", archive, "application/gzip")},
        )

    async def list_variables(self, function_id):
        return await self._json("GET", f"/functions/{function_id}/variables")

    async def get_variable(self, function_id, variable_id):
        return await self._json("GET", f"/functions/{function_id}/variables/{variable_id}")

    async def create_variable(self, function_id, key, value):
        return await self._json("POST", f"/functions/{function_id}/variables",
                                json_body={"key": key, "value": value})

    async def create_execution(self, function_id, body, run_async=False):
        return await self._json("POST", f"/functions/{function_id}/executions",
                                json_body={"body": body, "async": run_async})

    # --- Users -----------------------------------------------------------

    async def list_users(self, queries=None):
        return await self._json("GET", "/users", queries=queries)

    async def get_user(self, user_id):
        return await self._json("GET", f"/users/{user_id}")

    async def create_user(self, user_id, email=None, phone=None, password=None, name=None):
        return await self._json("POST", "/users", json_body={
            k: v for k, v in {
                "userId": user_id, "email": email, "phone": phone,
                "password": password, "name": name,
            }.items() if v is not None
        })

    async def create_argon2_user(self, user_id, email, password_hash, name=None):
        body = {"userId": user_id, "email": email, "password": password_hash}
        if name:
            body["name"] = name
        return await self._json("POST", "/users/argon2", json_body=body)

    async def update_user_status(self, user_id, status):
        return await self._json("PATCH", f"/users/{user_id}/status", json_body={"status": status})

    async def update_email_verification(self, user_id, verified):
        return await self._json("PATCH", f"/users/{user_id}/verification",
                                json_body={"emailVerification": verified})

    async def update_phone_verification(self, user_id, verified):
        return await self._json("PATCH", f"/users/{user_id}/verification/phone",
                                json_body={"phoneVerification": verified})

    async def update_labels(self, user_id, labels):
        return await self._json("PUT", f"/users/{user_id}/labels", json_body={"labels": labels})

    async def update_prefs(self, user_id, prefs):
        return await self._json("PATCH", f"/users/{user_id}/prefs", json_body={"prefs": prefs})

    # --- Teams -----------------------------------------------------------

    async def list_teams(self, queries=None):
        return await self._json("GET", "/teams", queries=queries)

    async def get_team(self, team_id):
        return await self._json("GET", f"/teams/{team_id}")

    async def create_team(self, team_id, name):
        return await self._json("POST", "/teams", json_body={"teamId": team_id, "name": name})

    async def list_memberships(self, team_id, queries=None):
        return await self._json("GET", f"/teams/{team_id}/memberships", queries=queries)

    async def create_membership(self, team_id, roles, email=None, name=None, url=None, user_id=None):
        body = {k: v for k, v in {
            "roles": roles, "email": email, "name": name, "url": url, "userId": user_id,
        }.items() if v is not None}
        return await self._json("POST", f"/teams/{team_id}/memberships", json_body=body)


def decode_response_body(execution: Dict[str, Any]) -> Dict[str, Any]:
    """Parse a function execution's JSON response body ({} when empty or invalid)."""
    raw = execution.get("responseBody") or ""
    try:
        decoded = json.loads(raw)
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}
