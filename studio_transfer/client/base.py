"""
Resource Client Interface
=========================

Abstract async interface over one backend project's databases, storage,
functions, users and teams. The migration engine only talks to this
interface, so it can run against the REST adapter or an in-memory fake.

Responses are plain dictionaries shaped like the backend's REST payloads
(e.g. ``{"total": 2, "documents": [...]}``); system fields keep their
``$`` prefix (``$id``, ``$createdAt``, ``$permissions``...).
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class Query:
    """Builders for list-query strings (JSON encoded, as the SDKs send them)."""

    @staticmethod
    def _build(method: str, attribute: Optional[str] = None, values: Optional[list] = None) -> str:
        query: Dict[str, Any] = {"method": method}
        if attribute is not None:
            query["attribute"] = attribute
        if values is not None:
            query["values"] = values
        return json.dumps(query)

    @staticmethod
    def limit(value: int) -> str:
        return Query._build("limit", values=[value])

    @staticmethod
    def cursor_after(document_id: str) -> str:
        return Query._build("cursorAfter", values=[document_id])

    @staticmethod
    def order_asc(attribute: str) -> str:
        return Query._build("orderAsc", attribute)

    @staticmethod
    def order_desc(attribute: str) -> str:
        return Query._build("orderDesc", attribute)

    @staticmethod
    def parse(queries: Optional[Sequence[str]]) -> Dict[str, Any]:
        """
        Decode query strings into a summary dict.

        Returns:
            Dict with 'limit', 'cursor_after', 'order' (list of
            (attribute, 'asc'|'desc'))
        """
        parsed: Dict[str, Any] = {"limit": None, "cursor_after": None, "order": []}
        for raw in queries or []:
            query = json.loads(raw)
            method = query.get("method")
            values = query.get("values") or []
            if method == "limit":
                parsed["limit"] = int(values[0])
            elif method == "cursorAfter":
                parsed["cursor_after"] = values[0]
            elif method == "orderAsc":
                parsed["order"].append((query["attribute"], "asc"))
            elif method == "orderDesc":
                parsed["order"].append((query["attribute"], "desc"))
        return parsed


class ResourceClient(ABC):
    """Typed CRUD/list operations against one backend project."""

    project_id: str = ""

    async def close(self) -> None:
        """Release network resources (no-op by default)."""

    async def __aenter__(self) -> "ResourceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # --- Databases -------------------------------------------------------

    @abstractmethod
    async def list_databases(self, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_database(self, database_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_database(self, database_id: str, name: str, enabled: bool = True) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_collections(self, database_id: str, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_collection(self, database_id: str, collection_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_collection(
        self,
        database_id: str,
        collection_id: str,
        name: str,
        permissions: Optional[List[str]] = None,
        document_security: bool = False,
        enabled: bool = True,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_attributes(self, database_id: str, collection_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_attribute(
        self, database_id: str, collection_id: str, kind: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Create an attribute of the given kind ('string', 'integer', 'relationship'...)."""

    @abstractmethod
    async def list_indexes(self, database_id: str, collection_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_index(
        self,
        database_id: str,
        collection_id: str,
        key: str,
        type: str,
        attributes: List[str],
        orders: Optional[List[str]] = None,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_documents(
        self, database_id: str, collection_id: str, queries: Optional[List[str]] = None
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_document(self, database_id: str, collection_id: str, document_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_document(
        self,
        database_id: str,
        collection_id: str,
        document_id: str,
        data: Dict[str, Any],
        permissions: Optional[List[str]] = None,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def delete_document(self, database_id: str, collection_id: str, document_id: str) -> None: ...

    # --- Storage ---------------------------------------------------------

    @abstractmethod
    async def list_buckets(self, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_bucket(self, bucket_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_bucket(self, bucket_id: str, name: str, settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create a bucket; settings uses REST field names (fileSecurity, maximumFileSize...)."""

    @abstractmethod
    async def list_files(self, bucket_id: str, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_file(self, bucket_id: str, file_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def download_file(self, bucket_id: str, file_id: str) -> bytes: ...

    @abstractmethod
    async def upload_file(
        self,
        bucket_id: str,
        file_id: str,
        filename: str,
        content: bytes,
        permissions: Optional[List[str]] = None,
        mime_type: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def delete_file(self, bucket_id: str, file_id: str) -> None: ...

    # --- Functions -------------------------------------------------------

    @abstractmethod
    async def list_functions(self, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_function(self, function_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_function(
        self, function_id: str, name: str, runtime: str, settings: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create a function; settings uses REST field names (execute, timeout, entrypoint...)."""

    @abstractmethod
    async def delete_function(self, function_id: str) -> None: ...

    @abstractmethod
    async def list_deployments(self, function_id: str, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_deployment(self, function_id: str, deployment_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def download_deployment(self, function_id: str, deployment_id: str) -> bytes: ...

    @abstractmethod
    async def create_deployment(
        self,
        function_id: str,
        archive: bytes,
        activate: bool = True,
        entrypoint: Optional[str] = None,
        commands: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_variables(self, function_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_variable(self, function_id: str, variable_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_variable(self, function_id: str, key: str, value: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_execution(self, function_id: str, body: str, run_async: bool = False) -> Dict[str, Any]:
        """Execute a function; returns the execution with 'status' and 'responseBody'."""

    # --- Users -----------------------------------------------------------

    @abstractmethod
    async def list_users(self, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_argon2_user(self, user_id: str, email: str, password_hash: str,
                                 name: Optional[str] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_user_status(self, user_id: str, status: bool) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_email_verification(self, user_id: str, verified: bool) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_phone_verification(self, user_id: str, verified: bool) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_labels(self, user_id: str, labels: List[str]) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_prefs(self, user_id: str, prefs: Dict[str, Any]) -> Dict[str, Any]: ...

    # --- Teams -----------------------------------------------------------

    @abstractmethod
    async def list_teams(self, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_team(self, team_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_team(self, team_id: str, name: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_memberships(self, team_id: str, queries: Optional[List[str]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_membership(
        self,
        team_id: str,
        roles: List[str],
        email: Optional[str] = None,
        name: Optional[str] = None,
        url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]: ...
