"""
Migration Planner
=================

Scans a source project and builds an editable MigrationPlan. Every
resource defaults to a pure copy (same ID, same name, enabled). The
destination is never touched here.

Listings are paged with a cursor, scan_limit items per request, so
projects with more resources than one page are planned in full.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..client.base import ResourceClient
from ..config import TransferConfig
from ..utils import LogSink
from .models import MigrationOptions, MigrationPlan, MigrationResource, ResourceType
from .streaming import iter_pages

logger = logging.getLogger(__name__)


class MigrationPlanner:
    """Builds a plan from a source project's top-level resources."""

    def __init__(
        self,
        source: ResourceClient,
        config: Optional[TransferConfig] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.source = source
        self.config = config or TransferConfig()
        self.log = LogSink(log, logger)

    async def _list_all(
        self,
        fetch: Callable[[List[str]], Awaitable[Dict[str, Any]]],
        items_key: str,
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        async for page in iter_pages(fetch, items_key, self.config.scan_limit):
            items.extend(page)
        return items

    async def scan(self, options: Optional[MigrationOptions] = None) -> MigrationPlan:
        """
        List source resources for every enabled category.

        Args:
            options: Category flags; the returned plan carries them

        Returns:
            MigrationPlan with pure-copy defaults

        Raises:
            BackendError: Any listing failure propagates
        """
        options = options or MigrationOptions()
        plan = MigrationPlan(options=options)
        self.log(f"Scanning source project {self.source.project_id}...")

        if options.migrate_databases:
            for db in await self._list_all(self.source.list_databases, 'databases'):
                database = MigrationResource.from_source(ResourceType.DATABASE, db)
                collections = await self._list_all(
                    lambda queries: self.source.list_collections(db['$id'], queries), 'collections'
                )
                database.children = [
                    MigrationResource.from_source(ResourceType.COLLECTION, col) for col in collections
                ]
                plan.databases.append(database)

        if options.migrate_storage:
            plan.buckets = [
                MigrationResource.from_source(ResourceType.BUCKET, b)
                for b in await self._list_all(self.source.list_buckets, 'buckets')
            ]

        if options.migrate_functions:
            plan.functions = [
                MigrationResource.from_source(ResourceType.FUNCTION, f)
                for f in await self._list_all(self.source.list_functions, 'functions')
            ]

        if options.migrate_users:
            plan.users = [
                # Users without a name are shown by email
                MigrationResource.from_source(
                    ResourceType.USER, u, name=u.get('name') or u.get('email') or u['$id']
                )
                for u in await self._list_all(self.source.list_users, 'users')
            ]

        if options.migrate_teams:
            plan.teams = [
                MigrationResource.from_source(ResourceType.TEAM, t)
                for t in await self._list_all(self.source.list_teams, 'teams')
            ]

        counts = plan.counts()
        self.log(
            f"Scan complete: {counts['databases']} databases ({counts['collections']} collections), "
            f"{counts['buckets']} buckets, {counts['functions']} functions, "
            f"{counts['users']} users, {counts['teams']} teams"
        )
        return plan
