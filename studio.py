#!/usr/bin/env python3
"""
Studio Transfer - Command Line Entry Point
==========================================
Scan, migrate and batch-transfer resources between backend projects.

Usage Examples:
    # Register projects once
    python studio.py projects add prod --endpoint https://cloud.appwrite.io --project-id abc --api-key ...
    python studio.py projects add staging --endpoint https://cloud.appwrite.io --project-id def --api-key ...

    # Scan, review/edit, execute
    python studio.py --source prod --dest staging scan --output plan.yaml
    python studio.py --source prod --dest staging run --plan plan.yaml
    python studio.py --source prod --dest staging run --plan plan.yaml --resume

    # Checkpoints
    python studio.py --source prod --dest staging status
    python studio.py --source prod --dest staging reset

    # Worker-dispatched transfers inside the source project
    python studio.py --source prod consolidate-buckets --bucket avatars --bucket uploads --dest-bucket files
    python studio.py --source prod transfer-documents --map db1/posts:db2/articles --delete-originals

Without --source/--dest, credentials are read from STUDIO_SOURCE_* and
STUDIO_DEST_* environment variables (a .env file is honoured).
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from datetime import datetime

from dotenv import load_dotenv
from rich.console import Console

from studio_transfer import __version__
from studio_transfer.client import AppwriteClient
from studio_transfer.config import ProjectCredentials, ProjectRegistry, load_config, resolve_project
from studio_transfer.errors import StudioTransferError
from studio_transfer.migration import (
    BucketConsolidation,
    BucketTarget,
    CollectionMapping,
    DocumentTransfer,
    MigrationOptions,
    MigrationPlan,
    MigrationService,
    MigrationStatus,
)
from studio_transfer.migration.checkpoint import CheckpointStore, JsonFileKeyValueStore
from studio_transfer.migration.report import render_migration_result, render_plan

# Load environment
load_dotenv()

logger = logging.getLogger(__name__)
console = Console()


class StudioCLI:
    """Command dispatcher."""

    def __init__(self, args):
        self.args = args
        self.config = load_config(getattr(args, 'config', None))
        if getattr(args, 'checkpoint_file', None):
            self.config.checkpoint_file = args.checkpoint_file
        self._registry = None

    @property
    def registry(self) -> ProjectRegistry:
        if self._registry is None:
            self._registry = ProjectRegistry(getattr(self.args, 'registry', None))
        return self._registry

    def _source(self) -> ProjectCredentials:
        return resolve_project(self.args.source, 'SOURCE', self._registry_if(self.args.source))

    def _dest(self) -> ProjectCredentials:
        return resolve_project(self.args.dest, 'DEST', self._registry_if(self.args.dest))

    def _registry_if(self, name):
        return self.registry if name else None

    async def run(self) -> int:
        command = self.args.command
        try:
            if command == 'projects':
                return self.run_projects()
            if command == 'scan':
                return await self.run_scan()
            if command == 'run':
                return await self.run_migration()
            if command == 'status':
                return self.run_status()
            if command == 'reset':
                return self.run_reset()
            if command == 'consolidate-buckets':
                return await self.run_consolidate()
            if command == 'transfer-documents':
                return await self.run_transfer_documents()
        except StudioTransferError as e:
            print(f"❌ {e}")
            return 1
        print(f"❌ Unknown command: {command}")
        return 1

    # --- Projects --------------------------------------------------------

    def run_projects(self) -> int:
        """Route project registry subcommands."""
        sub = getattr(self.args, 'projects_command', None)
        if sub == 'add':
            credentials = ProjectCredentials(
                endpoint=self.args.endpoint,
                project_id=self.args.project_id,
                api_key=self.args.api_key,
                name=self.args.name,
            )
            self.registry.add(credentials, overwrite=self.args.overwrite)
            print(f"✅ Registered project '{credentials.name}' ({credentials.endpoint}, {credentials.project_id})")
            return 0

        if sub == 'list':
            names = self.registry.names()
            if self.args.json:
                print(json.dumps([self.registry.get(n).to_dict() for n in names], indent=2))
                return 0
            if not names:
                print("\n📊 No projects registered")
                print("\nRegister a project with:")
                print("   python studio.py projects add NAME --endpoint URL --project-id ID --api-key KEY")
                return 0
            print("\n📊 Registered Projects")
            print("=" * 70)
            for name in names:
                entry = self.registry.get(name)
                print(f"  {name:<20} {entry.project_id:<24} {entry.endpoint}")
            return 0

        if sub == 'remove':
            if self.registry.remove(self.args.name):
                print(f"✅ Removed project '{self.args.name}'")
                return 0
            print(f"❌ Project '{self.args.name}' is not registered")
            return 1

        print("❌ No projects subcommand specified (add, list, remove)")
        return 1

    # --- Migration -------------------------------------------------------

    def _service(self) -> MigrationService:
        return MigrationService(self._source(), self._dest(), config=self.config, log=self._print_log)

    def _print_log(self, message: str) -> None:
        if not getattr(self.args, 'quiet', False):
            console.print(f"[dim]{datetime.now():%H:%M:%S}[/dim] {message}", highlight=False)

    def _options(self) -> MigrationOptions:
        a = self.args
        return MigrationOptions(
            migrate_databases=not a.no_databases,
            migrate_storage=not a.no_storage,
            migrate_functions=not a.no_functions,
            migrate_users=not a.no_users,
            migrate_teams=not a.no_teams,
            migrate_documents=not a.no_documents,
            migrate_files=not a.no_files,
            use_cloud_proxy=a.cloud_proxy,
        )

    async def run_scan(self) -> int:
        """Scan the source project and write an editable plan."""
        async with self._service() as service:
            plan = await service.get_migration_plan(self._options())
        plan.save(self.args.output)
        render_plan(plan, console)
        print(f"\n✅ Plan written to {self.args.output}")
        print("   Edit enabled/target_id/target_name, then run:")
        print(f"   python studio.py run --plan {self.args.output}")
        return 0

    async def run_migration(self) -> int:
        """Execute a plan file."""
        plan = MigrationPlan.load(self.args.plan)
        async with self._service() as service:
            resume = self.args.resume
            if not resume and service.has_checkpoint() and not self.args.fresh:
                print("⚠️  A checkpoint exists for this project pair.")
                print("   Use --resume to continue or --fresh to start over.")
                return 1

            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, service.stop)
            except NotImplementedError:
                logger.debug("Signal handlers not supported on this platform")

            result = await service.start_migration(plan, resume=resume)

        if self.args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            render_migration_result(result, console)
        if result.status == MigrationStatus.STOPPED:
            print("\n⏸  Stopped. Resume with --resume.")
        return 0 if result.status == MigrationStatus.COMPLETED else 1

    def _checkpoint(self) -> CheckpointStore:
        store = JsonFileKeyValueStore(self.config.checkpoint_file)
        return CheckpointStore(store, self._source().project_id, self._dest().project_id)

    def run_status(self) -> int:
        """Show checkpoint state of the project pair."""
        checkpoint = self._checkpoint()
        if not checkpoint.has_checkpoint():
            print("✅ No checkpoint: the next run starts from the beginning.")
            return 0
        created = checkpoint.created_at()
        since = datetime.fromtimestamp(created).isoformat(timespec='seconds') if created else "unknown"
        print(f"\n📌 Checkpoint {checkpoint.key} (since {since})")
        for stream, cursor in sorted(checkpoint.cursors().items()):
            print(f"  {stream:<40} after {cursor}")
        return 0

    def run_reset(self) -> int:
        checkpoint = self._checkpoint()
        checkpoint.clear()
        print(f"✅ Checkpoint {checkpoint.key} cleared")
        return 0

    # --- Batch transfers -------------------------------------------------

    def _transfer_dest(self, active: ProjectCredentials) -> ProjectCredentials:
        if self.args.dest:
            return self._dest()
        return active

    async def run_consolidate(self) -> int:
        """Merge files of several buckets into one bucket."""
        active = self._source()
        target = BucketTarget(self._transfer_dest(active), self.args.dest_bucket)
        async with AppwriteClient(active, timeout=self.config.request_timeout) as client:
            flow = BucketConsolidation(client, active, config=self.config, log=self._print_log)
            report = await flow.run(self.args.bucket, target, delete_originals=self.args.delete_originals)
        report.render(console)
        if self.args.report_dir:
            print(f"📄 Report: {report.save(self.args.report_dir)}")
        return 0 if report.passed else 1

    async def run_transfer_documents(self) -> int:
        """Copy or move documents between collections."""
        active = self._source()
        mappings = [CollectionMapping.parse(m) for m in self.args.map]
        async with AppwriteClient(active, timeout=self.config.request_timeout) as client:
            flow = DocumentTransfer(client, active, config=self.config, log=self._print_log)
            report = await flow.run(mappings, self._transfer_dest(active),
                                    delete_originals=self.args.delete_originals)
        report.render(console, show_details=self.args.details)
        if self.args.report_dir:
            print(f"📄 Report: {report.save(self.args.report_dir)}")
        return 0 if report.passed else 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        description="Studio Transfer - cross-project migration for Appwrite-compatible backends",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage Examples:", 1)[1],
    )

    # Global options
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', help='YAML config file (page sizes, worker polling...)')
    parser.add_argument('--registry', help='Project registry file (default ~/.studio_transfer/projects.yaml)')
    parser.add_argument('--source', metavar='NAME', help='Registered source project (default: STUDIO_SOURCE_* env)')
    parser.add_argument('--dest', metavar='NAME', help='Registered destination project (default: STUDIO_DEST_* env)')
    parser.add_argument('--checkpoint-file', help='Checkpoint JSON file')
    parser.add_argument('--log-level', help='Logging level (default from STUDIO_LOG_LEVEL or INFO)')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only print the final summary')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Projects
    projects_parser = subparsers.add_parser('projects', help='Project registry management')
    projects_sub = projects_parser.add_subparsers(dest='projects_command', help='Projects command')
    add = projects_sub.add_parser('add', help='Register a project')
    add.add_argument('name', help='Project name (alphanumeric, hyphens, underscores)')
    add.add_argument('--endpoint', required=True, help='API endpoint (https://host[/v1])')
    add.add_argument('--project-id', required=True, help='Project ID')
    add.add_argument('--api-key', required=True, help='Server API key')
    add.add_argument('--overwrite', action='store_true', help='Replace an existing entry')
    lst = projects_sub.add_parser('list', help='List registered projects')
    lst.add_argument('--json', action='store_true', help='Output as JSON (keys omitted)')
    rm = projects_sub.add_parser('remove', help='Remove a project')
    rm.add_argument('name', help='Project name')

    # Scan
    scan_parser = subparsers.add_parser('scan', help='Scan source project and write a plan')
    scan_parser.add_argument('--output', '-o', default='migration_plan.yaml', help='Plan file to write')
    for flag, what in (
        ('databases', 'databases'), ('storage', 'buckets'), ('functions', 'functions'),
        ('users', 'users'), ('teams', 'teams'), ('documents', 'documents'), ('files', 'files'),
    ):
        scan_parser.add_argument(f'--no-{flag}', action='store_true', help=f'Do not migrate {what}')
    scan_parser.add_argument('--cloud-proxy', action='store_true',
                             help='Copy files through a worker deployed in the destination')

    # Run
    run_parser = subparsers.add_parser('run', help='Execute a plan file')
    run_parser.add_argument('--plan', required=True, help='Plan YAML written by scan')
    run_parser.add_argument('--resume', action='store_true', help='Continue from the last checkpoint')
    run_parser.add_argument('--fresh', action='store_true', help='Discard an existing checkpoint')
    run_parser.add_argument('--json', action='store_true', help='Print the result as JSON')

    # Checkpoints
    subparsers.add_parser('status', help='Show checkpoint of the project pair')
    subparsers.add_parser('reset', help='Clear checkpoint of the project pair')

    # Consolidation
    cons = subparsers.add_parser('consolidate-buckets', help='Merge buckets into one (worker-dispatched)')
    cons.add_argument('--bucket', action='append', required=True, help='Source bucket ID (repeatable)')
    cons.add_argument('--dest-bucket', required=True, help='Destination bucket ID')
    cons.add_argument('--delete-originals', action='store_true', help='Delete source files after copy')
    cons.add_argument('--report-dir', help='Write transfer_report_<project>.json here')

    # Document transfer
    docs = subparsers.add_parser('transfer-documents', help='Copy documents between collections')
    docs.add_argument('--map', action='append', required=True, metavar='SRC_DB/SRC_COL:DST_DB/DST_COL',
                      help='Collection mapping (repeatable)')
    docs.add_argument('--delete-originals', action='store_true', help='Delete source documents after copy')
    docs.add_argument('--details', action='store_true', help='Print every document outcome')
    docs.add_argument('--report-dir', help='Write transfer_report_<project>.json here')

    return parser


async def async_main(args):
    """Async entry point."""
    cli = StudioCLI(args)
    return await cli.run()


def main():
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        level = (args.log_level or load_config(args.config).log_level).upper()
    except StudioTransferError as e:
        print(f"❌ {e}")
        return 1

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Progress lines are already printed through the log callback
    if level != 'DEBUG':
        logging.getLogger('studio_transfer').setLevel(logging.WARNING)

    return asyncio.run(async_main(args))


if __name__ == "__main__":
    sys.exit(main())
