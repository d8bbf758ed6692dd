"""
Migration Data Model
====================

Plan tree, options and outcome records shared by the planner, the executor
and the transfer flows.

A plan is created by a scan, edited by the user (enable/disable, rename
target IDs and names), executed once and then discarded. It can be written
to YAML so it can be reviewed and edited between scan and execution.
"""

import copy
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from ..errors import PlanError


class ResourceType(str, Enum):
    """Kinds of plan nodes."""
    DATABASE = "database"
    COLLECTION = "collection"
    BUCKET = "bucket"
    FUNCTION = "function"
    TEAM = "team"
    USER = "user"

    @classmethod
    def from_string(cls, value: str) -> "ResourceType":
        """Parse resource type from string (case-insensitive)."""
        value_lower = str(value).lower().strip()
        for member in cls:
            if member.value == value_lower:
                return member
        raise PlanError(
            f"Invalid resource type: {value}. "
            f"Valid types: {[m.value for m in cls]}"
        )


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class TransferStatus(str, Enum):
    """Outcome of one document or file."""
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class MigrationResource:
    """
    A node in the plan tree.

    Attributes:
        type: Resource kind
        source_id: ID in the source project
        target_id: ID to create in the destination (editable)
        source_name: Display name in the source
        target_name: Name to create in the destination (editable)
        enabled: Disabled nodes are skipped together with their children
        children: Collections of a database (empty for other kinds)
        original_data: Snapshot of the source metadata taken at scan time
    """
    type: ResourceType
    source_id: str
    target_id: str
    source_name: str
    target_name: str
    enabled: bool = True
    children: List['MigrationResource'] = field(default_factory=list)
    original_data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, ResourceType):
            self.type = ResourceType.from_string(self.type)

    @classmethod
    def from_source(cls, type: ResourceType, data: Dict[str, Any],
                    name: Optional[str] = None, keep_data: bool = True) -> 'MigrationResource':
        """Create a pure-copy node (target == source) from a source payload."""
        resource_id = data['$id']
        display = name if name is not None else (data.get('name') or resource_id)
        return cls(
            type=type,
            source_id=resource_id,
            target_id=resource_id,
            source_name=display,
            target_name=display,
            enabled=True,
            original_data=copy.deepcopy(data) if keep_data else {},
        )

    def iter_tree(self) -> Iterator['MigrationResource']:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.iter_tree()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML/JSON serialization."""
        result = {
            'type': self.type.value,
            'source_id': self.source_id,
            'target_id': self.target_id,
            'source_name': self.source_name,
            'target_name': self.target_name,
            'enabled': self.enabled,
        }
        if self.children:
            result['children'] = [c.to_dict() for c in self.children]
        if self.original_data:
            result['original_data'] = self.original_data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationResource':
        """Create from dictionary."""
        try:
            return cls(
                type=ResourceType.from_string(data['type']),
                source_id=str(data['source_id']),
                target_id=str(data.get('target_id') or data['source_id']),
                source_name=str(data.get('source_name', data['source_id'])),
                target_name=str(data.get('target_name') or data.get('source_name', data['source_id'])),
                enabled=bool(data.get('enabled', True)),
                children=[cls.from_dict(c) for c in data.get('children') or []],
                original_data=dict(data.get('original_data') or {}),
            )
        except KeyError as e:
            raise PlanError(f"Plan resource is missing field {e}") from e


@dataclass
class MigrationOptions:
    """Flags gating whole executor phases."""
    migrate_databases: bool = True
    migrate_storage: bool = True
    migrate_functions: bool = True
    migrate_users: bool = True
    migrate_teams: bool = True
    migrate_documents: bool = True
    migrate_files: bool = True
    use_cloud_proxy: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationOptions':
        return cls(**{k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__})


PLAN_SECTIONS = ('databases', 'buckets', 'functions', 'teams', 'users')


@dataclass
class MigrationPlan:
    """Resources selected for migration, per kind, plus the run options."""
    databases: List[MigrationResource] = field(default_factory=list)
    buckets: List[MigrationResource] = field(default_factory=list)
    functions: List[MigrationResource] = field(default_factory=list)
    teams: List[MigrationResource] = field(default_factory=list)
    users: List[MigrationResource] = field(default_factory=list)
    options: MigrationOptions = field(default_factory=MigrationOptions)

    def iter_resources(self) -> Iterator[MigrationResource]:
        """Yield every node of the plan (databases include their collections)."""
        for section in PLAN_SECTIONS:
            for resource in getattr(self, section):
                yield from resource.iter_tree()

    def find(self, type: ResourceType, source_id: str) -> Optional[MigrationResource]:
        """Return the first node of the given kind and source ID."""
        for resource in self.iter_resources():
            if resource.type == type and resource.source_id == source_id:
                return resource
        return None

    def counts(self) -> Dict[str, int]:
        """Number of enabled top-level resources per section (collections counted separately)."""
        result = {section: sum(1 for r in getattr(self, section) if r.enabled) for section in PLAN_SECTIONS}
        result['collections'] = sum(
            1 for db in self.databases if db.enabled for c in db.children if c.enabled
        )
        return result

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'options': self.options.to_dict()}
        for section in PLAN_SECTIONS:
            result[section] = [r.to_dict() for r in getattr(self, section)]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationPlan':
        if not isinstance(data, dict):
            raise PlanError("Plan must be a mapping")
        sections = {
            section: [MigrationResource.from_dict(r) for r in data.get(section) or []]
            for section in PLAN_SECTIONS
        }
        return cls(options=MigrationOptions.from_dict(data.get('options') or {}), **sections)

    def save(self, filepath: Path) -> None:
        """Write the plan to a YAML file for review and editing."""
        with open(filepath, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, filepath: Path) -> 'MigrationPlan':
        """Load a plan from YAML."""
        path = Path(filepath)
        if not path.exists():
            raise PlanError(f"Plan file not found: {path}")
        with open(path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise PlanError(f"Invalid plan file {path}: {e}") from e
        return cls.from_dict(data or {})


@dataclass
class TransferResult:
    """Outcome of one document or file transfer."""
    id: str
    container_id: str
    status: TransferStatus
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'id': self.id, 'container_id': self.container_id, 'status': self.status.value}
        if self.error:
            result['error'] = self.error
        return result


@dataclass
class PhaseStats:
    """Per-phase counters."""
    migrated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, status: TransferStatus) -> None:
        if status == TransferStatus.MIGRATED:
            self.migrated += 1
        elif status == TransferStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    @property
    def total(self) -> int:
        return self.migrated + self.skipped + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {'migrated': self.migrated, 'skipped': self.skipped, 'failed': self.failed}


@dataclass
class MigrationResult:
    """Result of a migration run."""
    success: bool
    status: MigrationStatus
    message: str
    duration_seconds: float = 0.0
    phases: Dict[str, PhaseStats] = field(default_factory=dict)
    results: List[TransferResult] = field(default_factory=list)

    def stats(self, phase: str) -> PhaseStats:
        return self.phases.get(phase, PhaseStats())

    @property
    def failures(self) -> List[TransferResult]:
        return [r for r in self.results if r.status == TransferStatus.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'status': self.status.value,
            'message': self.message,
            'duration_seconds': round(self.duration_seconds, 3),
            'phases': {name: stats.to_dict() for name, stats in self.phases.items()},
            'results': [r.to_dict() for r in self.results],
        }
