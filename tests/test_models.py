"""Plan model, YAML round trip and attribute parsing."""

import pytest

from studio_transfer.errors import PlanError, UnsupportedAttributeError
from studio_transfer.migration.attributes import (
    EmailAttribute,
    EnumAttribute,
    IntegerAttribute,
    RelationshipAttribute,
    StringAttribute,
    parse_attribute,
    sanitize_int,
)
from studio_transfer.migration.models import (
    MigrationOptions,
    MigrationPlan,
    MigrationResource,
    MigrationStatus,
    PhaseStats,
    ResourceType,
    TransferStatus,
)


# =============================================================================
# Plan
# =============================================================================

def sample_plan() -> MigrationPlan:
    db = MigrationResource.from_source(ResourceType.DATABASE, {"$id": "db1", "name": "Main"})
    posts = MigrationResource.from_source(ResourceType.COLLECTION, {"$id": "posts", "name": "Posts"})
    drafts = MigrationResource.from_source(ResourceType.COLLECTION, {"$id": "drafts", "name": "Drafts"})
    drafts.enabled = False
    db.children = [posts, drafts]
    user = MigrationResource.from_source(ResourceType.USER, {"$id": "u1", "email": "a@b.io"}, name="a@b.io")
    return MigrationPlan(
        databases=[db],
        users=[user],
        options=MigrationOptions(migrate_files=False, use_cloud_proxy=True),
    )


class TestMigrationPlan:
    """Pure-copy defaults, counting and persistence."""

    def test_from_source_is_pure_copy(self):
        resource = MigrationResource.from_source(ResourceType.BUCKET, {"$id": "b1", "name": "Avatars"})

        assert (resource.source_id, resource.target_id) == ("b1", "b1")
        assert (resource.source_name, resource.target_name) == ("Avatars", "Avatars")
        assert resource.enabled
        assert resource.original_data == {"$id": "b1", "name": "Avatars"}

    def test_counts_skip_disabled(self):
        counts = sample_plan().counts()

        assert counts["databases"] == 1
        assert counts["collections"] == 1
        assert counts["users"] == 1
        assert counts["buckets"] == 0

    def test_find(self):
        plan = sample_plan()

        assert plan.find(ResourceType.COLLECTION, "drafts").enabled is False
        assert plan.find(ResourceType.COLLECTION, "nope") is None

    def test_yaml_round_trip_keeps_edits(self, tmp_path):
        """Test that edited targets, disabled nodes and options survive save/load."""
        plan = sample_plan()
        plan.find(ResourceType.COLLECTION, "posts").target_id = "articles"
        path = tmp_path / "plan.yaml"

        plan.save(path)
        loaded = MigrationPlan.load(path)

        assert loaded.to_dict() == plan.to_dict()
        assert loaded.databases[0].children[0].target_id == "articles"
        assert loaded.databases[0].children[1].enabled is False
        assert loaded.options.use_cloud_proxy is True
        assert loaded.options.migrate_files is False

    def test_load_errors(self, tmp_path):
        with pytest.raises(PlanError, match="not found"):
            MigrationPlan.load(tmp_path / "missing.yaml")

        broken = tmp_path / "broken.yaml"
        broken.write_text("databases:\n  - type: database\n    target_id: x\n")
        with pytest.raises(PlanError, match="source_id"):
            MigrationPlan.load(broken)

        wrong_type = tmp_path / "wrong.yaml"
        wrong_type.write_text("databases:\n  - type: spreadsheet\n    source_id: x\n")
        with pytest.raises(PlanError, match="Invalid resource type"):
            MigrationPlan.load(wrong_type)

    def test_options_ignore_unknown_keys(self):
        options = MigrationOptions.from_dict({"migrate_users": False, "turbo": True})

        assert options.migrate_users is False
        assert options.migrate_databases is True


def test_run_statuses():
    assert [s.value for s in MigrationStatus] == ["completed", "stopped", "failed"]


def test_phase_stats_record():
    stats = PhaseStats()
    for status in (TransferStatus.MIGRATED, TransferStatus.MIGRATED, TransferStatus.SKIPPED, TransferStatus.FAILED):
        stats.record(status)

    assert stats.to_dict() == {"migrated": 2, "skipped": 1, "failed": 1}
    assert stats.total == 4


# =============================================================================
# Attributes
# =============================================================================

class TestSanitizeInt:
    """Integer constraints from messy source metadata."""

    @pytest.mark.parametrize("value, expected", [
        (42, 42),
        ("42", 42),
        (" 7 ", 7),
        (3.9, 3),
        ("1e3", 1000),
        (-5, -5),
    ])
    def test_coerces(self, value, expected):
        assert sanitize_int(value) == expected

    @pytest.mark.parametrize("value", [None, "", "null", "undefined", "abc", float("inf"), float("nan"), True, [1]])
    def test_rejects(self, value):
        assert sanitize_int(value) is None


class TestParseAttribute:
    """Source attribute payloads to typed kinds."""

    def test_string_with_format_uses_format_kind(self):
        attribute = parse_attribute({"key": "contact", "type": "string", "format": "email", "required": True})

        assert isinstance(attribute, EmailAttribute)
        assert attribute.kind == "email"
        assert attribute.params() == {"key": "contact", "required": True, "array": False}

    def test_enum_elements(self):
        attribute = parse_attribute({"key": "state", "type": "string", "format": "enum",
                                     "elements": ["draft", "live"], "default": "draft"})

        assert isinstance(attribute, EnumAttribute)
        assert attribute.params()["elements"] == ["draft", "live"]
        assert attribute.params()["default"] == "draft"

    def test_string_size_defaults(self):
        attribute = parse_attribute({"key": "title", "type": "string", "size": "null"})

        assert isinstance(attribute, StringAttribute)
        assert attribute.size == 255

    def test_required_attribute_drops_default(self):
        attribute = parse_attribute({"key": "count", "type": "integer", "required": True, "default": 3})

        assert "default" not in attribute.params()

    def test_integer_sentinels_are_dropped(self):
        """Test that unusable min/max values are removed instead of failing."""
        attribute = parse_attribute({"key": "views", "type": "integer", "min": "null",
                                     "max": 9.223372036854776e18, "default": ""})

        assert isinstance(attribute, IntegerAttribute)
        assert attribute.min is None
        assert attribute.max == 9223372036854775808
        assert attribute.default is None
        assert attribute.without_constraints().params() == {"key": "views", "required": False, "array": False}

    def test_relationship_retarget(self):
        attribute = parse_attribute({"key": "author", "type": "relationship", "relatedCollection": "authors",
                                     "relationType": "manyToOne", "twoWay": True, "twoWayKey": "books",
                                     "onDelete": "cascade"})

        assert isinstance(attribute, RelationshipAttribute)
        assert attribute.is_relationship
        params = attribute.retarget({"authors": "writers"}).params()
        assert params["relatedCollectionId"] == "writers"
        assert params["twoWayKey"] == "books"
        assert params["onDelete"] == "cascade"
        assert attribute.retarget({}).related_collection == "authors"

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedAttributeError, match="polygon"):
            parse_attribute({"key": "area", "type": "polygon"})
