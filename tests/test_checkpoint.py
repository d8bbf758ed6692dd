"""Checkpoint keys, cursor storage and the JSON-file store."""

import json
import time

from studio_transfer.migration.checkpoint import (
    CheckpointStore,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    document_stream_key,
    file_stream_key,
)


class TestCheckpointStore:
    """Cursor keys are namespaced by the project pair."""

    def test_key_layout(self):
        """Test that marker and cursor keys follow mig_checkpoint_<src>_<dst>[_cursor_<stream>]."""
        store = MemoryKeyValueStore()
        checkpoint = CheckpointStore(store, "src", "dst")

        checkpoint.save_cursor(document_stream_key("posts"), "p7")
        checkpoint.save_cursor(file_stream_key("avatars"), "f2")

        assert checkpoint.key == "mig_checkpoint_src_dst"
        assert store.data["mig_checkpoint_src_dst_cursor_doc_posts"] == "p7"
        assert store.data["mig_checkpoint_src_dst_cursor_file_avatars"] == "f2"
        assert checkpoint.cursors() == {"doc_posts": "p7", "file_avatars": "f2"}

    def test_first_cursor_writes_marker(self):
        """Test that saving a cursor creates the marker with a millisecond timestamp."""
        store = MemoryKeyValueStore()
        checkpoint = CheckpointStore(store, "src", "dst")
        assert not checkpoint.has_checkpoint()
        assert checkpoint.created_at() is None

        before = time.time()
        checkpoint.save_cursor("doc_posts", "p1")

        assert checkpoint.has_checkpoint()
        assert int(store.data["mig_checkpoint_src_dst"]) >= int(before * 1000)
        assert abs(checkpoint.created_at() - before) < 5

    def test_marker_is_not_rewritten(self):
        store = MemoryKeyValueStore({"mig_checkpoint_src_dst": "1700000000000"})
        checkpoint = CheckpointStore(store, "src", "dst")

        checkpoint.save_cursor("doc_posts", "p1")

        assert store.data["mig_checkpoint_src_dst"] == "1700000000000"
        assert checkpoint.created_at() == 1700000000.0

    def test_get_cursor_treats_empty_as_missing(self):
        store = MemoryKeyValueStore({"mig_checkpoint_src_dst_cursor_doc_posts": ""})
        checkpoint = CheckpointStore(store, "src", "dst")

        assert checkpoint.get_cursor("doc_posts") is None
        assert checkpoint.get_cursor("doc_other") is None

    def test_clear_only_touches_its_pair(self):
        """Test that clearing one pair keeps other pairs' checkpoints."""
        store = MemoryKeyValueStore({
            "mig_checkpoint_src_dst": "1",
            "mig_checkpoint_src_dst_cursor_doc_posts": "p1",
            "mig_checkpoint_src_dst2": "2",
            "mig_checkpoint_src_dst2_cursor_doc_posts": "p9",
            "unrelated": "x",
        })

        CheckpointStore(store, "src", "dst").clear()

        assert sorted(store.data) == [
            "mig_checkpoint_src_dst2", "mig_checkpoint_src_dst2_cursor_doc_posts", "unrelated",
        ]


class TestJsonFileKeyValueStore:
    """File-backed store used by the CLI."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "checkpoints.json"
        first = JsonFileKeyValueStore(path)
        CheckpointStore(first, "a", "b").save_cursor("doc_posts", "p3")

        second = JsonFileKeyValueStore(path)

        assert CheckpointStore(second, "a", "b").get_cursor("doc_posts") == "p3"
        assert json.loads(path.read_text())["mig_checkpoint_a_b_cursor_doc_posts"] == "p3"

    def test_clear_rewrites_file(self, tmp_path):
        path = tmp_path / "checkpoints.json"
        store = JsonFileKeyValueStore(path)
        checkpoint = CheckpointStore(store, "a", "b")
        checkpoint.save_cursor("doc_posts", "p3")

        checkpoint.clear()

        assert json.loads(path.read_text()) == {}
        assert list(tmp_path.iterdir()) == [path]

    def test_corrupt_file_starts_empty(self, tmp_path):
        """Test that an unreadable checkpoint file is ignored rather than fatal."""
        path = tmp_path / "checkpoints.json"
        path.write_text("{not json")

        store = JsonFileKeyValueStore(path)

        assert store.keys() == []
        store.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}
