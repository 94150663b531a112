"""Tests for the encoded-set store and its lock file."""

import json

import pytest

from EncodeSync.encoded_store import (
    STORE_VERSION,
    EncodedSet,
    EncodedStoreManager,
    OutputEntry,
    StoreLock,
)
from EncodeSync.errors import ConfigError, NamingCollisionError, StoreLockedError


def entry(key: str, output: str) -> OutputEntry:
    return OutputEntry(
        identity_key=key,
        output_name=output,
        source_extension="flac",
        was_encoded=True,
        size=10,
        mtime=2.5,
    )


class TestEncodedSet:
    def test_upsert_and_lookup(self):
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "a.ogg"))
        assert encoded.get("a.flac").output_name == "a.ogg"
        assert encoded.find_by_output_name("a.ogg").identity_key == "a.flac"
        assert encoded.get("a.flac").last_sync

    def test_upsert_rejects_taken_output_name(self):
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "x.ogg"))
        with pytest.raises(NamingCollisionError) as exc:
            encoded.upsert(entry("b.flac", "x.ogg"))
        assert exc.value.collisions == {"x.ogg": ["a.flac", "b.flac"]}

    def test_upsert_same_key_replaces(self):
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "a.ogg"))
        encoded.upsert(entry("a.flac", "b.ogg"))
        assert encoded.entry_count == 1
        assert encoded.get("a.flac").output_name == "b.ogg"

    def test_remove(self):
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "a.ogg"))
        assert encoded.remove("a.flac")
        assert not encoded.remove("a.flac")

    def test_copy_is_independent(self):
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "a.ogg"))
        snapshot = encoded.copy()
        encoded.remove("a.flac")
        assert snapshot.get("a.flac") is not None

    def test_legacy_flat_layout(self):
        encoded = EncodedSet.from_dict({"Song [x].flac": "Song.ogg", "b.mp3": "b.mp3"})
        song = encoded.get("Song [x].flac")
        assert song.output_name == "Song.ogg"
        assert song.was_encoded
        assert not song.has_fingerprint
        assert not encoded.get("b.mp3").was_encoded

    def test_duplicate_output_rejected(self):
        with pytest.raises(ConfigError):
            EncodedSet.from_dict({"a.flac": "x.ogg", "b.flac": "x.ogg"})

    def test_entry_without_output_name_rejected(self):
        with pytest.raises(ConfigError):
            EncodedSet.from_dict({"version": 2, "entries": {"a.flac": {"size": 3}}})


class TestEncodedStoreManager:
    def test_missing_file_is_empty(self, tmp_path):
        manager = EncodedStoreManager(tmp_path / "encoded.json")
        assert manager.load().entry_count == 0

    def test_empty_file_is_empty(self, tmp_path):
        path = tmp_path / "encoded.json"
        path.write_text("  \n", encoding="utf-8")
        assert EncodedStoreManager(path).load().entry_count == 0

    def test_save_and_load(self, tmp_path):
        manager = EncodedStoreManager(tmp_path / "encoded.json")
        encoded = EncodedSet()
        encoded.upsert(entry("a.flac", "a.ogg"))
        manager.save(encoded)

        data = json.loads((tmp_path / "encoded.json").read_text(encoding="utf-8"))
        assert data["version"] == STORE_VERSION
        assert data["entries"]["a.flac"]["output_name"] == "a.ogg"
        assert not (tmp_path / "encoded.json.tmp").exists()

        loaded = manager.load()
        assert loaded.get("a.flac") == encoded.get("a.flac")

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "encoded.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            EncodedStoreManager(path).load()

    def test_unknown_fields_ignored(self, tmp_path):
        path = tmp_path / "encoded.json"
        path.write_text(json.dumps({
            "version": 2,
            "entries": {"a.flac": {"output_name": "a.ogg", "was_encoded": True, "extra": 1}},
        }), encoding="utf-8")
        assert EncodedStoreManager(path).load().get("a.flac").output_name == "a.ogg"


class TestStoreLock:
    def test_lock_is_exclusive(self, tmp_path):
        store_path = tmp_path / "encoded.json"
        with StoreLock(store_path) as lock:
            assert lock.lock_path.exists()
            with pytest.raises(StoreLockedError):
                StoreLock(store_path).acquire()
        assert not (tmp_path / "encoded.json.lock").exists()

    def test_locked_error_is_config_error(self, tmp_path):
        (tmp_path / "encoded.json.lock").write_text("1234", encoding="utf-8")
        with pytest.raises(ConfigError, match="1234"):
            StoreLock(tmp_path / "encoded.json").acquire()
