"""Tests for identity keys and rename matching."""

from EncodeSync.encoded_store import EncodedSet, OutputEntry
from EncodeSync.identity import (
    RenameIndex,
    SourceFile,
    fingerprint_matches,
    identity_key,
    match_entry,
)


def entry(key: str, output: str, size=100, mtime=1.0, ext="flac") -> OutputEntry:
    return OutputEntry(
        identity_key=key,
        output_name=output,
        source_extension=ext,
        was_encoded=True,
        size=size,
        mtime=mtime,
    )


def store(*entries: OutputEntry) -> EncodedSet:
    encoded = EncodedSet()
    for e in entries:
        encoded.upsert(e)
    return encoded


class TestSourceFile:
    def test_name_parts(self):
        f = SourceFile(path="Artist - Song.flac", size=1, mtime=2.0)
        assert f.raw_name == "Artist - Song"
        assert f.extension == "flac"
        assert f.fingerprint == (1, 2.0)
        assert identity_key(f) == "Artist - Song.flac"

    def test_fingerprint_matches(self):
        f = SourceFile(path="a.flac", size=100, mtime=1.0)
        assert fingerprint_matches(f, entry("a.flac", "a.ogg"))
        assert not fingerprint_matches(f, entry("a.flac", "a.ogg", size=101))
        assert not fingerprint_matches(f, entry("a.flac", "a.ogg", mtime=2.0))

    def test_legacy_entry_never_matches(self):
        f = SourceFile(path="a.flac", size=100, mtime=1.0)
        legacy = OutputEntry.from_legacy("a.flac", "a.ogg")
        assert not fingerprint_matches(f, legacy)


class TestMatchEntry:
    def test_path_match_wins(self):
        snapshot = store(entry("a.flac", "a.ogg", size=5))
        f = SourceFile(path="a.flac", size=100, mtime=1.0)
        match = match_entry(f, snapshot, RenameIndex(snapshot, {"a.flac"}))
        assert match.by_path
        assert match.entry.output_name == "a.ogg"
        assert not match.is_rename

    def test_rename_detected_by_fingerprint(self):
        snapshot = store(entry("old.flac", "old.ogg"))
        f = SourceFile(path="new.flac", size=100, mtime=1.0)
        match = match_entry(f, snapshot, RenameIndex(snapshot, {"new.flac"}))
        assert match.is_rename
        assert match.entry.identity_key == "old.flac"

    def test_rename_requires_same_extension(self):
        snapshot = store(entry("old.flac", "old.ogg"))
        f = SourceFile(path="new.wav", size=100, mtime=1.0)
        match = match_entry(f, snapshot, RenameIndex(snapshot, {"new.wav"}))
        assert match.entry is None

    def test_entry_still_listed_is_not_a_rename_candidate(self):
        snapshot = store(entry("old.flac", "old.ogg"))
        f = SourceFile(path="copy.flac", size=100, mtime=1.0)
        match = match_entry(f, snapshot, RenameIndex(snapshot, {"old.flac", "copy.flac"}))
        assert match.entry is None

    def test_candidate_claimed_once(self):
        snapshot = store(entry("old.flac", "old.ogg"))
        renames = RenameIndex(snapshot, {"b.flac", "c.flac"})
        first = match_entry(SourceFile("b.flac", 100, 1.0), snapshot, renames)
        second = match_entry(SourceFile("c.flac", 100, 1.0), snapshot, renames)
        assert first.is_rename
        assert second.entry is None

    def test_candidates_claimed_in_key_order(self):
        snapshot = store(entry("z.flac", "z.ogg"), entry("a.flac", "a.ogg"))
        renames = RenameIndex(snapshot, {"new.flac"})
        match = match_entry(SourceFile("new.flac", 100, 1.0), snapshot, renames)
        assert match.entry.identity_key == "a.flac"
