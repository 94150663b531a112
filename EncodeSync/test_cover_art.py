"""Tests for cover art copying (mutagen is mocked)."""

import base64
from unittest.mock import MagicMock, patch

from mutagen.flac import Picture

from EncodeSync.cover_art import CoverArtCopier, read_pictures, write_pictures


def make_picture(data: bytes = b"\x89PNG fake") -> Picture:
    picture = Picture()
    picture.type = 3
    picture.mime = "image/png"
    picture.data = data
    return picture


class TestReadPictures:
    def test_flac(self):
        audio = MagicMock()
        audio.pictures = [make_picture()]
        with patch("EncodeSync.cover_art.FLAC", return_value=audio):
            pictures = read_pictures("song.flac")
        assert [p.data for p in pictures] == [b"\x89PNG fake"]

    def test_ogg_metadata_block_picture(self):
        encoded = base64.b64encode(make_picture(b"jpeg bytes").write()).decode("ascii")
        audio = {"metadata_block_picture": [encoded]}
        with patch("EncodeSync.cover_art.OggVorbis", return_value=audio):
            pictures = read_pictures("song.ogg")
        assert pictures[0].data == b"jpeg bytes"
        assert pictures[0].mime == "image/png"

    def test_mp3_apic(self):
        frame = MagicMock(type=3, mime="image/jpeg", desc="Cover", data=b"jpg")
        audio = MagicMock()
        audio.tags.getall.return_value = [frame]
        with patch("EncodeSync.cover_art.MP3", return_value=audio):
            pictures = read_pictures("song.mp3")
        audio.tags.getall.assert_called_once_with("APIC")
        assert pictures[0].data == b"jpg"
        assert pictures[0].desc == "Cover"


class TestWritePictures:
    def test_ogg_writes_base64_blocks(self):
        audio = MagicMock()
        with patch("EncodeSync.cover_art.OggVorbis", return_value=audio):
            assert write_pictures("out.ogg", [make_picture()])
        blocks = audio.__setitem__.call_args[0][1]
        assert Picture(base64.b64decode(blocks[0])).data == b"\x89PNG fake"
        audio.save.assert_called_once()

    def test_unsupported_format(self):
        assert write_pictures("out.wav", [make_picture()]) is False


class TestCoverArtCopier:
    def test_copies_when_pictures_found(self):
        with patch("EncodeSync.cover_art.read_pictures", return_value=[make_picture()]), \
                patch("EncodeSync.cover_art.write_pictures", return_value=True) as write:
            assert CoverArtCopier().copy("a.flac", "a.ogg")
        write.assert_called_once()

    def test_no_pictures(self):
        with patch("EncodeSync.cover_art.read_pictures", return_value=[]):
            assert not CoverArtCopier().copy("a.flac", "a.ogg")

    def test_failure_is_not_fatal(self, caplog):
        with patch("EncodeSync.cover_art.read_pictures", side_effect=ValueError("broken file")):
            assert not CoverArtCopier().copy("a.flac", "a.ogg")
        assert "broken file" in caplog.text
