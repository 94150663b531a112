"""
Copy embedded cover art from a source file to its encoded output using mutagen.

FFmpeg drops attached pictures for most audio-only targets (Ogg Vorbis and
Opus in particular), so pictures are copied over after transcoding.

Reads:  FLAC, Ogg Vorbis, Opus, MP3 (ID3 APIC), M4A/MP4 (covr)
Writes: FLAC, Ogg Vorbis, Opus, MP3, M4A/MP4

Failures are never fatal: they are logged and reported as False.
"""

import base64
import logging
from pathlib import Path

import mutagen
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4, MP4Cover
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

logger = logging.getLogger(__name__)

# Picture type 3 = front cover
FRONT_COVER = 3

MP4_EXTENSIONS = {".m4a", ".m4b", ".mp4"}


# ─── Reading ───────────────────────────────────────────────────────────────────


def read_pictures(file_path: str | Path) -> list[Picture]:
    """
    Read every embedded picture of a music file.

    Args:
        file_path: Path to the music file

    Returns:
        Pictures as FLAC picture blocks (empty if none)
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".flac":
        return list(FLAC(path).pictures)
    if ext == ".ogg":
        return _vorbis_pictures(OggVorbis(path))
    if ext == ".opus":
        return _vorbis_pictures(OggOpus(path))
    if ext == ".mp3":
        return _id3_pictures(MP3(path).tags)
    if ext in MP4_EXTENSIONS:
        return _mp4_pictures(MP4(path).tags)

    # Try generic mutagen
    audio = mutagen.File(path)
    if audio is None:
        return []
    if isinstance(audio, FLAC):
        return list(audio.pictures)
    return _id3_pictures(audio.tags)


def _vorbis_pictures(audio) -> list[Picture]:
    """Decode METADATA_BLOCK_PICTURE comments."""
    pictures = []
    for encoded in audio.get("metadata_block_picture", []):
        try:
            pictures.append(Picture(base64.b64decode(encoded)))
        except (ValueError, mutagen.MutagenError) as e:
            logger.debug(f"Skipping unreadable picture block: {e}")
    return pictures


def _id3_pictures(tags) -> list[Picture]:
    """Convert ID3 APIC frames."""
    if tags is None or not hasattr(tags, "getall"):
        return []

    pictures = []
    for frame in tags.getall("APIC"):
        picture = Picture()
        picture.type = frame.type
        picture.mime = frame.mime
        picture.desc = frame.desc
        picture.data = frame.data
        pictures.append(picture)
    return pictures


def _mp4_pictures(tags) -> list[Picture]:
    """Convert MP4 covr atoms."""
    if tags is None:
        return []

    pictures = []
    for cover in tags.get("covr", []):
        picture = Picture()
        picture.type = FRONT_COVER
        picture.mime = "image/png" if cover.imageformat == MP4Cover.FORMAT_PNG else "image/jpeg"
        picture.data = bytes(cover)
        pictures.append(picture)
    return pictures


# ─── Writing ───────────────────────────────────────────────────────────────────


def write_pictures(file_path: str | Path, pictures: list[Picture]) -> bool:
    """
    Replace the embedded pictures of a file.

    Returns:
        True if written, False if the format isn't supported
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext in (".ogg", ".opus"):
        audio = OggVorbis(path) if ext == ".ogg" else OggOpus(path)
        audio["metadata_block_picture"] = [
            base64.b64encode(p.write()).decode("ascii") for p in pictures
        ]
        audio.save()
        return True

    if ext == ".flac":
        audio = FLAC(path)
        audio.clear_pictures()
        for picture in pictures:
            audio.add_picture(picture)
        audio.save()
        return True

    if ext == ".mp3":
        audio = MP3(path)
        if audio.tags is None:
            audio.add_tags()
        audio.tags.delall("APIC")
        for picture in pictures:
            audio.tags.add(APIC(
                encoding=3,  # UTF-8
                mime=picture.mime,
                type=picture.type,
                desc=picture.desc,
                data=picture.data,
            ))
        audio.save()
        return True

    if ext in MP4_EXTENSIONS:
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()
        audio.tags["covr"] = [
            MP4Cover(
                p.data,
                imageformat=MP4Cover.FORMAT_PNG if p.mime == "image/png" else MP4Cover.FORMAT_JPEG,
            )
            for p in pictures
        ]
        audio.save()
        return True

    logger.debug(f"Cover art not supported for {ext} outputs")
    return False


class CoverArtCopier:
    """Metadata-copy service: transfers cover art from a source to its output."""

    def copy(self, source_path: str | Path, output_path: str | Path) -> bool:
        """
        Copy all embedded pictures.

        Returns:
            True if pictures were copied, False if there were none or it failed
        """
        try:
            pictures = read_pictures(source_path)
            if not pictures:
                logger.debug(f"No cover art in {Path(source_path).name}")
                return False
            if write_pictures(output_path, pictures):
                logger.info(f"Copied {len(pictures)} cover image(s) to {Path(output_path).name}")
                return True
            return False
        except Exception as e:
            logger.warning(f"Could not copy cover art to {Path(output_path).name}: {e}")
            return False
