"""
Filename Transform - Strips bracketed spans from output filenames.

Each bracket style can be switched on independently:
  round  ( )    square  [ ]    curly  { }    angle  < >

A removed span takes one adjacent whitespace character with it, the leading
one when there is one:
  "Track (Remix) [2020]"  --square-->  "Track (Remix)"
  "[Label] Track"         --square-->  "Track"
  "Track[2020]"           --square-->  "Track"

Spans are minimal (an opener pairs with the next closer). Nested or
unbalanced brackets of a style leave the name untouched for that style.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import SyncConfig
    from .identity import SourceFile

logger = logging.getLogger(__name__)

# Processing order is fixed so the result never depends on dict ordering
BRACKET_STYLES: list[tuple[str, str, str]] = [
    ("round", "(", ")"),
    ("square", "[", "]"),
    ("curly", "{", "}"),
    ("angle", "<", ">"),
]


@dataclass(frozen=True)
class BracketConfig:
    """Which bracket styles to strip from output names."""

    round: bool = False
    square: bool = False
    curly: bool = False
    angle: bool = False

    def enabled_styles(self) -> list[tuple[str, str, str]]:
        return [style for style in BRACKET_STYLES if getattr(self, style[0])]

    @property
    def any_enabled(self) -> bool:
        return bool(self.enabled_styles())


def split_name(filename: str) -> tuple[str, str]:
    """Split a filename into (stem, extension) without the dot.

    A leading dot is part of the stem, so ".hidden" has no extension.
    """
    dot = filename.rfind(".")
    if dot <= 0:
        return filename, ""
    return filename[:dot], filename[dot + 1:]


def is_well_formed(text: str, opener: str, closer: str) -> bool:
    """Check that every opener is closed before the next opener or the end."""
    inside = False
    for char in text:
        if char == opener:
            if inside:
                return False
            inside = True
        elif char == closer:
            if not inside:
                return False
            inside = False
    return not inside


def _remove_spans(text: str, opener: str, closer: str) -> str:
    """Remove every span of one style, left to right, one at a time."""
    while True:
        start = text.find(opener)
        if start < 0:
            return text
        end = text.find(closer, start + 1)
        if end < 0:
            return text

        end += 1  # past the closer
        if start > 0 and text[start - 1].isspace():
            start -= 1
        elif end < len(text) and text[end].isspace():
            end += 1
        text = text[:start] + text[end:]


def _strip_pass(stem: str, brackets: BracketConfig, warned: set[str]) -> str:
    for name, opener, closer in brackets.enabled_styles():
        if opener not in stem and closer not in stem:
            continue
        if not is_well_formed(stem, opener, closer):
            if name not in warned:
                warned.add(name)
                logger.warning(
                    f"Unbalanced {name} brackets in '{stem}', leaving them untouched"
                )
            continue
        stem = _remove_spans(stem, opener, closer)
    return stem


def strip_brackets(stem: str, brackets: BracketConfig) -> str:
    """Strip enabled bracket styles from a stem until nothing more changes."""
    if not brackets.any_enabled:
        return stem

    warned: set[str] = set()
    while True:
        stripped = _strip_pass(stem, brackets, warned)
        if stripped == stem:
            return stripped
        stem = stripped


def transform(raw_name: str, brackets: BracketConfig) -> str:
    """
    Map a raw filename to its display name.

    Only the stem is transformed; the extension is kept exactly.

    Args:
        raw_name: Filename without any directory component
        brackets: Which bracket styles to strip

    Returns:
        The transformed filename
    """
    stem, extension = split_name(raw_name)
    stem = strip_brackets(stem, brackets)
    if extension:
        return f"{stem}.{extension}"
    return stem


def output_name_for(source: "SourceFile", config: "SyncConfig") -> str:
    """Compute the name a source file gets in the output location.

    Files that are encoded take the configured encoded extension.
    """
    stem = strip_brackets(source.raw_name, config.brackets)
    if config.should_encode(source.extension):
        return f"{stem}.{config.encoded_extension}"
    if source.extension:
        return f"{stem}.{source.extension}"
    return stem
