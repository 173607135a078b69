"""
Resolution of position store locations.

Locations that start with a relative-path marker (``./``, ``../``, ``.\\``,
``..\\``, or exactly ``.``/``..``) are resolved against an explicit working
directory. Everything else must already be absolute. Existing state layouts
depend on this rule, so bare relative names such as ``bookmark.pos`` are
rejected rather than guessed.
"""

from __future__ import annotations

import os
from pathlib import Path

from eventwatch.exceptions import InvalidLocationError

RELATIVE_MARKERS: tuple[str, ...] = ("./", "../", ".\\", "..\\")


def is_relative_marked(location: str) -> bool:
    """Check whether a location starts with a relative-path marker."""
    return location in (".", "..") or location.startswith(RELATIVE_MARKERS)


def resolve_location(location: str | os.PathLike[str], working_dir: str | os.PathLike[str]) -> Path:
    """
    Resolve a location to an absolute file-system path.

    Args:
        location: Location as supplied by the caller
        working_dir: Directory that relative-marked locations resolve against

    Returns:
        Absolute, normalized path

    Raises:
        InvalidLocationError: If the location is empty, not relative-marked
            and not absolute, or the working directory is not absolute
    """
    if isinstance(location, Path):
        raw = str(location)
        # Path("./x") drops the marker, so a Path is taken at face value
        if not location.is_absolute():
            raise InvalidLocationError(location, "relative Path objects must be absolute")
        return Path(os.path.normpath(raw))

    if not isinstance(location, (str, os.PathLike)):
        raise InvalidLocationError(location, f"expected a path string, got {type(location).__name__}")
    raw = os.fspath(location)
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidLocationError(location, "location is empty")

    if raw.startswith("~"):
        expanded = os.path.expanduser(raw)
        if expanded == raw:
            raise InvalidLocationError(location, "home directory cannot be resolved")
        raw = expanded

    if is_relative_marked(raw):
        base = Path(os.fspath(working_dir))
        if not base.is_absolute():
            raise InvalidLocationError(
                location, f"working directory {os.fspath(working_dir)!r} is not absolute"
            )
        # Both separators count for the marker; normalize them for this platform
        relative = raw.replace("\\", os.sep) if os.sep != "\\" else raw
        return Path(os.path.normpath(base / relative))

    path = Path(raw)
    if not path.is_absolute():
        raise InvalidLocationError(
            location,
            "must be absolute or start with a relative-path marker such as './'",
        )
    return Path(os.path.normpath(path))


__all__ = [
    "RELATIVE_MARKERS",
    "is_relative_marked",
    "resolve_location",
]
