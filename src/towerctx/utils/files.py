# src/towerctx/utils/files.py
import os
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


class BinaryFileError(ValueError):
    """The file looks binary and has no text to contribute."""


class FileTooLargeError(ValueError):
    """The file is larger than the caller is willing to read."""


def is_binary_file(path: PathLike) -> bool:
    """
    Reads the first 1024 bytes to check for null bytes.
    Returns True if likely binary, False if likely text.
    """
    with open(path, "rb") as f:
        chunk = f.read(1024)
    return b"\0" in chunk


def read_text_file(path: PathLike, max_bytes: int = 0) -> str:
    """
    Reads a text file as UTF-8.
    Raises OSError for filesystem problems, BinaryFileError for binary content,
    FileTooLargeError when `max_bytes` is set and exceeded and
    UnicodeDecodeError for undecodable text.
    """
    path = Path(path)
    if max_bytes:
        size = path.stat().st_size
        if size > max_bytes:
            raise FileTooLargeError(f"{path} is too large ({size} bytes)")
    if is_binary_file(path):
        raise BinaryFileError(f"{path} looks like a binary file")
    return path.read_text(encoding="utf-8")


def to_posix(path: str) -> str:
    return path.replace("\\", "/")


def normalize_path(path: PathLike) -> str:
    """Canonical form used when comparing selection paths."""
    return os.path.normcase(os.path.normpath(str(path)))
