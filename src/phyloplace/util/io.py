"""File access with compression chosen by suffix, and atomic writes."""

from __future__ import annotations

import bz2
import gzip
import lzma
import os
import shutil
from pathlib import Path, PurePath
from tempfile import mkdtemp
from collections.abc import Callable
from typing import IO

PathType = str | os.PathLike | PurePath

_compression_handlers: dict[str, Callable[..., IO]] = {
    "gz": gzip.open,
    "bz2": bz2.open,
    "xz": lzma.open,
    "lzma": lzma.open,
}


def get_format_suffixes(filename: PathType) -> tuple[str | None, str | None]:
    """returns the lower case format and compression suffixes

    'tree.state.gz' gives ('state', 'gz'), 'tree.gz' gives (None, 'gz')
    """
    suffixes = [sfx[1:].lower() for sfx in Path(filename).suffixes[-2:]]
    if not suffixes:
        return None, None
    if suffixes[-1] not in _compression_handlers:
        return suffixes[-1], None
    compression = suffixes.pop()
    return (suffixes[-1] if suffixes else None), compression


def open_(filename: PathType, mode: str = "rt", **kwargs) -> IO:
    """opens filename, compressing or decompressing according to its suffix

    Parameters
    ----------
    filename
        path to a file
    mode
        standard file opening mode, text unless 'b' is included
    kwargs
        passed to the open function, text defaults to utf8 encoding
    """
    if not filename:
        msg = f"{filename!r} is not a valid file name"
        raise ValueError(msg)

    path = Path(filename).expanduser()
    _, compression = get_format_suffixes(path)
    opener = _compression_handlers.get(compression, open)
    mode = mode or "rt"
    encoding = kwargs.pop("encoding", None)
    if "b" in mode:
        return opener(path, mode, **kwargs)

    if "t" not in mode:
        mode += "t"
    return opener(path, mode, encoding=encoding or "utf8", **kwargs)


class atomic_write:
    """writes to a temporary file that replaces path only when the with
    block exits without an exception

    Parameters
    ----------
    path
        destination, compressed according to its suffix
    mode
        a writing mode
    encoding
        text encoding

    Notes
    -----
    The temporary file is created beside path so the final rename does not
    cross file systems. After the block, succeeded records the outcome.
    """

    def __init__(self, path: PathType, mode: str = "w", encoding=None) -> None:
        self._path = Path(path).expanduser()
        self._mode = mode
        self._encoding = encoding
        self._tmpdir: Path | None = None
        self._file: IO | None = None
        self.succeeded: bool | None = None

    def __enter__(self) -> IO:
        self._tmpdir = Path(mkdtemp(dir=self._path.parent, prefix=".tmp-"))
        tmppath = self._tmpdir / self._path.name
        self._file = open_(tmppath, self._mode, encoding=self._encoding)
        return self._file

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._file.close()
        try:
            if exc_type is None:
                os.replace(self._tmpdir / self._path.name, self._path)
        finally:
            shutil.rmtree(self._tmpdir)
        self.succeeded = exc_type is None


def path_exists(path: PathType) -> bool:
    """whether path names an existing file or directory"""
    try:
        return Path(path).exists()
    except (OSError, TypeError, ValueError):
        return False
