import bz2
import gzip
import lzma
from pathlib import Path

import pytest

from phyloplace.util.io import atomic_write, get_format_suffixes, open_, path_exists


@pytest.mark.parametrize(
    "name,expect",
    [
        ("tree.nwk", ("nwk", None)),
        ("tree.nwk.gz", ("nwk", "gz")),
        ("tree.state.XZ", ("state", "xz")),
        ("tree.bz2", (None, "bz2")),
        ("tree", (None, None)),
        ("path/to/data.tree.newick", ("newick", None)),
    ],
)
def test_get_format_suffixes(name, expect):
    assert get_format_suffixes(name) == expect


@pytest.mark.parametrize(
    "suffix,opener",
    [(".gz", gzip.open), (".bz2", bz2.open), (".xz", lzma.open), ("", open)],
)
def test_open_compressed(tmp_path, suffix, opener):
    path = tmp_path / f"data.txt{suffix}"
    with opener(path, "wt") as out:
        out.write("ACGT\n")
    with open_(path) as infile:
        assert infile.read() == "ACGT\n"
    with open_(path, mode="rb") as infile:
        assert infile.read() == b"ACGT\n"


def test_open_write(tmp_path):
    path = tmp_path / "data.txt.gz"
    with open_(path, mode="w") as out:
        out.write("text")
    with gzip.open(path, "rt") as infile:
        assert infile.read() == "text"


def test_open_invalid():
    with pytest.raises(ValueError):
        open_("")


def test_atomic_write(tmp_path):
    path = tmp_path / "out.txt"
    writer = atomic_write(path, mode="w")
    with writer as out:
        out.write("done")
    assert writer.succeeded
    assert path.read_text() == "done"
    # only the written file remains
    assert list(tmp_path.iterdir()) == [path]


def test_atomic_write_replaces(tmp_path):
    path = tmp_path / "out.txt"
    path.write_text("old")
    with atomic_write(path, mode="w") as out:
        out.write("new")
    assert path.read_text() == "new"


def test_atomic_write_failure(tmp_path):
    path = tmp_path / "out.bin"
    writer = atomic_write(path, mode="wb")
    with pytest.raises(RuntimeError):
        with writer as out:
            out.write(b"partial")
            raise RuntimeError("stop")
    assert writer.succeeded is False
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


def test_atomic_write_compressed(tmp_path):
    path = tmp_path / "out.txt.bz2"
    with atomic_write(path, mode="wt") as out:
        out.write("compressed")
    with bz2.open(path, "rt") as infile:
        assert infile.read() == "compressed"


def test_atomic_write_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        with atomic_write(tmp_path / "missing" / "out.txt") as out:
            out.write("never")


def test_path_exists(tmp_path):
    assert path_exists(tmp_path)
    assert path_exists(str(tmp_path))
    assert not path_exists(tmp_path / "nothing")
    assert not path_exists(None)
    assert not path_exists(Path("a" * 5000))


def test_path_type():
    from phyloplace.util.io import PathType

    assert isinstance("tree.state", PathType)
    assert isinstance(Path("tree.state"), PathType)
    assert not isinstance(3, PathType)
