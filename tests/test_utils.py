import io
import os
import stat
import threading

import pytest

from gsdownload.errors import WriteError
from gsdownload.utils import (
    FileSink,
    ensure_dir,
    human_bytes,
    is_within,
    map_path,
    normalize_prefix,
    read_yaml,
    strip_prefix,
)


@pytest.fixture
def umask_022():
    old = os.umask(0o022)
    try:
        yield
    finally:
        os.umask(old)


@pytest.mark.parametrize(
    "prefix, expected",
    [
        ("", ""),
        ("/", ""),
        ("foo", "foo/"),
        ("/foo", "foo/"),
        ("/foo/", "foo/"),
        ("foo/", "foo/"),
        ("a/b", "a/b/"),
    ],
)
def test_normalize_prefix(prefix, expected):
    assert normalize_prefix(prefix) == expected


def test_normalize_prefix_appends_a_single_slash():
    assert normalize_prefix("foo/bar") == "foo/bar/"
    assert normalize_prefix("foo/bar/") == "foo/bar/"


def test_strip_prefix_only_when_name_starts_with_it():
    assert strip_prefix("prefix/foo", "prefix/") == "foo"
    assert strip_prefix("other/foo", "prefix/") == "other/foo"
    assert strip_prefix("foo", "") == "foo"


def test_map_path():
    assert map_path("prefix/foo", "prefix/", "path") == os.path.join("path", "foo")
    assert map_path("prefix/baz/qux", "prefix/", "path") == os.path.join("path", "baz", "qux")
    assert map_path("prefix/foo", "", "path") == os.path.join("path", "prefix", "foo")
    # a leading slash in the remainder must not replace the output root
    assert map_path("prefix//foo", "prefix/", "path") == os.path.join("path", "foo")


def test_map_path_is_pure():
    args = ("prefix/a/b", "prefix/", "/tmp/out")
    assert map_path(*args) == map_path(*args)


def test_is_within():
    assert is_within(map_path("p/a", "p/", "out"), "out")
    assert not is_within(map_path("p/../escape", "p/", "out"), "out")
    assert not is_within(map_path("p/a/../../../x", "p/", "out"), "out")
    assert not is_within("out", "out")


def test_ensure_dir_creates_chain_with_mode(tmp_path, umask_022):
    target = tmp_path / "a" / "b" / "c"
    ensure_dir(target)
    for d in (tmp_path / "a", tmp_path / "a" / "b", target):
        assert d.is_dir()
        assert stat.S_IMODE(d.stat().st_mode) == 0o755
    # existing directories are fine
    ensure_dir(target)


def test_ensure_dir_rejects_file(tmp_path):
    f = tmp_path / "file"
    f.write_text("x")
    with pytest.raises(OSError):
        ensure_dir(f)


def test_copy_to_file_writes_content(tmp_path, umask_022):
    sink = FileSink(chunk_size=4)
    path = tmp_path / "foo" / "bar" / "baz"
    n = sink.copy_to_file(path, io.BytesIO(b"test content"))
    assert n == len(b"test content")
    assert path.read_bytes() == b"test content"
    assert stat.S_IMODE((tmp_path / "foo" / "bar").stat().st_mode) == 0o755


def test_copy_to_file_truncates_existing(tmp_path):
    path = tmp_path / "out"
    path.write_bytes(b"a much longer previous content")
    FileSink().copy_to_file(path, io.BytesIO(b"new"))
    assert path.read_bytes() == b"new"


def test_copy_to_file_directory_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a dir")
    with pytest.raises(WriteError) as exc:
        FileSink().copy_to_file(blocker / "child" / "file", io.BytesIO(b"x"))
    assert "failed to create directory" in str(exc.value)
    assert str(blocker) in str(exc.value)


def test_copy_to_file_create_failure(tmp_path):
    target = tmp_path / "dir"
    target.mkdir()
    with pytest.raises(WriteError) as exc:
        FileSink().copy_to_file(target, io.BytesIO(b"x"))
    assert "failed to create file" in str(exc.value)


class _BrokenReader:
    def read(self, size=-1):
        raise OSError("connection reset")


def test_copy_to_file_reader_failure_wraps_cause(tmp_path):
    path = tmp_path / "out"
    with pytest.raises(WriteError) as exc:
        FileSink().copy_to_file(path, _BrokenReader())
    assert str(path) in str(exc.value)
    assert isinstance(exc.value.__cause__, OSError)


def test_copy_to_file_concurrent_writers(tmp_path):
    sink = FileSink()
    paths = [tmp_path / "x" / "y" / f"d{i % 3}" / f"f{i}" for i in range(24)]
    errors = []

    def _write(i, p):
        try:
            sink.copy_to_file(p, io.BytesIO(str(i).encode()))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=_write, args=(i, p)) for i, p in enumerate(paths)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for i, p in enumerate(paths):
        assert p.read_bytes() == str(i).encode()


def test_read_yaml(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("storage:\n  backend: s3\n")
    assert read_yaml(str(cfg)) == {"storage": {"backend": "s3"}}
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert read_yaml(str(empty)) == {}


def test_human_bytes():
    assert human_bytes(0) == "0.0 B"
    assert human_bytes(2048) == "2.0 KB"
