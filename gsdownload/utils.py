from __future__ import annotations
from typing import Any, BinaryIO, Dict
from pathlib import Path
import os
import threading
import yaml

from .errors import GsDownloadError, WriteError

DIR_MODE = 0o755
CHUNK_SIZE = 1024 * 1024


def ensure_dir(path: Path | str, mode: int = DIR_MODE) -> None:
    """
    mkdir -p, but every directory it creates gets `mode`
    (Path.mkdir(parents=True) only applies it to the leaf).
    """
    target = Path(path)
    missing = []
    p = target
    while not p.exists():
        missing.append(p)
        if p.parent == p:
            break
        p = p.parent
    for d in reversed(missing):
        try:
            d.mkdir(mode=mode)
        except FileExistsError:
            pass
    if not target.is_dir():
        raise NotADirectoryError(f"not a directory: {target}")


def read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def normalize_prefix(prefix: str) -> str:
    """'' and '/' mean the whole bucket; anything else becomes 'a/b/'."""
    if not prefix.endswith("/"):
        prefix = prefix + "/"
    if prefix == "/":
        prefix = ""
    if prefix.startswith("/"):
        prefix = prefix[1:]
    return prefix


def strip_prefix(name: str, prefix: str) -> str:
    if prefix and name.startswith(prefix):
        return name[len(prefix):]
    return name


def map_path(name: str, prefix: str, output_dir: str) -> str:
    rel = strip_prefix(name, prefix).lstrip("/")
    return os.path.normpath(os.path.join(output_dir, rel))


def is_within(path: str, root: str) -> bool:
    """True if `path` is strictly below `root` after resolving '..' lexically."""
    root_abs = os.path.abspath(root)
    path_abs = os.path.abspath(path)
    if path_abs == root_abs:
        return False
    return os.path.commonpath([root_abs, path_abs]) == root_abs


def human_bytes(n: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    s = float(n)
    for u in units:
        if s < 1024 or u == units[-1]:
            return f"{s:.1f} {u}"
        s /= 1024.0


class FileSink:
    """
    Writes object streams to local files.

    Parent directories are created under a lock held by the sink, so
    concurrent workers never build overlapping trees at the same time.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE, dir_mode: int = DIR_MODE):
        self.chunk_size = chunk_size
        self.dir_mode = dir_mode
        self._dir_lock = threading.Lock()

    def _make_parents(self, parent: str) -> None:
        with self._dir_lock:
            ensure_dir(parent, mode=self.dir_mode)

    def copy_to_file(self, path: Path | str, reader: BinaryIO) -> int:
        """
        Stream `reader` into `path` (created or truncated) and return
        the number of bytes written.
        """
        path = str(path)
        parent = os.path.dirname(path)
        if parent:
            try:
                self._make_parents(parent)
            except OSError as e:
                raise WriteError(f"failed to create directory {parent}: {e}") from e

        try:
            f = open(path, "wb")
        except OSError as e:
            raise WriteError(f"failed to create file {path}: {e}") from e

        written = 0
        with f:
            try:
                while True:
                    chunk = reader.read(self.chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)
                    written += len(chunk)
            except GsDownloadError:
                raise
            except Exception as e:
                raise WriteError(f"failed writing to file {path}: {e}") from e
        return written
