import io
import threading

import pytest

from gsdownload.core import ObjectInfo, ObjectStore
from gsdownload.errors import WriteError


class TrackedStream(io.BytesIO):
    def __init__(self, store, data):
        super().__init__(data)
        self._store = store

    def close(self):
        if not self.closed:
            with self._store._lock:
                self._store.closed_streams += 1
        super().close()


class MemoryStore(ObjectStore):
    """In-memory stand-in for a bucket: {name: bytes}."""

    def __init__(self, objects=None, sizes=None, walk_error=None, open_errors=None):
        self.objects = dict(objects or {})
        self.sizes = dict(sizes or {})
        self.walk_error = walk_error
        self.open_errors = dict(open_errors or {})
        self.walked = []
        self.opened = []
        self.closed_streams = 0
        self.connected = False
        self._lock = threading.Lock()

    def connect(self):
        self.connected = True

    def close(self):
        self.connected = False

    def walk(self, bucket, prefix=""):
        self.walked.append((bucket, prefix))
        for name, data in self.objects.items():
            if name.startswith(prefix):
                yield ObjectInfo(name=name, size=self.sizes.get(name, len(data)))
        if self.walk_error is not None:
            raise self.walk_error

    def open(self, bucket, name):
        with self._lock:
            self.opened.append(name)
        if name in self.open_errors:
            raise self.open_errors[name]
        return TrackedStream(self, self.objects[name])


class RecordingSink:
    """FileSink stand-in that keeps written bytes per path."""

    def __init__(self, fail_on=None):
        self.copied = {}
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def copy_to_file(self, path, reader):
        data = reader.read()
        with self._lock:
            if path in self.copied:
                raise WriteError(f"{path} has already been copied")
            if self.fail_on is not None and path == self.fail_on:
                raise WriteError(f"failed writing to file {path}: disk full")
            self.copied[path] = data
        return len(data)


SAMPLE_OBJECTS = {
    "prefix/foo": b"prefix/foo contents",
    "prefix/bar": b"prefix/bar contents",
    "prefix/baz/qux": b"prefix/baz/qux contents",
}
SAMPLE_SIZES = {name: 12 for name in SAMPLE_OBJECTS}


@pytest.fixture
def store():
    return MemoryStore(SAMPLE_OBJECTS, sizes=SAMPLE_SIZES)


@pytest.fixture
def empty_store():
    return MemoryStore()


@pytest.fixture
def sink():
    return RecordingSink()
