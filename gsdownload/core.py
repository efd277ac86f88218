from __future__ import annotations
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Iterator, Optional
import logging
import threading

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import storage as gcs

from .errors import ConfigError, ConnectError, log_and_reraise

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectInfo:
    name: str
    size: int


class ObjectStore:
    """
    Minimal surface the downloader needs from a remote store.

    walk() yields objects lazily; a consumer stops the walk by raising out
    of its loop, and the generator is closed with it.
    """

    OPTIONS: tuple = ()

    def connect(self) -> None:
        raise NotImplementedError

    def walk(self, bucket: str, prefix: str = "") -> Iterator[ObjectInfo]:
        raise NotImplementedError

    def open(self, bucket: str, name: str) -> BinaryIO:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.close()


class GoogleStore(ObjectStore):
    """Google Cloud Storage via google-cloud-storage."""

    OPTIONS = ("project",)
    LIST_FIELDS = "items(name,size),nextPageToken"

    def __init__(self, project: Optional[str] = None, client: Optional[gcs.Client] = None):
        self.project = project
        self._client = client
        self._buckets: Dict[str, gcs.Bucket] = {}
        self._lock = threading.Lock()

    @log_and_reraise(ConnectError, "failed to create storage client")
    def connect(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = gcs.Client(project=self.project)
        except DefaultCredentialsError:
            log.warning("could not find default credentials, falling back to anonymous access")
            self._client = gcs.Client.create_anonymous_client()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def _bucket(self, name: str) -> gcs.Bucket:
        with self._lock:
            bucket = self._buckets.get(name)
            if bucket is None:
                bucket = self._buckets[name] = self._client.bucket(name)
            return bucket

    def walk(self, bucket: str, prefix: str = "") -> Iterator[ObjectInfo]:
        blobs = self._client.list_blobs(self._bucket(bucket), prefix=prefix or None, fields=self.LIST_FIELDS)
        for blob in blobs:
            yield ObjectInfo(name=blob.name, size=int(blob.size or 0))

    def open(self, bucket: str, name: str) -> BinaryIO:
        return self._bucket(bucket).blob(name).open("rb")


def get_s3_client(
    aws_profile: Optional[str] = None,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    retries_max_attempts: int = 8,
    retries_mode: str = "standard",
    connect_timeout: int = 10,
    read_timeout: int = 60,
    anonymous: Optional[bool] = None,
):
    """
    Create a boto3 S3 client with retries and timeouts applied.
    With anonymous=None, requests go unsigned only when the session has no credentials.
    """
    cfg = Config(
        retries={"max_attempts": retries_max_attempts, "mode": retries_mode},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )
    if aws_profile:
        session = boto3.Session(profile_name=aws_profile, region_name=region_name)
    else:
        session = boto3.Session(
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
        )
    if anonymous is None and session.get_credentials() is None:
        log.warning("could not find AWS credentials, falling back to anonymous access")
        anonymous = True
    if anonymous:
        cfg = cfg.merge(Config(signature_version=UNSIGNED))
    return session.client("s3", config=cfg, endpoint_url=endpoint_url)


class S3Store(ObjectStore):
    """S3 or any S3-compatible endpoint via boto3."""

    OPTIONS = (
        "aws_profile",
        "aws_access_key_id",
        "aws_secret_access_key",
        "region_name",
        "endpoint_url",
        "retries_max_attempts",
        "retries_mode",
        "connect_timeout",
        "read_timeout",
    )

    def __init__(self, client=None, **client_options: Any):
        self._client = client
        self.client_options = client_options

    @log_and_reraise(ConnectError, "failed to create storage client")
    def connect(self) -> None:
        if self._client is None:
            self._client = get_s3_client(**self.client_options)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def walk(self, bucket: str, prefix: str = "") -> Iterator[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []) or []:
                key = obj.get("Key")
                if not key:
                    continue
                yield ObjectInfo(name=key, size=int(obj.get("Size") or 0))

    def open(self, bucket: str, name: str) -> BinaryIO:
        return self._client.get_object(Bucket=bucket, Key=name)["Body"]


STORES = {"gs": GoogleStore, "s3": S3Store}


def get_store(backend: str = "gs", **options: Any) -> ObjectStore:
    """
    Build the store for `backend`. Options the backend does not take,
    and options set to None, are dropped.
    """
    cls = STORES.get((backend or "").lower())
    if cls is None:
        raise ConfigError(f"unknown storage backend: {backend}")
    kwargs = {k: v for k, v in options.items() if k in cls.OPTIONS and v is not None}
    return cls(**kwargs)
