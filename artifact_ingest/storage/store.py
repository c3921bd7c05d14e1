"""Content-addressed object storage.

Every file is stored under a key derived only from its digest:

    <prefix><lowercase hex of the multihash bytes>

so identical content always lands on the same key regardless of which
submission it came from. Backends only have to answer three questions:
does a digest exist, which digests exist, and store these bytes. Skipping
redundant writes is the pipeline's job, not the backend's.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Any

import httpx

from ..core.digest import Digest, decode, parse_repr_digest
from ..errors import IngestError, StorageWriteError, StoreProbeError

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 200
DEFAULT_MEDIA_TYPE = "application/octet-stream"


def store_key(prefix: str, digest: Digest) -> str:
    return prefix + digest.encode()


def digest_from_key(prefix: str, key: str) -> Digest:
    if not key.startswith(prefix):
        raise ValueError(f"Key {key} is outside the prefix {prefix}")
    return decode(key[len(prefix):])


class ContentStore(ABC):
    """Store interface keyed by content digest."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    def key_for(self, digest: Digest) -> str:
        return store_key(self.prefix, digest)

    @abstractmethod
    def exists(self, digest: Digest) -> bool:
        """Return True if an object is stored under the digest's key."""
        raise NotImplementedError

    @abstractmethod
    def list_keys(self) -> list[str]:
        """Return every key under the store prefix."""
        raise NotImplementedError

    @abstractmethod
    def put(self, digest: Digest, path: Path, media_type: str | None) -> str:
        """Store the file at ``path`` under the digest's key and return the key."""
        raise NotImplementedError

    def list_known_digests(self) -> set[Digest]:
        """Decode every key under the prefix into a digest.

        Keys that do not decode as a supported multihash are ignored; they
        can only cause a redundant upload, never a skipped one.
        """
        digests: set[Digest] = set()
        for key in self.list_keys():
            try:
                digests.add(digest_from_key(self.prefix, key))
            except (IngestError, ValueError):
                logger.warning("Ignoring unrecognized key in content store: %s", key)
        return digests


class S3ContentStore(ContentStore):
    """Store objects in an S3-compatible bucket through boto3."""

    def __init__(self, client: Any, bucket: str, prefix: str):
        super().__init__(prefix)
        self.client = client
        self.bucket = bucket

    @classmethod
    def connect(
        cls,
        *,
        bucket: str,
        prefix: str,
        region: str,
        endpoint_url: str | None,
        access_key_id: str | None,
        secret_access_key: str | None,
    ) -> S3ContentStore:
        import boto3

        logger.info("Connecting to S3 bucket: %s (region: %s)", bucket, region)
        client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        return cls(client, bucket, prefix)

    def exists(self, digest: Digest) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        key = self.key_for(digest)
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageWriteError(f"Failed to check s3://{self.bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageWriteError(f"Failed to check s3://{self.bucket}/{key}: {exc}") from exc
        return True

    def list_keys(self) -> list[str]:
        from botocore.exceptions import BotoCoreError, ClientError

        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            pages = paginator.paginate(
                Bucket=self.bucket,
                Prefix=self.prefix,
                PaginationConfig={"PageSize": LIST_PAGE_SIZE},
            )
            for page in pages:
                for obj in page.get("Contents", []):
                    if obj.get("Key"):
                        keys.append(obj["Key"])
        except (BotoCoreError, ClientError) as exc:
            raise StorageWriteError(
                f"Failed to list s3://{self.bucket}/{self.prefix}: {exc}"
            ) from exc
        return keys

    def put(self, digest: Digest, path: Path, media_type: str | None) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = self.key_for(digest)
        try:
            self.client.upload_file(
                str(path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": media_type or DEFAULT_MEDIA_TYPE},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageWriteError(f"Failed to upload s3://{self.bucket}/{key}: {exc}") from exc
        logger.info("Upload complete: s3://%s/%s", self.bucket, key)
        return key


class LocalContentStore(ContentStore):
    """Store objects as files under a local directory."""

    def __init__(self, root: Path, prefix: str):
        super().__init__(prefix)
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / key

    def exists(self, digest: Digest) -> bool:
        return self._path(self.key_for(digest)).is_file()

    def list_keys(self) -> list[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(self.prefix):
                keys.append(key)
        return keys

    def put(self, digest: Digest, path: Path, media_type: str | None) -> str:
        key = self.key_for(digest)
        target = self._path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=target.parent)
            os.close(fd)
            try:
                shutil.copyfile(path, tmp_name)
                os.replace(tmp_name, target)
            finally:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
        except OSError as exc:
            raise StorageWriteError(f"Failed to write {target}: {exc}") from exc
        return key


class ReprDigestProbe:
    """Existence check through the public URL objects are served from.

    Sends a HEAD request asking for a ``Repr-Digest`` and compares it with
    the expected digest. 404 means absent. A 2xx whose digest matches means
    present. Anything else is an error, never "absent".
    """

    def __init__(self, client: httpx.AsyncClient, public_base_url: str, prefix: str):
        self._client = client
        self._base = public_base_url.rstrip("/") + "/"
        self.prefix = prefix

    def url_for(self, digest: Digest) -> str:
        return self._base + store_key(self.prefix, digest)

    async def exists(self, digest: Digest) -> bool:
        url = self.url_for(digest)
        algorithm = digest.algorithm
        try:
            response = await self._client.head(
                url, headers={"Want-Repr-Digest": f"{algorithm.repr_name}=10"}
            )
        except httpx.TransportError as exc:
            raise StoreProbeError(f"HEAD {url} failed: {type(exc).__name__}: {exc}") from exc

        if response.status_code == 404:
            return False
        if not response.is_success:
            raise StoreProbeError(f"HEAD {url} returned HTTP {response.status_code}")

        header = response.headers.get("repr-digest")
        if header is None:
            raise StoreProbeError(f"HEAD {url} did not return a Repr-Digest header")
        declared = parse_repr_digest(header).get(algorithm.repr_name)
        if declared != digest.digest:
            raise StoreProbeError(
                f"HEAD {url} returned a Repr-Digest that does not match {digest.debug()}"
            )
        return True
