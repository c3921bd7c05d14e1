"""Tests for content-addressed storage backends."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from botocore.exceptions import ClientError

from artifact_ingest.core.digest import SHA2_512, hash_bytes
from artifact_ingest.errors import StorageWriteError, StoreProbeError
from artifact_ingest.fetch.fetcher import build_client
from artifact_ingest.storage.store import (
    LIST_PAGE_SIZE,
    LocalContentStore,
    ReprDigestProbe,
    S3ContentStore,
    digest_from_key,
    store_key,
)


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs
        return iter(self.pages)


class FakeS3Client:
    """Duck-typed stand-in for a boto3 S3 client."""

    def __init__(self, keys=(), head_error_code="404"):
        self.keys = set(keys)
        self.head_error_code = head_error_code
        self.uploads = []
        self.paginator = None

    def head_object(self, Bucket, Key):
        if Key not in self.keys:
            raise ClientError({"Error": {"Code": self.head_error_code}}, "HeadObject")
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        ordered = sorted(self.keys)
        self.paginator = FakePaginator(
            [
                {"Contents": [{"Key": k} for k in ordered[:1]]},
                {"Contents": [{"Key": k} for k in ordered[1:]]},
            ]
        )
        return self.paginator

    def upload_file(self, filename, bucket, key, ExtraArgs=None):
        self.uploads.append((filename, bucket, key, ExtraArgs))
        self.keys.add(key)


def test_store_key_is_prefix_plus_multihash_hex():
    digest = hash_bytes(b"data")
    assert store_key("artifacts/", digest) == "artifacts/" + digest.encode()
    assert digest_from_key("artifacts/", store_key("artifacts/", digest)) == digest


def test_store_key_differs_per_algorithm():
    assert store_key("a/", hash_bytes(b"x")) != store_key("a/", hash_bytes(b"x", SHA2_512))


def test_local_store_put_and_list(tmp_path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"payload")
    digest = hash_bytes(b"payload")
    store = LocalContentStore(tmp_path / "store", "artifacts/")

    assert not store.exists(digest)
    assert store.list_known_digests() == set()

    key = store.put(digest, source, "application/octet-stream")
    assert key == store_key("artifacts/", digest)
    assert store.exists(digest)
    assert (tmp_path / "store" / key).read_bytes() == b"payload"
    assert store.list_keys() == [key]
    assert store.list_known_digests() == {digest}


def test_local_store_put_is_idempotent(tmp_path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"payload")
    digest = hash_bytes(b"payload")
    store = LocalContentStore(tmp_path / "store", "artifacts/")
    assert store.put(digest, source, None) == store.put(digest, source, None)
    assert store.list_keys() == [store.key_for(digest)]


def test_unrecognized_keys_are_ignored(tmp_path):
    root = tmp_path / "store"
    (root / "artifacts").mkdir(parents=True)
    (root / "artifacts" / "not-a-digest").write_bytes(b"x")
    (root / "artifacts" / "1102abcd").write_bytes(b"x")
    (root / "other").mkdir()
    (root / "other" / "file").write_bytes(b"x")
    store = LocalContentStore(root, "artifacts/")

    assert store.list_known_digests() == set()
    assert len(store.list_keys()) == 2


def test_s3_store_exists():
    digest = hash_bytes(b"payload")
    client = FakeS3Client(keys={store_key("artifacts/", digest)})
    store = S3ContentStore(client, "bucket", "artifacts/")
    assert store.exists(digest)
    assert not store.exists(hash_bytes(b"other"))


def test_s3_store_exists_surfaces_other_errors():
    store = S3ContentStore(FakeS3Client(head_error_code="403"), "bucket", "artifacts/")
    with pytest.raises(StorageWriteError):
        store.exists(hash_bytes(b"payload"))


def test_s3_store_lists_all_pages():
    digests = [hash_bytes(b"one"), hash_bytes(b"two")]
    client = FakeS3Client(keys={store_key("artifacts/", d) for d in digests})
    store = S3ContentStore(client, "bucket", "artifacts/")

    assert store.list_known_digests() == set(digests)
    assert client.paginator.kwargs == {
        "Bucket": "bucket",
        "Prefix": "artifacts/",
        "PaginationConfig": {"PageSize": LIST_PAGE_SIZE},
    }


def test_s3_store_put_sets_content_type(tmp_path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"payload")
    digest = hash_bytes(b"payload")
    client = FakeS3Client()
    store = S3ContentStore(client, "bucket", "artifacts/")

    key = store.put(digest, source, None)
    assert client.uploads == [
        (str(source), "bucket", key, {"ContentType": "application/octet-stream"})
    ]


def _probe(handler):
    async def run(digest):
        async with build_client(10, "test-agent", transport=httpx.MockTransport(handler)) as client:
            probe = ReprDigestProbe(client, "https://cdn.example.com", "artifacts/")
            return await probe.exists(digest)

    return run


def test_probe_absent_on_404():
    assert asyncio.run(_probe(lambda request: httpx.Response(404))(hash_bytes(b"x"))) is False


def test_probe_present_on_matching_digest():
    digest = hash_bytes(b"x")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, headers={"Repr-Digest": digest.repr_digest()})

    assert asyncio.run(_probe(handler)(digest)) is True
    assert str(seen[0].url) == "https://cdn.example.com/" + store_key("artifacts/", digest)
    assert seen[0].method == "HEAD"
    assert seen[0].headers["want-repr-digest"] == "sha-256=10"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(403),
        httpx.Response(200),
        httpx.Response(200, headers={"Repr-Digest": hash_bytes(b"y").repr_digest()}),
    ],
)
def test_probe_other_outcomes_are_errors(response):
    """Only a 404 proves absence"""
    with pytest.raises(StoreProbeError):
        asyncio.run(_probe(lambda request: response)(hash_bytes(b"x")))
