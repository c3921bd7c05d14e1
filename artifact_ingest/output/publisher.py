"""
Published artifact metadata.

A complete submission is projected into an ``Artifact``: flattened, with
store keys, canonical URLs and human-readable algorithm names in place of
raw multihash codes. The whole batch is published at once, sorted by id with
plain code-point ordering so unchanged input produces byte-identical output.

Publishers double as identifier authorities: they can report which id a
slug was already published under, so ids are never regenerated.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
import posixpath
import tempfile
from typing import Any
from urllib.parse import quote, urljoin

import httpx

from ..core.types import Artifact, ArtifactFile, CompleteSubmission
from ..errors import PublishError
from ..storage.store import store_key
from ..utils.logging import log_event

ARTIFACTS_VERSION = 2
SLUGS_VERSION = 1
ARTIFACT_INDEX_KEY = f"artifacts:v{ARTIFACTS_VERSION}:index"

# Matches the indentation used by the submission form, to keep diffs quiet.
JSON_INDENT = 2


class IdentifierAuthority(ABC):
    """Source of ids already assigned to slugs."""

    @abstractmethod
    async def lookup_id(self, slug: str) -> str | None:
        """Return the id published under ``slug``, or None if there is none."""
        raise NotImplementedError


class MetadataPublisher(IdentifierAuthority):
    """Writes the published listing for a batch."""

    @abstractmethod
    async def publish(self, artifacts: list[Artifact]) -> None:
        """Publish every artifact of the batch as one listing."""
        raise NotImplementedError


def to_artifact(complete: CompleteSubmission, *, base_url: str, prefix: str) -> Artifact:
    """Project a complete submission into its published form."""
    submission = complete.submission
    files = []
    for file in submission.files:
        digest = complete.digest_for(file)
        files.append(
            ArtifactFile(
                name=file.name,
                filename=file.filename,
                media_type=file.media_type,
                hash=digest.hex(),
                hash_algorithm=digest.algorithm.name,
                storage_key=store_key(prefix, digest),
                url=canonical_url(base_url, submission.slug, file.filename),
                lang=file.lang,
                hidden=file.hidden,
                aliases=list(file.aliases),
            )
        )
    return Artifact(
        id=complete.id,
        slug=submission.slug,
        title=submission.title,
        summary=submission.summary,
        description=submission.description,
        files=files,
        links=[{"name": link.name, "url": link.url} for link in submission.links],
        people=list(submission.people),
        identities=list(submission.identities),
        from_year=submission.from_year,
        to_year=submission.to_year,
        decades=list(submission.decades),
        aliases=list(submission.aliases),
    )


def canonical_url(base_url: str, slug: str, filename: str) -> str:
    # URL paths always use forward slashes.
    path = posixpath.join("artifacts", slug, filename)
    return urljoin(base_url.rstrip("/") + "/", quote(path))


def sort_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
    return sorted(artifacts, key=lambda artifact: artifact.id)


def render_listing(artifacts: list[Artifact]) -> str:
    data = [artifact.to_dict() for artifact in sort_artifacts(artifacts)]
    return json.dumps(data, indent=JSON_INDENT, ensure_ascii=False) + "\n"


class JsonFilePublisher(MetadataPublisher):
    """Publishes the listing to a local JSON file.

    The file is replaced atomically, and read back to answer id lookups.
    """

    def __init__(self, path: Path, logger: logging.Logger | None = None):
        self.path = Path(path)
        self._logger = logger
        self._ids: dict[str, str] | None = None

    async def lookup_id(self, slug: str) -> str | None:
        if self._ids is None:
            self._ids = self._load_ids()
        return self._ids.get(slug)

    def _load_ids(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PublishError(f"Published listing is not valid JSON: {self.path}") from exc
        ids: dict[str, str] = {}
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                continue
            aliases = item.get("aliases")
            if not isinstance(aliases, list):
                aliases = []
            for slug in [item.get("slug"), *aliases]:
                if isinstance(slug, str):
                    ids[slug] = item["id"]
        return ids

    async def publish(self, artifacts: list[Artifact]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(render_listing(artifacts))
            os.replace(tmp_name, self.path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        self._ids = None
        log_event(
            self._logger,
            f"Wrote metadata for {len(artifacts)} artifacts",
            event="publish_complete",
            path=str(self.path),
            total=len(artifacts),
        )


class CloudflareKVPublisher(MetadataPublisher):
    """Publishes artifact metadata to a Cloudflare Workers KV namespace.

    Keys written per artifact:
        artifacts:v2:<id>            artifact JSON
        slugs:v1:<slug or alias>     empty value, metadata {"id": <id>}
    plus ``artifacts:v2:index`` holding the sorted listing for the batch.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        account_id: str,
        namespace_id: str,
        api_token: str,
        api_base_url: str = "https://api.cloudflare.com/client/v4",
        logger: logging.Logger | None = None,
    ):
        self._client = client
        self._namespace_url = (
            f"{api_base_url.rstrip('/')}/accounts/{account_id}"
            f"/storage/kv/namespaces/{namespace_id}"
        )
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self._logger = logger

    async def lookup_id(self, slug: str) -> str | None:
        key = quote(f"slugs:v{SLUGS_VERSION}:{slug}", safe="")
        url = f"{self._namespace_url}/metadata/{key}"
        try:
            response = await self._client.get(url, headers=self._headers)
        except httpx.TransportError as exc:
            raise PublishError(f"Failed to look up slug {slug}: {exc}") from exc
        if response.status_code == 404:
            return None
        body = _json_body(response)
        if not response.is_success or not body.get("success", False):
            raise PublishError(
                f"Failed to look up slug {slug}: HTTP {response.status_code} {_errors(body)}"
            )
        result = body.get("result") or {}
        artifact_id = result.get("id") if isinstance(result, dict) else None
        return artifact_id if isinstance(artifact_id, str) else None

    async def publish(self, artifacts: list[Artifact]) -> None:
        ordered = sort_artifacts(artifacts)
        objects: list[dict[str, Any]] = []
        for artifact in ordered:
            objects.append(
                {
                    "key": f"artifacts:v{ARTIFACTS_VERSION}:{artifact.id}",
                    "value": json.dumps(artifact.to_dict(), ensure_ascii=False),
                }
            )
            for slug in [artifact.slug, *artifact.aliases]:
                objects.append(
                    {
                        "key": f"slugs:v{SLUGS_VERSION}:{slug}",
                        "value": "",
                        "metadata": {"id": artifact.id},
                    }
                )
        objects.append(
            {
                "key": ARTIFACT_INDEX_KEY,
                "value": json.dumps([a.to_dict() for a in ordered], ensure_ascii=False),
            }
        )

        try:
            response = await self._client.put(
                f"{self._namespace_url}/bulk", json=objects, headers=self._headers
            )
        except httpx.TransportError as exc:
            raise PublishError(f"Failed to publish artifact metadata: {exc}") from exc
        body = _json_body(response)
        if not response.is_success or not body.get("success", False):
            raise PublishError(
                "Failed to publish artifact metadata: "
                f"HTTP {response.status_code} {_errors(body)}"
            )
        log_event(
            self._logger,
            f"Wrote metadata for {len(ordered)} artifacts",
            event="publish_complete",
            total=len(ordered),
            keys=len(objects),
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _errors(body: dict[str, Any]) -> str:
    errors = body.get("errors") or []
    return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
