"""
Completion of incomplete submissions.

Completion fills in everything a contributor is not expected to write by
hand: the artifact id, and each file's digest and media type. Source URLs
are deduplicated across the whole batch first, so a URL shared by several
files (even in different submissions) is fetched at most once per run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import logging
from typing import Callable, Sequence

import httpx

from ..core.digest import DEFAULT_ALGORITHM, Digest
from ..core.ids import new_artifact_id
from ..core.types import ArtifactSubmission, with_files
from ..errors import DuplicateSlugError, NetworkError
from ..output.publisher import IdentifierAuthority
from ..utils.logging import log_event
from ..utils.pool import run_pool
from .fetcher import download_to_temp, head_file


@dataclass
class FileDetails:
    """Memoized details for one source URL."""

    digest: Digest | None = None
    media_type: str | None = None

    @property
    def resolved(self) -> bool:
        return self.digest is not None and self.media_type is not None


@dataclass
class CompletionStats:
    urls: int = 0
    downloads: int = 0
    probes: int = 0
    ids_generated: int = 0
    ids_reused: int = 0


@dataclass
class FileUpdateStats:
    """Which files completion changed.

    Attributes:
        files_updated_by_artifact: Slug to the filenames whose digest or
            media type changed
        artifacts_updated: Number of artifacts with at least one change
        total_files_updated: Number of changed files across the batch
    """

    files_updated_by_artifact: dict[str, set[str]] = field(default_factory=dict)
    artifacts_updated: int = 0
    total_files_updated: int = 0


class SubmissionCompleter:
    """Turns incomplete submissions into complete ones.

    Args:
        client: Async HTTP client used for GET and HEAD requests
        authority: Optional source of ids already assigned to slugs
        concurrency: Worker pool size for distinct URLs
        retries: Retry count passed to the fetcher
        temp_dir: Directory for temporary downloads
        logger: Logger for fetch events
        id_factory: Generator for new artifact ids
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        authority: IdentifierAuthority | None = None,
        concurrency: int = 4,
        retries: int = 0,
        temp_dir: str | None = None,
        logger: logging.Logger | None = None,
        id_factory: Callable[[], str] = new_artifact_id,
    ):
        self._client = client
        self._authority = authority
        self._concurrency = concurrency
        self._retries = retries
        self._temp_dir = temp_dir
        self._logger = logger
        self._id_factory = id_factory
        self.stats = CompletionStats()

    async def complete(
        self, submissions: Sequence[ArtifactSubmission]
    ) -> list[ArtifactSubmission]:
        """Return the batch with ids, digests and media types filled in.

        Any fetch failure propagates and nothing is returned, so callers
        never persist a partially completed batch.
        """
        memo = await self.compute_file_details(submissions)
        completed = apply_file_details(submissions, memo)
        return await self._assign_ids(completed)

    async def compute_file_details(
        self, submissions: Sequence[ArtifactSubmission]
    ) -> dict[str, FileDetails]:
        memo: dict[str, FileDetails] = {}
        users: dict[str, list[str]] = {}
        for submission in submissions:
            for file in submission.files:
                users.setdefault(file.source_url, []).append(f"{submission.slug}/{file.filename}")
                details = memo.setdefault(file.source_url, FileDetails())
                if details.digest is None:
                    details.digest = file.digest
                if details.media_type is None:
                    details.media_type = file.media_type

        self.stats.urls = len(memo)
        pending = [url for url, details in memo.items() if not details.resolved]
        lock = asyncio.Lock()

        async def resolve(url: str) -> None:
            try:
                await fetch(url)
            except NetworkError as exc:
                raise exc.for_files(users[url]) from exc

        async def fetch(url: str) -> None:
            async with lock:
                known = replace(memo[url])

            if known.digest is None:
                log_event(self._logger, f"GET {url}", event="fetch_start", url=url, method="GET")
                async with download_to_temp(
                    self._client,
                    url,
                    DEFAULT_ALGORITHM,
                    retries=self._retries,
                    temp_dir=self._temp_dir,
                ) as downloaded:
                    update = FileDetails(
                        digest=downloaded.digest,
                        media_type=known.media_type or downloaded.media_type,
                    )
                self.stats.downloads += 1
            else:
                log_event(self._logger, f"HEAD {url}", event="fetch_start", url=url, method="HEAD")
                head = await head_file(self._client, url, retries=self._retries)
                update = FileDetails(digest=known.digest, media_type=head.media_type)
                self.stats.probes += 1

            async with lock:
                details = memo[url]
                details.digest = details.digest or update.digest
                details.media_type = details.media_type or update.media_type
            log_event(
                self._logger,
                f"Resolved {url}",
                event="fetch_complete",
                url=url,
                multihash=update.digest.encode() if update.digest else None,
                media_type=update.media_type,
            )

        await run_pool(pending, resolve, self._concurrency)
        return memo

    async def _assign_ids(
        self, submissions: list[ArtifactSubmission]
    ) -> list[ArtifactSubmission]:
        used = {s.id for s in submissions if s.id is not None}
        result: list[ArtifactSubmission] = []
        for submission in submissions:
            if submission.id is not None:
                result.append(submission)
                continue

            artifact_id = None
            if self._authority is not None:
                artifact_id = await self._authority.lookup_id(submission.slug)
            if artifact_id is not None:
                if artifact_id in used:
                    raise DuplicateSlugError(
                        submission.slug, owner_id=artifact_id, claimed_by=None
                    )
                self.stats.ids_reused += 1
                log_event(
                    self._logger,
                    f"Reusing id {artifact_id} for {submission.slug}",
                    event="id_reused",
                    slug=submission.slug,
                    id=artifact_id,
                )
            else:
                artifact_id = self._id_factory()
                while artifact_id in used:
                    artifact_id = self._id_factory()
                self.stats.ids_generated += 1
                log_event(
                    self._logger,
                    f"Generated id {artifact_id} for {submission.slug}",
                    event="id_generated",
                    slug=submission.slug,
                    id=artifact_id,
                )
            used.add(artifact_id)
            result.append(replace(submission, id=artifact_id))
        return result


def apply_file_details(
    submissions: Sequence[ArtifactSubmission], memo: dict[str, FileDetails]
) -> list[ArtifactSubmission]:
    """Fill missing digests and media types from the memo table.

    A file that already declares a digest or media type keeps it.
    """
    completed = []
    for submission in submissions:
        files = []
        for file in submission.files:
            details = memo.get(file.source_url, FileDetails())
            files.append(
                replace(
                    file,
                    digest=file.digest or details.digest,
                    media_type=file.media_type or details.media_type,
                )
            )
        completed.append(with_files(submission, files))
    return completed


def file_update_stats(
    old: Sequence[ArtifactSubmission], new: Sequence[ArtifactSubmission]
) -> FileUpdateStats:
    stats = FileUpdateStats()
    new_by_slug = {s.slug: s for s in new}
    for old_submission in old:
        new_submission = new_by_slug.get(old_submission.slug)
        if new_submission is None:
            continue
        new_files = {f.filename: f for f in new_submission.files}
        updated: set[str] = set()
        for old_file in old_submission.files:
            new_file = new_files.get(old_file.filename)
            if new_file is None:
                continue
            if (old_file.digest, old_file.media_type) != (new_file.digest, new_file.media_type):
                updated.add(old_file.filename)
        stats.files_updated_by_artifact[old_submission.slug] = updated
        if updated:
            stats.artifacts_updated += 1
            stats.total_files_updated += len(updated)
    return stats
