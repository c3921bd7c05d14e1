"""
Main pipeline orchestration for artifact ingestion.

This module coordinates the two run modes:

validate:
1. Parse and schema-check every submission file
2. Complete submissions (ids, digests, media types)
3. Write completed submissions back to their files

upload:
1. Parse and schema-check every submission file (digests and ids required)
2. Re-check completeness and slug ownership
3. Skip files whose digest is already in the content store
4. Download, verify and store everything else
5. Publish the sorted artifact listing as one batch

Any error aborts the whole run; nothing is written back or published for a
batch that did not fully succeed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Sequence

import httpx
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from .config import AppConfig, get_secret, validate_config
from .core.digest import Digest
from .core.schema import Mode, SchemaValidator, SlugRegistry
from .core.state import StateTracker, SubmissionState
from .core.types import Artifact, ArtifactSubmission, CompleteSubmission, FileSubmission
from .errors import (
    DigestMismatchError,
    DuplicateSlugError,
    NetworkError,
    SchemaValidationError,
    StorageWriteError,
    UserConfigError,
)
from .fetch.completer import (
    CompletionStats,
    FileUpdateStats,
    SubmissionCompleter,
    file_update_stats,
)
from .fetch.fetcher import build_client, download_and_verify
from .input.submissions import RawSubmission, load_raw_submissions, write_submissions
from .output.publisher import (
    CloudflareKVPublisher,
    IdentifierAuthority,
    JsonFilePublisher,
    MetadataPublisher,
    sort_artifacts,
    to_artifact,
)
from .storage.store import ContentStore, LocalContentStore, ReprDigestProbe, S3ContentStore
from .utils.logging import log_event, setup_logging
from .utils.pool import run_pool


@dataclass
class UploadStats:
    """Statistics collected during the upload stage.

    Attributes:
        files: Total files across the batch
        distinct: Distinct digests across the batch
        skipped: Distinct digests already present in the store
        uploaded: Distinct digests downloaded, verified and stored
        bytes_uploaded: Bytes written to the store
    """

    files: int = 0
    distinct: int = 0
    skipped: int = 0
    uploaded: int = 0
    bytes_uploaded: int = 0


@dataclass
class RunResult:
    mode: str
    submissions: list[ArtifactSubmission]
    artifacts: list[Artifact] = field(default_factory=list)
    completion: CompletionStats | None = None
    updates: FileUpdateStats | None = None
    upload: UploadStats | None = None
    written: list[Path] = field(default_factory=list)


def validate_batch(
    raw: Sequence[RawSubmission],
    mode: Mode,
    current_year: int | None = None,
) -> list[ArtifactSubmission]:
    """Schema-check a whole batch, reporting every violation in every file.

    Raises:
        SchemaValidationError: Aggregating the violations of all files
    """
    registry = SlugRegistry.from_records(item.data for item in raw)
    validator = SchemaValidator(mode, registry, current_year=current_year)
    submissions: list[ArtifactSubmission] = []
    violations: list[str] = []
    for item in raw:
        try:
            submissions.append(validator.validate(item.data, expected_slug=item.slug))
        except SchemaValidationError as exc:
            violations.extend(f"{item.path.name}: {v}" for v in exc.violations)
    if violations:
        raise SchemaValidationError(violations, source=f"{len(raw)} submission(s)")
    return submissions


class IngestionPipeline:
    """Runs completion or upload over a batch of typed submissions.

    Args:
        client: Async HTTP client for source fetches
        base_url: Public base URL for canonical file URLs
        store: Content store (required for upload)
        publisher: Metadata publisher (upload publishes through it)
        authority: Source of existing slug ids; defaults to the publisher
        probe: Public-URL probe used by the "probe" dedup strategy
        dedup_strategy: "list", "exists" or "probe"
        concurrency: Worker pool size
        retries: Retry count for fetches
        temp_dir: Directory for temporary downloads
        dry_run: Verify everything but skip store writes and publishing
        logger: Logger for pipeline events
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        store: ContentStore | None = None,
        publisher: MetadataPublisher | None = None,
        authority: IdentifierAuthority | None = None,
        probe: ReprDigestProbe | None = None,
        dedup_strategy: str = "list",
        concurrency: int = 4,
        retries: int = 0,
        temp_dir: str | None = None,
        dry_run: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.base_url = base_url
        self.store = store
        self.publisher = publisher
        self.authority = authority if authority is not None else publisher
        self.probe = probe
        self.dedup_strategy = dedup_strategy
        self.concurrency = concurrency
        self.retries = retries
        self.temp_dir = temp_dir
        self.dry_run = dry_run
        self.logger = logger or logging.getLogger("artifact_ingest")
        self.tracker = StateTracker(self.logger)
        self.upload_stats = UploadStats()

    async def validate(
        self, submissions: Sequence[ArtifactSubmission]
    ) -> tuple[list[ArtifactSubmission], CompletionStats, FileUpdateStats]:
        """Complete every submission in the batch."""
        for submission in submissions:
            self.tracker.start(
                submission.slug,
                SubmissionState.COMPLETE if submission.is_complete else SubmissionState.INCOMPLETE,
            )
        completer = SubmissionCompleter(
            self.client,
            authority=self.authority,
            concurrency=self.concurrency,
            retries=self.retries,
            temp_dir=self.temp_dir,
            logger=self.logger,
        )
        try:
            completed = await completer.complete(submissions)
            await self._check_slug_history(
                [CompleteSubmission.from_submission(s) for s in completed]
            )
        except BaseException:
            self.tracker.fail_pending()
            raise
        for submission in completed:
            self.tracker.advance(submission.slug, SubmissionState.COMPLETE)
        updates = file_update_stats(submissions, completed)
        log_event(
            self.logger,
            f"Updated {updates.total_files_updated} files in {updates.artifacts_updated} artifacts",
            event="completion_complete",
            artifacts_updated=updates.artifacts_updated,
            files_updated=updates.total_files_updated,
        )
        return completed, completer.stats, updates

    async def upload(self, submissions: Sequence[ArtifactSubmission]) -> list[Artifact]:
        """Upload every file of a batch of complete submissions and publish it."""
        self._content_store()
        for submission in submissions:
            self.tracker.start(
                submission.slug,
                SubmissionState.COMPLETE if submission.is_complete else SubmissionState.INCOMPLETE,
            )
        try:
            return await self._upload(submissions)
        except BaseException:
            self.tracker.fail_pending()
            raise

    async def _upload(self, submissions: Sequence[ArtifactSubmission]) -> list[Artifact]:
        # Checked again here even when validate ran earlier in the workflow.
        completes = [CompleteSubmission.from_submission(s) for s in submissions]
        await self._check_slug_history(completes)

        pending = await self._pending_uploads(completes)
        await run_pool(list(pending.values()), self._upload_file, self.concurrency)
        for complete in completes:
            self.tracker.advance(complete.slug, SubmissionState.VERIFIED)

        prefix = self._content_store().prefix
        artifacts = sort_artifacts(
            [to_artifact(c, base_url=self.base_url, prefix=prefix) for c in completes]
        )
        if self.dry_run or self.publisher is None:
            log_event(
                self.logger,
                f"Skipping publish of {len(artifacts)} artifacts",
                event="publish_skipped",
                total=len(artifacts),
            )
            return artifacts

        await self.publisher.publish(artifacts)
        for complete in completes:
            self.tracker.advance(complete.slug, SubmissionState.PUBLISHED)
        return artifacts

    def _content_store(self) -> ContentStore:
        if self.store is None:
            raise ValueError("A content store is required for upload")
        return self.store

    async def _check_slug_history(self, completes: Sequence[CompleteSubmission]) -> None:
        if self.authority is None:
            return
        for complete in completes:
            for name in [complete.slug, *complete.submission.aliases]:
                owner = await self.authority.lookup_id(name)
                if owner is not None and owner != complete.id:
                    raise DuplicateSlugError(name, owner_id=owner, claimed_by=complete.id)

    async def _pending_uploads(
        self, completes: Sequence[CompleteSubmission]
    ) -> dict[Digest, tuple[CompleteSubmission, FileSubmission]]:
        by_digest: dict[Digest, tuple[CompleteSubmission, FileSubmission]] = {}
        for complete in completes:
            for file in complete.files:
                self.upload_stats.files += 1
                by_digest.setdefault(complete.digest_for(file), (complete, file))
        self.upload_stats.distinct = len(by_digest)

        known = await self._known_digests(list(by_digest))
        log_event(
            self.logger,
            f"Found {len(known)} of {len(by_digest)} artifact files in the store",
            event="dedup_complete",
            known=len(known),
            distinct=len(by_digest),
            strategy=self.dedup_strategy,
        )

        pending = {}
        for complete in completes:
            for file in complete.files:
                if complete.digest_for(file) in known:
                    log_event(
                        self.logger,
                        f"Skipping artifact file: {complete.slug}/{file.filename}",
                        event="upload_skipped",
                        slug=complete.slug,
                        file=file.filename,
                    )
        for digest, entry in by_digest.items():
            if digest in known:
                self.upload_stats.skipped += 1
            else:
                pending[digest] = entry
        return pending

    async def _known_digests(self, digests: list[Digest]) -> set[Digest]:
        store = self._content_store()
        if self.dedup_strategy == "list":
            listed = await asyncio.to_thread(store.list_known_digests)
            return listed & set(digests)

        known: set[Digest] = set()
        lock = asyncio.Lock()

        async def check(digest: Digest) -> None:
            if self.dedup_strategy == "probe":
                if self.probe is None:
                    raise ValueError("The probe dedup strategy needs a ReprDigestProbe")
                present = await self.probe.exists(digest)
            else:
                present = await asyncio.to_thread(store.exists, digest)
            if present:
                async with lock:
                    known.add(digest)

        await run_pool(digests, check, self.concurrency)
        return known

    async def _upload_file(self, entry: tuple[CompleteSubmission, FileSubmission]) -> None:
        complete, file = entry
        name = f"{complete.slug}/{file.filename}"
        try:
            await self._store_file(complete, file)
        except NetworkError as exc:
            raise exc.for_files([name]) from exc
        except StorageWriteError as exc:
            raise StorageWriteError(f"Failed to store {name}: {exc}") from exc

    async def _store_file(self, complete: CompleteSubmission, file: FileSubmission) -> None:
        store = self._content_store()
        expected = complete.digest_for(file)
        log_event(
            self.logger,
            f"GET {file.source_url}",
            event="fetch_start",
            url=file.source_url,
            slug=complete.slug,
            file=file.filename,
        )
        async with download_and_verify(
            self.client,
            file.source_url,
            expected,
            retries=self.retries,
            temp_dir=self.temp_dir,
        ) as (downloaded, verification):
            if not verification.is_valid:
                raise DigestMismatchError(
                    slug=complete.slug,
                    filename=file.filename,
                    url=file.source_url,
                    expected=expected.debug(),
                    actual=verification.actual.debug(),
                )
            log_event(
                self.logger,
                f"Validated file hash: {complete.slug}/{file.filename}",
                event="hash_validated",
                slug=complete.slug,
                file=file.filename,
                multihash=expected.encode(),
            )
            if self.dry_run:
                return
            key = await asyncio.to_thread(
                store.put,
                expected,
                downloaded.path,
                file.media_type or downloaded.media_type,
            )
            self.upload_stats.uploaded += 1
            self.upload_stats.bytes_uploaded += downloaded.size
            log_event(
                self.logger,
                f"Uploaded artifact file: {complete.slug}/{file.filename}",
                event="upload_complete",
                slug=complete.slug,
                file=file.filename,
                storage_key=key,
                size=downloaded.size,
            )


def run_pipeline(
    cfg: AppConfig,
    mode: Mode,
    *,
    dry_run: bool = False,
    show_progress: bool = True,
    console: Console | None = None,
) -> RunResult:
    """Run one mode end to end from the configured submissions directory.

    Args:
        cfg: Application configuration
        mode: "validate" or "upload"
        dry_run: Skip writing submissions back, store writes and publishing
        show_progress: Whether to display a stage progress bar
        console: Rich console for output (creates default if None)

    Returns:
        RunResult describing what the run did
    """
    validate_config(cfg, mode)
    log_path = Path(cfg.logging.dir) / cfg.logging.filename if cfg.logging.file else None
    logger = setup_logging(cfg.logging.level, cfg.logging.console, log_path, cfg.logging.format)
    console = console or Console()

    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        disable=not show_progress,
    )
    with progress:
        stage_task = progress.add_task("Stages", total=3)

        directory = Path(cfg.submissions.path)
        raw = load_raw_submissions(directory)
        log_event(
            logger,
            f"Found {len(raw)} JSON files in: {directory}",
            event="pipeline_start",
            mode=mode,
            path=str(directory),
            total=len(raw),
        )
        progress.advance(stage_task, 1)

        submissions = validate_batch(raw, mode)
        log_event(logger, "All submissions match the schema!", event="schema_valid")
        progress.advance(stage_task, 1)

        result = asyncio.run(_run_async(cfg, mode, submissions, directory, dry_run, logger))
        progress.advance(stage_task, 1)

    _render_stats(result, console)
    return result


async def _run_async(
    cfg: AppConfig,
    mode: Mode,
    submissions: list[ArtifactSubmission],
    directory: Path,
    dry_run: bool,
    logger: logging.Logger,
) -> RunResult:
    async with build_client(
        cfg.fetch.timeout_seconds, cfg.fetch.user_agent, cfg.fetch.trust_env
    ) as client:
        publisher = _build_publisher(cfg, client, logger)
        pipeline = IngestionPipeline(
            client,
            base_url=cfg.submissions.base_url,
            store=_build_store(cfg) if mode == "upload" else None,
            publisher=publisher,
            probe=_build_probe(cfg, client),
            dedup_strategy=cfg.storage.dedup_strategy,
            concurrency=cfg.fetch.concurrency,
            retries=cfg.fetch.retries,
            temp_dir=cfg.fetch.temp_dir,
            dry_run=dry_run,
            logger=logger,
        )

        if mode == "validate":
            completed, stats, updates = await pipeline.validate(submissions)
            written = [] if dry_run else write_submissions(directory, completed)
            log_event(
                logger,
                f"Wrote {len(written)} submission files",
                event="pipeline_complete",
                mode=mode,
                written=len(written),
                states=pipeline.tracker.counts(),
            )
            return RunResult(
                mode=mode,
                submissions=completed,
                completion=stats,
                updates=updates,
                written=written,
            )

        logger.info("Starting the upload process...")
        artifacts = await pipeline.upload(submissions)
        log_event(
            logger,
            f"Uploaded {pipeline.upload_stats.uploaded} files to the content store",
            event="pipeline_complete",
            mode=mode,
            uploaded=pipeline.upload_stats.uploaded,
            skipped=pipeline.upload_stats.skipped,
            artifacts=len(artifacts),
            states=pipeline.tracker.counts(),
        )
        return RunResult(
            mode=mode,
            submissions=list(submissions),
            artifacts=artifacts,
            upload=pipeline.upload_stats,
        )


def _render_stats(result: RunResult, console: Console) -> None:
    if result.completion is not None and result.updates is not None:
        stats = result.completion
        console.print(
            "[bold]Completion summary[/bold]: "
            f"urls={stats.urls}, downloads={stats.downloads}, probes={stats.probes}, "
            f"ids_generated={stats.ids_generated}, ids_reused={stats.ids_reused}"
        )
        for slug, filenames in sorted(result.updates.files_updated_by_artifact.items()):
            if filenames:
                console.print(f"  {slug}: {', '.join(sorted(filenames))}")
        console.print(
            f"Updated {result.updates.total_files_updated} files "
            f"in {result.updates.artifacts_updated} artifacts"
        )
    if result.upload is not None:
        upload = result.upload
        console.print(
            "[bold]Upload summary[/bold]: "
            f"files={upload.files}, distinct={upload.distinct}, skipped={upload.skipped}, "
            f"uploaded={upload.uploaded}, bytes={upload.bytes_uploaded}"
        )


def _build_store(cfg: AppConfig) -> ContentStore:
    storage = cfg.storage
    if storage.backend == "local":
        return LocalContentStore(Path(storage.local_dir), storage.prefix)
    if not storage.bucket:
        raise UserConfigError("storage.bucket is required for the s3 backend")
    return S3ContentStore.connect(
        bucket=storage.bucket,
        prefix=storage.prefix,
        region=storage.region,
        endpoint_url=storage.endpoint_url,
        access_key_id=get_secret(storage.access_key_id_env),
        secret_access_key=get_secret(storage.secret_access_key_env),
    )


def _build_probe(cfg: AppConfig, client: httpx.AsyncClient) -> ReprDigestProbe | None:
    if cfg.storage.dedup_strategy != "probe" or not cfg.storage.public_base_url:
        return None
    return ReprDigestProbe(client, cfg.storage.public_base_url, cfg.storage.prefix)


def _build_publisher(
    cfg: AppConfig, client: httpx.AsyncClient, logger: logging.Logger
) -> MetadataPublisher:
    publish = cfg.publish
    if publish.backend == "kv":
        if not (publish.account_id and publish.namespace_id):
            raise UserConfigError("publish.account_id and publish.namespace_id are required for kv")
        return CloudflareKVPublisher(
            client,
            account_id=publish.account_id,
            namespace_id=publish.namespace_id,
            api_token=get_secret(publish.api_token_env) or "",
            api_base_url=publish.api_base_url,
            logger=logger,
        )
    return JsonFilePublisher(Path(publish.output_path), logger=logger)
