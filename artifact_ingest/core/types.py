"""
Core data types for the ingestion pipeline.

This module defines the structures that flow through a run:
- FileSubmission / LinkSubmission / ArtifactSubmission: typed submission
  records produced by the schema validator
- CompleteSubmission: a submission proven to carry an id and every digest
- ArtifactFile / Artifact: the published, denormalized projection
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from ..errors import IncompleteSubmissionError
from .digest import Digest

CURRENT_VERSION = 1


@dataclass(frozen=True)
class FileSubmission:
    """One file attached to a submission.

    Attributes:
        name: Display name
        filename: Path-safe, forward-slash separated file name
        source_url: Where the file is fetched from (http/https)
        media_type: MIME type, filled in during completion if absent
        digest: Content digest, filled in during completion if absent
        lang: Optional language tag
        hidden: Whether the file is hidden from listings
        aliases: Previous filenames for this file
    """

    name: str
    filename: str
    source_url: str
    media_type: str | None = None
    digest: Digest | None = None
    lang: str | None = None
    hidden: bool = False
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class LinkSubmission:
    name: str
    url: str


@dataclass(frozen=True)
class ArtifactSubmission:
    """A typed submission record.

    ``id`` and the per-file digests may be missing until completion has run;
    see ``is_complete``.
    """

    version: int
    slug: str
    title: str
    summary: str
    from_year: int
    id: str | None = None
    description: str | None = None
    files: tuple[FileSubmission, ...] = ()
    links: tuple[LinkSubmission, ...] = ()
    people: tuple[str, ...] = ()
    identities: tuple[str, ...] = ()
    to_year: int | None = None
    decades: tuple[int, ...] = ()
    aliases: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return self.id is not None and all(f.digest is not None for f in self.files)

    def missing_fields(self) -> list[str]:
        missing = []
        if self.id is None:
            missing.append("id")
        for file in self.files:
            if file.digest is None:
                missing.append(f"multihash for file '{file.filename}'")
        return missing


@dataclass(frozen=True)
class CompleteSubmission:
    """A submission whose id and file digests are guaranteed present."""

    submission: ArtifactSubmission
    id: str

    @classmethod
    def from_submission(cls, submission: ArtifactSubmission) -> CompleteSubmission:
        missing = submission.missing_fields()
        if missing or submission.id is None:
            raise IncompleteSubmissionError(submission.slug, missing)
        return cls(submission=submission, id=submission.id)

    @property
    def slug(self) -> str:
        return self.submission.slug

    @property
    def files(self) -> tuple[FileSubmission, ...]:
        return self.submission.files

    def digest_for(self, file: FileSubmission) -> Digest:
        if file.digest is None:
            raise IncompleteSubmissionError(
                self.slug, [f"multihash for file '{file.filename}'"]
            )
        return file.digest


@dataclass
class ArtifactFile:
    """Published file metadata."""

    name: str
    filename: str
    media_type: str | None
    hash: str
    hash_algorithm: str
    storage_key: str
    url: str
    lang: str | None = None
    hidden: bool = False
    aliases: list[str] = field(default_factory=list)


@dataclass
class Artifact:
    """Published artifact metadata, one per complete submission."""

    id: str
    slug: str
    title: str
    summary: str
    description: str | None
    files: list[ArtifactFile]
    links: list[dict[str, str]]
    people: list[str]
    identities: list[str]
    from_year: int
    to_year: int | None
    decades: list[int]
    aliases: list[str]

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping with ``None`` optionals dropped."""
        data: dict[str, Any] = {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "summary": self.summary,
            "description": self.description,
            "files": [_drop_none(vars(f).copy()) for f in self.files],
            "links": [dict(link) for link in self.links],
            "people": list(self.people),
            "identities": list(self.identities),
            "from_year": self.from_year,
            "to_year": self.to_year,
            "decades": list(self.decades),
            "aliases": list(self.aliases),
        }
        return _drop_none(data)


def with_files(submission: ArtifactSubmission, files: list[FileSubmission]) -> ArtifactSubmission:
    return replace(submission, files=tuple(files))


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}
