"""Exception hierarchy shared across validation, completion, and upload.

The ingestion run spans schema checks, HTTP retrieval, digest verification,
object storage writes, and metadata publishing. Every failure mode derives
from ``IngestError`` so the CLI can report any of them through one handler,
while callers that care can still catch the specialised subclasses.
"""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "IngestError",
    "UserConfigError",
    "SchemaValidationError",
    "UnsupportedAlgorithmError",
    "MalformedDigestError",
    "DigestMismatchError",
    "DuplicateSlugError",
    "IncompleteSubmissionError",
    "NetworkError",
    "StorageWriteError",
    "StoreProbeError",
    "PublishError",
]


class IngestError(RuntimeError):
    """Base exception for every failure that aborts an ingestion run."""


class UserConfigError(IngestError):
    """Raised when CLI arguments or YAML configuration inputs are invalid."""


class SchemaValidationError(IngestError):
    """Raised when one or more submission records violate the schema.

    ``violations`` holds every problem found, not just the first, so a
    contributor can fix them all in one pass.
    """

    def __init__(self, violations: Sequence[str], *, source: str | None = None) -> None:
        self.violations = tuple(violations)
        self.source = source
        header = f"Submission does not match the schema: {source}" if source else (
            "Submission does not match the schema"
        )
        super().__init__("\n".join([header, *(f"  - {v}" for v in self.violations)]))


class UnsupportedAlgorithmError(IngestError):
    """Raised for a multihash code with no registered algorithm."""

    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(
            f"A hash algorithm with the multihash code 0x{code:x} is not supported.\n"
            "For more information, see: https://github.com/multiformats/multicodec"
        )


class MalformedDigestError(IngestError):
    """Raised when a textual digest cannot be decoded."""


class DigestMismatchError(IngestError):
    """Raised when downloaded content does not match the declared digest."""

    def __init__(
        self,
        *,
        slug: str,
        filename: str,
        url: str,
        expected: str,
        actual: str,
    ) -> None:
        self.slug = slug
        self.filename = filename
        self.url = url
        self.expected = expected
        self.actual = actual
        super().__init__(
            "Downloaded file does not match the hash included in the submission: "
            f"{slug}/{filename}\nURL: {url}\nExpected: {expected}\nActual: {actual}"
        )


class DuplicateSlugError(IngestError):
    """Raised when a slug is already owned by a different artifact."""

    def __init__(self, slug: str, *, owner_id: str, claimed_by: str | None) -> None:
        self.slug = slug
        self.owner_id = owner_id
        self.claimed_by = claimed_by
        super().__init__(
            f"The slug '{slug}' already belongs to artifact {owner_id}"
            + (f", but this submission has id {claimed_by}" if claimed_by else "")
        )


class IncompleteSubmissionError(IngestError):
    """Raised when upload is attempted on a submission missing id or digests."""

    def __init__(self, slug: str, missing: Sequence[str]) -> None:
        self.slug = slug
        self.missing = tuple(missing)
        super().__init__(
            f"Submission is not complete and cannot be uploaded: {slug}\n"
            + "\n".join(f"  - missing {item}" for item in self.missing)
            + "\nRun the validate mode first to fill in generated fields."
        )


class NetworkError(IngestError):
    """Raised when an HTTP request fails or returns an error status."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    def for_files(self, files: Sequence[str]) -> NetworkError:
        """Copy of this error naming the ``slug/filename`` entries behind the URL."""
        return NetworkError(
            f"{self}\nUsed by: {', '.join(files)}", url=self.url, status_code=self.status_code
        )


class StorageWriteError(IngestError):
    """Raised when the content store rejects a read or write."""


class StoreProbeError(IngestError):
    """Raised when a public-URL probe neither proves absence nor a match."""


class PublishError(IngestError):
    """Raised when the metadata backend rejects a publish or lookup."""
