"""
Core domain models and business logic.

This package contains digests, submission types and the schema validator,
none of which touch the network or the store.
"""

from .digest import DEFAULT_ALGORITHM, Digest, HashAlgorithm, decode, encode
from .ids import new_artifact_id
from .schema import SchemaValidator, SlugRegistry, derive_decades
from .state import StateTracker, SubmissionState
from .types import Artifact, ArtifactFile, ArtifactSubmission, CompleteSubmission, FileSubmission

__all__ = [
    "DEFAULT_ALGORITHM",
    "Digest",
    "HashAlgorithm",
    "decode",
    "encode",
    "new_artifact_id",
    "SchemaValidator",
    "SlugRegistry",
    "derive_decades",
    "StateTracker",
    "SubmissionState",
    "Artifact",
    "ArtifactFile",
    "ArtifactSubmission",
    "CompleteSubmission",
    "FileSubmission",
]
