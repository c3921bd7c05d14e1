"""
Artifact Ingest - content-addressed artifact ingestion.

This package checks contributor-written artifact submissions, completes
them with ids, digests and media types, stores every referenced file in a
content-addressed object store, and publishes the resulting metadata.

Main entry point is the CLI via the `artifact-ingest validate` and
`artifact-ingest upload` commands.

Example:
    $ artifact-ingest validate --path artifacts/
    $ artifact-ingest upload -c config.yaml
"""

__all__ = [
    "__version__",
    "Digest",
    "SchemaValidator",
    "SubmissionCompleter",
    "ContentStore",
    "IngestionPipeline",
]
__version__ = "0.1.0"

from .core.digest import Digest
from .core.schema import SchemaValidator
from .fetch.completer import SubmissionCompleter
from .runner import IngestionPipeline
from .storage.store import ContentStore
