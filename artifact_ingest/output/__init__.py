"""
Published metadata and identifier lookup.
"""

from .publisher import (
    CloudflareKVPublisher,
    IdentifierAuthority,
    JsonFilePublisher,
    MetadataPublisher,
    to_artifact,
)

__all__ = [
    "CloudflareKVPublisher",
    "IdentifierAuthority",
    "JsonFilePublisher",
    "MetadataPublisher",
    "to_artifact",
]
