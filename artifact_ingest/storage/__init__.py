"""
Content-addressed storage backends.
"""

from .store import ContentStore, LocalContentStore, ReprDigestProbe, S3ContentStore, store_key

__all__ = [
    "ContentStore",
    "LocalContentStore",
    "ReprDigestProbe",
    "S3ContentStore",
    "store_key",
]
