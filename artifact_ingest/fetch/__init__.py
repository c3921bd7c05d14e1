"""
Source fetching and submission completion.
"""

from .completer import SubmissionCompleter
from .fetcher import build_client, download_and_verify, download_to_temp, head_file

__all__ = [
    "SubmissionCompleter",
    "build_client",
    "download_and_verify",
    "download_to_temp",
    "head_file",
]
