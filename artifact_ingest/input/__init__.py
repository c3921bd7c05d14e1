"""
Submission file reading and writing.
"""

from .submissions import RawSubmission, load_raw_submissions, write_submissions

__all__ = ["RawSubmission", "load_raw_submissions", "write_submissions"]
