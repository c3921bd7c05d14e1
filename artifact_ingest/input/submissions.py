"""Reading and writing submission files.

Each artifact lives in ``<submissions dir>/<slug>.json``. The file stem is the
slug the record must declare.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Sequence

from ..core.types import ArtifactSubmission
from ..errors import SchemaValidationError, UserConfigError

# Matches the indentation used by the submission form, to keep diffs quiet.
JSON_INDENT = 2


@dataclass
class RawSubmission:
    """An unvalidated submission record and where it came from."""

    path: Path
    data: Any

    @property
    def slug(self) -> str:
        return self.path.stem


def list_submission_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        raise UserConfigError(f"Submissions directory does not exist: {directory}")
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == ".json")


def load_raw_submissions(directory: Path) -> list[RawSubmission]:
    """Parse every submission file in ``directory``.

    Raises:
        SchemaValidationError: For each file that is not valid JSON, all
            reported together
    """
    raw: list[RawSubmission] = []
    problems: list[str] = []
    for path in list_submission_files(directory):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except UnicodeDecodeError as exc:
            problems.append(f"{path.name}: not valid UTF-8: {exc}")
            continue
        except json.JSONDecodeError as exc:
            problems.append(f"{path.name}: invalid JSON: {exc}")
            continue
        raw.append(RawSubmission(path=path, data=data))
    if problems:
        raise SchemaValidationError(problems, source=str(directory))
    return raw


def submission_to_json(submission: ArtifactSubmission) -> dict[str, Any]:
    """Serialize a submission in a stable field order, omitting unset fields."""
    data: dict[str, Any] = {
        "version": submission.version,
        "id": submission.id,
        "slug": submission.slug,
        "title": submission.title,
        "summary": submission.summary,
        "description": submission.description,
        "files": [
            _drop_none(
                {
                    "name": f.name,
                    "filename": f.filename,
                    "media_type": f.media_type,
                    "multihash": f.digest.encode() if f.digest else None,
                    "source_url": f.source_url,
                    "lang": f.lang,
                    "hidden": f.hidden,
                    "aliases": list(f.aliases),
                }
            )
            for f in submission.files
        ],
        "links": [{"name": link.name, "url": link.url} for link in submission.links],
        "people": list(submission.people),
        "identities": list(submission.identities),
        "from_year": submission.from_year,
        "to_year": submission.to_year,
        "decades": list(submission.decades),
        "aliases": list(submission.aliases),
    }
    return _drop_none(data)


def write_submissions(directory: Path, submissions: Sequence[ArtifactSubmission]) -> list[Path]:
    written = []
    for submission in submissions:
        path = directory / f"{submission.slug}.json"
        text = json.dumps(submission_to_json(submission), indent=JSON_INDENT, ensure_ascii=False)
        path.write_text(text + "\n", encoding="utf-8")
        written.append(path)
    return written


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}
