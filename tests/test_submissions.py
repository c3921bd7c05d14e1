"""Tests for reading and writing submission files."""

import json

import pytest

from artifact_ingest.core.digest import hash_bytes
from artifact_ingest.core.types import ArtifactSubmission, FileSubmission
from artifact_ingest.errors import SchemaValidationError, UserConfigError
from artifact_ingest.input.submissions import (
    list_submission_files,
    load_raw_submissions,
    submission_to_json,
    write_submissions,
)


def _submission():
    return ArtifactSubmission(
        version=1,
        slug="commodore-64-manual",
        title="Commodore 64 User's Guide",
        summary="The manual shipped with the Commodore 64.",
        from_year=1982,
        id="AbCdEf123456",
        files=(
            FileSubmission(
                name="Manual",
                filename="manual.pdf",
                source_url="https://files.example.com/c64.pdf",
                media_type="application/pdf",
                digest=hash_bytes(b"manual"),
            ),
        ),
        decades=(1980,),
    )


def test_lists_json_files_sorted(tmp_path):
    (tmp_path / "b-submission.json").write_text("{}", encoding="utf-8")
    (tmp_path / "a-submission.json").write_text("{}", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "c-submission.json").write_text("{}", encoding="utf-8")

    assert [p.name for p in list_submission_files(tmp_path)] == [
        "a-submission.json",
        "b-submission.json",
    ]


def test_missing_directory(tmp_path):
    with pytest.raises(UserConfigError):
        list_submission_files(tmp_path / "missing")


def test_raw_submission_slug_from_file_name(tmp_path):
    (tmp_path / "commodore-64-manual.json").write_text('{"slug": "x"}', encoding="utf-8")
    raw = load_raw_submissions(tmp_path)
    assert raw[0].slug == "commodore-64-manual"
    assert raw[0].data == {"slug": "x"}


def test_invalid_json_reported_for_every_file(tmp_path):
    (tmp_path / "first-broken.json").write_text("{", encoding="utf-8")
    (tmp_path / "second-broken.json").write_text("[1,", encoding="utf-8")
    with pytest.raises(SchemaValidationError) as excinfo:
        load_raw_submissions(tmp_path)
    assert len(excinfo.value.violations) == 2


def test_invalid_utf8_reported_with_other_problems(tmp_path):
    (tmp_path / "bad-encoding.json").write_bytes(b'{"slug": "\xff\xfe"}')
    (tmp_path / "first-broken.json").write_text("{", encoding="utf-8")
    with pytest.raises(SchemaValidationError) as excinfo:
        load_raw_submissions(tmp_path)
    violations = excinfo.value.violations
    assert violations[0].startswith("bad-encoding.json: not valid UTF-8")
    assert violations[1].startswith("first-broken.json: invalid JSON")


def test_submission_to_json_field_order_and_omissions():
    data = submission_to_json(_submission())
    assert list(data)[:4] == ["version", "id", "slug", "title"]
    assert "description" not in data
    assert "to_year" not in data
    assert data["files"][0]["multihash"] == hash_bytes(b"manual").encode()
    assert "lang" not in data["files"][0]


def test_write_submissions_format(tmp_path):
    written = write_submissions(tmp_path, [_submission()])
    assert written == [tmp_path / "commodore-64-manual.json"]
    text = written[0].read_text(encoding="utf-8")
    assert text.endswith("}\n")
    assert text.startswith('{\n  "version": 1,')
    assert json.loads(text) == submission_to_json(_submission())
