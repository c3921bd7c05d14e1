"""Tests for the submission schema validator."""

import copy

import pytest

from artifact_ingest.core.digest import SHA2_512, hash_bytes
from artifact_ingest.core.schema import SchemaValidator, SlugRegistry, derive_decades
from artifact_ingest.errors import SchemaValidationError

SLUG = "commodore-64-manual"


def _record(**overrides):
    data = {
        "version": 1,
        "slug": SLUG,
        "title": "Commodore 64 User's Guide",
        "summary": "The manual shipped with the Commodore 64.",
        "files": [
            {
                "name": "Manual",
                "filename": "manual.pdf",
                "source_url": "https://files.example.com/c64.pdf",
            }
        ],
        "from_year": 1982,
        "decades": [1980],
    }
    data.update(overrides)
    return data


def _validate(record, mode="validate", registry=None, expected_slug=SLUG):
    registry = registry or SlugRegistry.from_records([record])
    validator = SchemaValidator(mode, registry, current_year=2024)
    return validator.validate(record, expected_slug=expected_slug)


def _violations(record, **kwargs):
    with pytest.raises(SchemaValidationError) as excinfo:
        _validate(record, **kwargs)
    return excinfo.value.violations


def test_valid_record_produces_typed_submission():
    submission = _validate(_record())
    assert submission.slug == SLUG
    assert submission.id is None
    assert submission.links == ()
    assert submission.files[0].hidden is False
    assert submission.files[0].digest is None
    assert not submission.is_complete


def test_derive_decades():
    assert derive_decades(1983, 1996) == [1980, 1990]
    assert derive_decades(1990, 1990) == [1990]
    assert derive_decades(1999) == [1990]


def test_violations_are_accumulated():
    """Every violation is reported, not only the first"""
    record = _record(title="", slug="Bad_Slug", decades=[1970])
    violations = _violations(record, expected_slug="Bad_Slug")
    assert any(v.startswith("title:") for v in violations)
    assert any(v.startswith("slug:") for v in violations)
    assert any(v.startswith("decades:") for v in violations)


def test_slug_must_match_file_name():
    violations = _violations(_record(), expected_slug="other-slug-name")
    assert any("does not match the file name" in v for v in violations)


def test_slug_collision_across_batch():
    first = _record()
    second = _record(slug="commodore-64-guide-v2", aliases=[SLUG])
    registry = SlugRegistry.from_records([first, second])

    assert any("more than one" in v for v in _violations(first, registry=registry))
    second_violations = _violations(
        second, registry=registry, expected_slug="commodore-64-guide-v2"
    )
    assert any(v.startswith("aliases:") for v in second_violations)


def test_alias_cannot_be_own_slug():
    violations = _violations(_record(aliases=[SLUG]))
    assert any("own slug" in v for v in violations)


def test_upload_mode_requires_id_and_multihash():
    violations = _violations(_record(), mode="upload")
    assert any(v.startswith("id:") for v in violations)
    assert any(v.startswith("files[0].multihash:") for v in violations)


def test_upload_mode_accepts_complete_record():
    record = _record(id="AbCdEf123456")
    record["files"][0]["multihash"] = hash_bytes(b"manual").encode()
    submission = _validate(record, mode="upload")
    assert submission.is_complete
    assert submission.files[0].digest == hash_bytes(b"manual")


def test_sha2_512_multihash_accepted():
    record = _record()
    record["files"][0]["multihash"] = hash_bytes(b"manual", SHA2_512).encode()
    assert _validate(record).files[0].digest.code == 0x13


def test_unsupported_multihash_reported():
    record = _record()
    record["files"][0]["multihash"] = "1102abcd"
    violations = _violations(record)
    assert any("0x11" in v for v in violations)


def test_duplicate_filenames_rejected():
    record = _record()
    record["files"].append(dict(record["files"][0], source_url="https://files.example.com/b.pdf"))
    violations = _violations(record)
    assert any("duplicate filename" in v for v in violations)


def test_shared_source_url_with_different_digests_rejected():
    record = _record()
    second = copy.deepcopy(record["files"][0])
    second["filename"] = "manual-copy.pdf"
    record["files"][0]["multihash"] = hash_bytes(b"one").encode()
    second["multihash"] = hash_bytes(b"two").encode()
    record["files"].append(second)
    violations = _violations(record)
    assert any("different multihash" in v for v in violations)


def test_shared_source_url_with_same_digest_allowed():
    record = _record()
    second = copy.deepcopy(record["files"][0])
    second["filename"] = "manual-copy.pdf"
    record["files"][0]["multihash"] = hash_bytes(b"one").encode()
    second["multihash"] = hash_bytes(b"one").encode()
    record["files"].append(second)
    assert len(_validate(record).files) == 2


def test_years_are_checked():
    violations = _violations(_record(to_year=1982))
    assert any(v.startswith("to_year:") for v in violations)

    violations = _violations(_record(from_year=2030, decades=[2030]))
    assert any(v.startswith("from_year:") for v in violations)


def test_decades_must_match_years():
    assert _validate(_record(from_year=1983, to_year=1996, decades=[1980, 1990])).decades == (
        1980,
        1990,
    )
    violations = _violations(_record(from_year=1983, to_year=1996, decades=[1980]))
    assert any("must be exactly [1980, 1990]" in v for v in violations)


def test_decades_must_be_sorted_multiples_of_ten():
    violations = _violations(_record(from_year=1983, to_year=1996, decades=[1990, 1985]))
    assert any("multiple of 10" in v for v in violations)
    assert any("ascending" in v for v in violations)


def test_unknown_keys_rejected():
    violations = _violations(_record(colour="blue"))
    assert "colour: is not allowed" in violations


def test_links_must_be_https_and_unique():
    links = [
        {"name": "Homepage", "url": "http://example.com/"},
        {"name": "Archive", "url": "https://archive.example.com/"},
        {"name": "Archive again", "url": "https://archive.example.com/"},
    ]
    violations = _violations(_record(links=links))
    assert any(v.startswith("links[0].url:") for v in violations)
    assert any("duplicate url" in v for v in violations)


def test_file_alias_cannot_be_current_filename():
    record = _record()
    record["files"].append(
        {
            "name": "Scan",
            "filename": "scan.pdf",
            "source_url": "https://files.example.com/scan.pdf",
            "aliases": ["manual.pdf"],
        }
    )
    violations = _violations(record)
    assert any("is a current filename" in v for v in violations)


def test_non_object_record():
    violations = _violations(["not", "a", "record"])
    assert violations == ("(root): must be an object",)


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        SchemaValidator("publish", SlugRegistry({}))
