"""
Schema validation for raw submission records.

Raw records are untyped JSON objects. ``SchemaValidator`` checks every field
and cross-field rule and either returns a typed ``ArtifactSubmission`` or
raises ``SchemaValidationError`` listing every violation it found. It never
stops at the first problem.

Cross-record rules (slug and alias uniqueness) are checked against a
``SlugRegistry``: a read-only snapshot of all slugs and aliases in the batch,
built once before any record is validated.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
import re
from types import MappingProxyType
from typing import Any, Iterable, Literal
from urllib.parse import urlsplit

from ..errors import MalformedDigestError, SchemaValidationError, UnsupportedAlgorithmError
from .digest import Digest, decode
from .ids import ARTIFACT_ID_PATTERN
from .types import CURRENT_VERSION, ArtifactSubmission, FileSubmission, LinkSubmission

Mode = Literal["validate", "upload"]
MODES: tuple[str, ...] = ("validate", "upload")

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")
SLUG_MIN_LENGTH = 12
SLUG_MAX_LENGTH = 64
FILENAME_PATTERN = re.compile(
    r"^[a-z0-9][a-z0-9-]*[a-z0-9](/[a-z0-9][a-z0-9-]*[a-z0-9])*(\.[a-z0-9]+)*$"
)
MEDIA_TYPE_PATTERN = re.compile(
    r"^(application|audio|font|image|model|text|video|message|multipart)/[\w.+-]+$"
)
LANG_PATTERN = re.compile(r"^[a-z]{2,3}(-[A-Za-z0-9]{2,8})*$")

TITLE_MAX = 100
SUMMARY_MAX = 150
DESCRIPTION_MAX = 1000
FILE_NAME_MAX = 100

_TOP_LEVEL_KEYS = {
    "version",
    "id",
    "slug",
    "title",
    "summary",
    "description",
    "files",
    "links",
    "people",
    "identities",
    "from_year",
    "to_year",
    "decades",
    "aliases",
}
_FILE_KEYS = {
    "name",
    "filename",
    "media_type",
    "multihash",
    "source_url",
    "lang",
    "hidden",
    "aliases",
}
_LINK_KEYS = {"name", "url"}


def derive_decades(from_year: int, to_year: int | None = None) -> list[int]:
    """Return every decade boundary spanned by ``[from_year, to_year]``.

    Example:
        >>> derive_decades(1983, 1996)
        [1980, 1990]
    """
    end = from_year if to_year is None else to_year
    return list(range(from_year // 10 * 10, end // 10 * 10 + 1, 10))


class SlugRegistry:
    """Read-only count of every slug and alias claimed in a batch."""

    def __init__(self, counts: dict[str, int]):
        self._counts = MappingProxyType(dict(counts))

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> SlugRegistry:
        counts: Counter[str] = Counter()
        for record in records:
            if not isinstance(record, dict):
                continue
            names: list[str] = []
            slug = record.get("slug")
            if isinstance(slug, str):
                names.append(slug)
            aliases = record.get("aliases")
            if isinstance(aliases, list):
                # Duplicates inside one alias list are reported separately.
                names.extend(dict.fromkeys(a for a in aliases if isinstance(a, str)))
            counts.update(names)
        return cls(dict(counts))

    def occurrences(self, name: str) -> int:
        return self._counts.get(name, 0)

    def __contains__(self, name: object) -> bool:
        return name in self._counts

    def __len__(self) -> int:
        return len(self._counts)


class _Violations:
    def __init__(self) -> None:
        self.items: list[str] = []

    def add(self, path: str, message: str) -> None:
        self.items.append(f"{path}: {message}")


class SchemaValidator:
    """Validates raw records for one run.

    Args:
        mode: "validate" lets files omit digests; "upload" requires the id
            and every file digest to be present
        registry: Snapshot of all slugs and aliases in the batch
        current_year: Upper bound for years; defaults to the current UTC year
    """

    def __init__(
        self,
        mode: Mode,
        registry: SlugRegistry,
        current_year: int | None = None,
    ):
        if mode not in MODES:
            raise ValueError(f"Unsupported mode: {mode}")
        self.mode = mode
        self.registry = registry
        self.current_year = current_year or datetime.now(timezone.utc).year

    def validate(self, raw: Any, expected_slug: str | None = None) -> ArtifactSubmission:
        """Validate one raw record.

        Args:
            raw: Parsed JSON value
            expected_slug: Slug derived from the record's file name; the
                record's own slug must match it

        Raises:
            SchemaValidationError: With every violation found
        """
        errors = _Violations()
        if not isinstance(raw, dict):
            errors.add("(root)", "must be an object")
            raise SchemaValidationError(errors.items, source=expected_slug)

        for key in sorted(set(raw) - _TOP_LEVEL_KEYS):
            errors.add(key, "is not allowed")

        version = raw.get("version")
        if not _is_int(version):
            errors.add("version", "is required and must be an integer")
        elif version != CURRENT_VERSION:
            errors.add("version", f"must be {CURRENT_VERSION}")

        artifact_id = _optional_str(raw, "id", errors)
        if artifact_id is not None and not ARTIFACT_ID_PATTERN.match(artifact_id):
            errors.add("id", "must be 12 letters or digits")
        if artifact_id is None and self.mode == "upload":
            errors.add("id", "is required in upload mode")

        slug = self._check_slug(raw, expected_slug, errors)
        title = _text(raw, "title", TITLE_MAX, errors, required=True)
        summary = _text(raw, "summary", SUMMARY_MAX, errors, required=True)
        description = _text(raw, "description", DESCRIPTION_MAX, errors, required=False)

        files = self._check_files(raw.get("files", []), errors)
        links = self._check_links(raw.get("links", []), errors)
        people = _unique_strings(raw.get("people", []), "people", errors)
        identities = _unique_strings(raw.get("identities", []), "identities", errors)

        from_year, to_year = self._check_years(raw, errors)
        decades = self._check_decades(raw.get("decades", []), from_year, to_year, errors)
        aliases = self._check_aliases(raw.get("aliases", []), slug, errors)

        if errors.items:
            raise SchemaValidationError(errors.items, source=slug or expected_slug)

        return ArtifactSubmission(
            version=version,
            id=artifact_id,
            slug=slug,
            title=title,
            summary=summary,
            description=description,
            files=tuple(files),
            links=tuple(links),
            people=tuple(people),
            identities=tuple(identities),
            from_year=from_year,
            to_year=to_year,
            decades=tuple(decades),
            aliases=tuple(aliases),
        )

    def _check_slug(self, raw: dict, expected_slug: str | None, errors: _Violations) -> str:
        slug = raw.get("slug")
        if not isinstance(slug, str):
            errors.add("slug", "is required and must be a string")
            return ""
        if not SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH:
            errors.add("slug", f"must be {SLUG_MIN_LENGTH}-{SLUG_MAX_LENGTH} characters")
        if not SLUG_PATTERN.match(slug):
            errors.add("slug", "may only contain lowercase letters, digits and inner hyphens")
        if expected_slug is not None and slug != expected_slug:
            errors.add("slug", f"'{slug}' does not match the file name '{expected_slug}'")
        if self.registry.occurrences(slug) > 1:
            errors.add("slug", f"'{slug}' is used by more than one submission or alias")
        return slug

    def _check_files(self, value: Any, errors: _Violations) -> list[FileSubmission]:
        if not isinstance(value, list):
            errors.add("files", "must be an array")
            return []

        files: list[FileSubmission] = []
        seen_filenames: set[str] = set()
        digests_by_url: dict[str, Digest] = {}
        for index, item in enumerate(value):
            path = f"files[{index}]"
            file = self._check_file(item, path, errors)
            if file is None:
                continue
            if file.filename in seen_filenames:
                errors.add(path, f"duplicate filename '{file.filename}'")
            seen_filenames.add(file.filename)
            if file.digest is not None:
                other = digests_by_url.setdefault(file.source_url, file.digest)
                if other != file.digest:
                    errors.add(
                        path,
                        f"source_url {file.source_url} is shared with a file "
                        "that declares a different multihash",
                    )
            files.append(file)

        for index, file in enumerate(files):
            for alias in file.aliases:
                if alias in seen_filenames:
                    errors.add(f"files[{index}].aliases", f"'{alias}' is a current filename")
        return files

    def _check_file(self, item: Any, path: str, errors: _Violations) -> FileSubmission | None:
        if not isinstance(item, dict):
            errors.add(path, "must be an object")
            return None
        start = len(errors.items)

        for key in sorted(set(item) - _FILE_KEYS):
            errors.add(f"{path}.{key}", "is not allowed")

        name = _text(item, "name", FILE_NAME_MAX, errors, required=True, prefix=path)
        filename = item.get("filename")
        if not isinstance(filename, str) or not FILENAME_PATTERN.match(filename):
            errors.add(f"{path}.filename", "is required and must be a lowercase relative path")

        media_type = _optional_str(item, "media_type", errors, prefix=path)
        if media_type is not None and not MEDIA_TYPE_PATTERN.match(media_type):
            errors.add(f"{path}.media_type", f"'{media_type}' is not a valid media type")

        digest = None
        multihash = item.get("multihash")
        if multihash is None:
            if self.mode == "upload":
                errors.add(f"{path}.multihash", "is required in upload mode")
        elif not isinstance(multihash, str):
            errors.add(f"{path}.multihash", "must be a hex string")
        else:
            try:
                digest = decode(multihash)
            except (MalformedDigestError, UnsupportedAlgorithmError) as exc:
                errors.add(f"{path}.multihash", str(exc).splitlines()[0])

        source_url = item.get("source_url")
        if not _is_url(source_url, {"http", "https"}):
            errors.add(f"{path}.source_url", "is required and must be an http(s) URL")

        lang = _optional_str(item, "lang", errors, prefix=path)
        if lang is not None and not LANG_PATTERN.match(lang):
            errors.add(f"{path}.lang", f"'{lang}' is not a valid language tag")

        hidden = item.get("hidden", False)
        if not isinstance(hidden, bool):
            errors.add(f"{path}.hidden", "must be a boolean")

        aliases = _unique_strings(item.get("aliases", []), f"{path}.aliases", errors)
        for alias in aliases:
            if not FILENAME_PATTERN.match(alias):
                errors.add(f"{path}.aliases", f"'{alias}' is not a valid filename")

        if len(errors.items) > start:
            return None
        return FileSubmission(
            name=name,
            filename=filename,
            source_url=source_url,
            media_type=media_type,
            digest=digest,
            lang=lang,
            hidden=hidden,
            aliases=tuple(aliases),
        )

    def _check_links(self, value: Any, errors: _Violations) -> list[LinkSubmission]:
        if not isinstance(value, list):
            errors.add("links", "must be an array")
            return []
        links: list[LinkSubmission] = []
        seen_urls: set[str] = set()
        for index, item in enumerate(value):
            path = f"links[{index}]"
            if not isinstance(item, dict):
                errors.add(path, "must be an object")
                continue
            for key in sorted(set(item) - _LINK_KEYS):
                errors.add(f"{path}.{key}", "is not allowed")
            name = item.get("name")
            url = item.get("url")
            if not isinstance(name, str) or not name:
                errors.add(f"{path}.name", "is required and must be a string")
            if not _is_url(url, {"https"}):
                errors.add(f"{path}.url", "is required and must be an https URL")
                continue
            if url in seen_urls:
                errors.add(path, f"duplicate url {url}")
            seen_urls.add(url)
            if isinstance(name, str):
                links.append(LinkSubmission(name=name, url=url))
        return links

    def _check_years(self, raw: dict, errors: _Violations) -> tuple[int, int | None]:
        from_year = raw.get("from_year")
        if not _is_int(from_year):
            errors.add("from_year", "is required and must be an integer")
            from_year = 0
        elif from_year > self.current_year:
            errors.add("from_year", f"must not be later than {self.current_year}")

        to_year = raw.get("to_year")
        if to_year is None:
            return from_year, None
        if not _is_int(to_year):
            errors.add("to_year", "must be an integer")
            return from_year, None
        if to_year <= from_year:
            errors.add("to_year", "must be greater than from_year")
        if to_year > self.current_year:
            errors.add("to_year", f"must not be later than {self.current_year}")
        return from_year, to_year

    def _check_decades(
        self,
        value: Any,
        from_year: int,
        to_year: int | None,
        errors: _Violations,
    ) -> list[int]:
        if not isinstance(value, list) or not all(_is_int(d) for d in value):
            errors.add("decades", "must be an array of integers")
            return []
        for decade in value:
            if decade % 10:
                errors.add("decades", f"{decade} is not a multiple of 10")
        if len(set(value)) != len(value):
            errors.add("decades", "must not contain duplicates")
        if value != sorted(value):
            errors.add("decades", "must be in ascending order")
        expected = derive_decades(from_year, to_year)
        if from_year and sorted(set(value)) != expected:
            errors.add("decades", f"must be exactly {expected} for the given years")
        return list(value)

    def _check_aliases(self, value: Any, slug: str, errors: _Violations) -> list[str]:
        aliases = _unique_strings(value, "aliases", errors)
        for alias in aliases:
            if not SLUG_PATTERN.match(alias) or not (
                SLUG_MIN_LENGTH <= len(alias) <= SLUG_MAX_LENGTH
            ):
                errors.add("aliases", f"'{alias}' is not a valid slug")
            if alias == slug:
                errors.add("aliases", f"'{alias}' is the submission's own slug")
            elif self.registry.occurrences(alias) > 1:
                errors.add("aliases", f"'{alias}' is used by more than one submission or alias")
        return aliases


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_url(value: Any, schemes: set[str]) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in schemes and bool(parts.netloc)


def _optional_str(
    data: dict, key: str, errors: _Violations, prefix: str | None = None
) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.add(f"{prefix}.{key}" if prefix else key, "must be a string")
        return None
    return value


def _text(
    data: dict,
    key: str,
    max_length: int,
    errors: _Violations,
    *,
    required: bool,
    prefix: str | None = None,
) -> str | None:
    path = f"{prefix}.{key}" if prefix else key
    value = data.get(key)
    if value is None:
        if not required:
            return None
        errors.add(path, "is required")
        return ""
    if not isinstance(value, str):
        errors.add(path, "must be a string")
        return ""
    value = value.strip()
    if required and not value:
        errors.add(path, "must not be empty")
    if len(value) > max_length:
        errors.add(path, f"must be at most {max_length} characters")
    return value


def _unique_strings(value: Any, path: str, errors: _Violations) -> list[str]:
    if not isinstance(value, list):
        errors.add(path, "must be an array")
        return []
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            errors.add(path, "must only contain strings")
            continue
        if item in items:
            errors.add(path, f"duplicate value '{item}'")
            continue
        items.append(item)
    return items
