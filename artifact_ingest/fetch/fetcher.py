"""
HTTP fetching of source files.

Downloads are streamed into a temporary directory while the digest is
computed over the same stream, so each file is read from the network once.
The temporary copy only lives inside the ``download_to_temp`` context: it is
removed on every exit path, including verification failure and cancellation.

No retries happen unless ``retries`` is raised above zero; then transport
errors and 5xx responses are retried with a linear backoff.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
import tempfile
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import httpx

from ..core.digest import DEFAULT_ALGORITHM, Digest, HashAlgorithm, algorithm_by_code, create
from ..errors import NetworkError

T = TypeVar("T")

_TEMP_PREFIX = "artifact-ingest-"


@dataclass
class DownloadedFile:
    """A source file downloaded to a temporary location.

    Attributes:
        url: The URL that was fetched
        path: Temporary file path, valid only inside the download context
        digest: Digest of the downloaded bytes
        media_type: Media type declared by the origin server, if any
        size: Number of bytes downloaded
    """

    url: str
    path: Path
    digest: Digest
    media_type: str | None
    size: int


@dataclass
class HeadResult:
    url: str
    status_code: int
    media_type: str | None


@dataclass
class VerificationResult:
    """Outcome of comparing downloaded content against a declared digest."""

    expected: Digest
    actual: Digest

    @property
    def is_valid(self) -> bool:
        return self.actual == self.expected


class _RetryableStatus(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def build_client(
    timeout: float,
    user_agent: str,
    trust_env: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the shared async client used for all source fetches."""
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": user_agent},
        follow_redirects=True,
        trust_env=trust_env,
        transport=transport,
    )


def parse_media_type(header: str | None) -> str | None:
    """Extract ``type/subtype`` from a Content-Type header value.

    Example:
        >>> parse_media_type("text/html; charset=utf-8")
        'text/html'
    """
    if not header:
        return None
    media_type = header.split(";", 1)[0].strip().lower()
    if "/" not in media_type:
        return None
    return media_type


@asynccontextmanager
async def download_to_temp(
    client: httpx.AsyncClient,
    url: str,
    algorithm: HashAlgorithm = DEFAULT_ALGORITHM,
    *,
    retries: int = 0,
    temp_dir: str | None = None,
) -> AsyncIterator[DownloadedFile]:
    """Download ``url`` to a temporary file, hashing it on the way.

    Yields:
        DownloadedFile whose ``path`` is removed when the context exits

    Raises:
        NetworkError: On transport failure or an error status
    """
    with tempfile.TemporaryDirectory(prefix=_TEMP_PREFIX, dir=temp_dir) as tmp:
        path = Path(tmp) / "file"

        async def attempt() -> DownloadedFile:
            hasher = algorithm.hasher()
            size = 0
            async with client.stream("GET", url) as response:
                _check_status(response, url)
                with open(path, "wb") as handle:
                    async for chunk in response.aiter_bytes():
                        hasher.update(chunk)
                        handle.write(chunk)
                        size += len(chunk)
                media_type = parse_media_type(response.headers.get("content-type"))
            return DownloadedFile(
                url=url,
                path=path,
                digest=create(algorithm, hasher.digest()),
                media_type=media_type,
                size=size,
            )

        yield await _with_retries(url, retries, attempt)


@asynccontextmanager
async def download_and_verify(
    client: httpx.AsyncClient,
    url: str,
    expected: Digest,
    *,
    retries: int = 0,
    temp_dir: str | None = None,
) -> AsyncIterator[tuple[DownloadedFile, VerificationResult]]:
    """Download ``url`` and hash it with the algorithm of ``expected``.

    The caller decides what to do with a mismatch; the temporary file is
    removed either way when the context exits.
    """
    algorithm = algorithm_by_code(expected.code)
    async with download_to_temp(
        client, url, algorithm, retries=retries, temp_dir=temp_dir
    ) as downloaded:
        yield downloaded, VerificationResult(expected=expected, actual=downloaded.digest)


async def head_file(client: httpx.AsyncClient, url: str, *, retries: int = 0) -> HeadResult:
    """Issue a HEAD request to read the declared media type without the body."""

    async def attempt() -> HeadResult:
        response = await client.head(url)
        _check_status(response, url)
        return HeadResult(
            url=url,
            status_code=response.status_code,
            media_type=parse_media_type(response.headers.get("content-type")),
        )

    return await _with_retries(url, retries, attempt)


def _check_status(response: httpx.Response, url: str) -> None:
    if response.status_code >= 500:
        raise _RetryableStatus(response.status_code)
    if response.status_code >= 400:
        raise NetworkError(
            f"{response.request.method} {url} returned HTTP {response.status_code}",
            url=url,
            status_code=response.status_code,
        )


async def _with_retries(url: str, retries: int, attempt: Callable[[], Awaitable[T]]) -> T:
    last_error = ""
    status_code: int | None = None
    for index in range(retries + 1):
        try:
            return await attempt()
        except _RetryableStatus as exc:
            last_error = f"HTTP {exc.status_code}"
            status_code = exc.status_code
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            status_code = None
        if index < retries:
            await asyncio.sleep(0.5 * (index + 1))
    raise NetworkError(
        f"Failed to fetch {url} after {retries + 1} attempt(s): {last_error}",
        url=url,
        status_code=status_code,
    )
