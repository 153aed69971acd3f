"""
Cache-Aware Fetcher

Resolves a (URL, cache key) pair to bytes. With a cache root configured a
cached file is returned verbatim, without freshness checks; otherwise the URL
is fetched and, when caching is enabled, the body is teed to the cache. The
cache exists for repeatable development runs; without a cache root every
call goes to the network.
"""

import json
import os
import tempfile
from typing import IO, Any, Optional

import requests
from rich.markup import escape

from addman.constants import DEFAULT_CHUNK_SIZE, DEFAULT_REQUEST_TIMEOUT
from addman.exceptions import DecodeError, FilesystemError, HTTPError, TransportError
from addman.log_utils import logger

from .files import safe_extract_path
from .task_pool import TaskPool


def _reset(buffer: IO[bytes]) -> None:
    buffer.seek(0)
    buffer.truncate()


class CacheFetcher:
    """
    Fetch remote payloads into caller-owned buffers.

    Each caller passes its own destination buffer, so concurrent add-on
    updates never share in-flight bytes. When a network pool is given, every
    fetch runs on it and the caller blocks until it finishes; this is what
    bounds outbound concurrency.
    """

    def __init__(
        self,
        session: requests.Session,
        cache_dir: Optional[str] = None,
        net_pool: Optional[TaskPool] = None,
        timeout: int = DEFAULT_REQUEST_TIMEOUT,
    ):
        """
        Parameters:
            session (requests.Session): HTTP session used for GET requests.
            cache_dir (Optional[str]): Cache root; None or empty disables caching.
            net_pool (Optional[TaskPool]): Pool that runs the fetches; inline when None.
            timeout (int): Request timeout in seconds.
        """
        self.session = session
        self.cache_dir = cache_dir or None
        self.net_pool = net_pool
        self.timeout = timeout
        if self.cache_dir:
            os.makedirs(self.cache_dir, exist_ok=True)

    def cache_path(self, cache_key: str) -> str:
        """
        Resolve the cache file for `cache_key` inside the cache root.

        Raises:
            FilesystemError: If the key would escape the cache root.
        """
        if not self.cache_dir:
            raise FilesystemError("caching is disabled")
        try:
            return safe_extract_path(self.cache_dir, cache_key)
        except ValueError as e:
            raise FilesystemError(
                "invalid cache key", path=cache_key, details=str(e)
            ) from e

    def fetch(self, url: str, cache_key: str, buffer: IO[bytes]) -> bytes:
        """
        Fill `buffer` with the payload for `url` and return its bytes.

        Raises:
            TransportError: When the request fails or returns a non-200 status.
            FilesystemError: When the cache cannot be read or written.
        """
        if self.net_pool is None:
            return self._fetch(url, cache_key, buffer)
        return self.net_pool.submit(lambda: self._fetch(url, cache_key, buffer)).result()

    def _fetch(self, url: str, cache_key: str, buffer: IO[bytes]) -> bytes:
        _reset(buffer)

        cache_file = self.cache_path(cache_key) if self.cache_dir else None
        if cache_file and os.path.isfile(cache_file):
            logger.debug("Cache hit for %s (%s)", escape(url), escape(cache_key))
            try:
                with open(cache_file, "rb") as f:
                    for chunk in iter(lambda: f.read(DEFAULT_CHUNK_SIZE), b""):
                        buffer.write(chunk)
            except OSError as e:
                raise FilesystemError(
                    "error reading data from cache", path=cache_file, details=str(e)
                ) from e
            return buffer.getvalue()

        logger.debug("Fetching %s", escape(url))
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as response:
                if response.status_code != 200:
                    raise HTTPError(
                        f"error fetching {url}",
                        status_code=response.status_code,
                        url=url,
                        details=f"{response.status_code} {response.reason or ''}".strip(),
                    )
                if cache_file:
                    self._tee_to_cache(response, buffer, cache_file)
                else:
                    for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                        if chunk:
                            buffer.write(chunk)
        except requests.RequestException as e:
            raise TransportError(
                f"error opening connection to {url}", url=url, details=str(e)
            ) from e

        return buffer.getvalue()

    def _tee_to_cache(
        self, response: requests.Response, buffer: IO[bytes], cache_file: str
    ) -> None:
        """Copy the response body to `buffer` and, atomically, to `cache_file`."""
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                dir=os.path.dirname(cache_file), prefix="tmp-", suffix=".part"
            )
        except OSError as e:
            raise FilesystemError(
                "error creating cache file", path=cache_file, details=str(e)
            ) from e

        try:
            with os.fdopen(temp_fd, "wb") as cache_f:
                for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                    if chunk:
                        buffer.write(chunk)
                        cache_f.write(chunk)
            os.replace(temp_path, cache_file)
        except OSError as e:
            raise FilesystemError(
                "error writing cache file", path=cache_file, details=str(e)
            ) from e
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass


def fetch_json(
    fetcher: CacheFetcher, url: str, cache_key: str, buffer: IO[bytes]
) -> Any:
    """
    Fetch `url` through the cache and decode it as JSON.

    Raises:
        DecodeError: If the payload is not valid JSON.
    """
    data = fetcher.fetch(url, cache_key, buffer)
    try:
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError("error decoding json", url=url, details=str(e)) from e
