"""Staging of untrusted input into the scratch directory.

Uploads and remote downloads are streamed chunk by chunk into uniquely named
temp files (temp/upload-*, temp/url-*). Both entry points are async context
managers: the staged file exists only inside the ``async with`` block and is
removed on the way out, whatever happens inside it.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import httpx
from starlette.datastructures import UploadFile
from starlette.types import Message, Receive

from ..errors import BadURL, FetchFailed, StorageError, UploadTooLarge, UpstreamStatusError
from ..utils import remove_quietly
from .schemas import StagedInput

logger = logging.getLogger(__name__)

SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


def upload_suffix(filename: Optional[str]) -> str:
    """Temp-file suffix for an upload: its own extension when harmless."""
    suffix = Path(filename or "").suffix
    return suffix.lower() if SAFE_SUFFIX.match(suffix) else ".mp3"


def is_fetchable_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class SourceIngestor:
    """Materializes uploads and remote URLs as request-scoped staged files."""

    def __init__(
        self,
        scratch_dir: Path,
        http_client: httpx.AsyncClient,
        max_upload_bytes: int,
        max_download_bytes: int,
        user_agent: str,
        chunk_size: int = 64 * 1024,
        fetch_timeout: float = 60.0,
    ) -> None:
        self._scratch_dir = Path(scratch_dir)
        self._client = http_client
        self._max_upload_bytes = max_upload_bytes
        self._max_download_bytes = max_download_bytes
        self._user_agent = user_agent
        self._chunk_size = chunk_size
        self._fetch_timeout = fetch_timeout

    @property
    def scratch_dir(self) -> Path:
        return self._scratch_dir

    def _create_temp(self, prefix: str, suffix: str) -> Path:
        """Create an empty, uniquely named file in the scratch directory."""
        try:
            self._scratch_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=self._scratch_dir)
            os.close(fd)
        except OSError as exc:
            logger.error("Cannot create scratch file in %s: %s", self._scratch_dir, exc)
            raise StorageError() from exc
        return Path(name).resolve()

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def check_declared_size(self, declared_size: Optional[int]) -> None:
        """Reject a request whose declared body size is at or over the cap.

        Called before the multipart body is parsed, so nothing is written.
        """
        if declared_size is not None and declared_size >= self._max_upload_bytes:
            logger.warning(
                "Upload rejected: declared size %d >= limit %d",
                declared_size, self._max_upload_bytes,
            )
            raise UploadTooLarge()

    def cap_request_body(self, receive: Receive) -> Receive:
        """Wrap an ASGI *receive* so the request body stops at the upload cap.

        Chunked requests carry no Content-Length, so the cap is enforced on
        the bytes as they arrive, before the multipart parser buffers them.
        """
        received = 0

        async def capped_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received >= self._max_upload_bytes:
                    logger.warning(
                        "Upload rejected: body reached limit %d while streaming",
                        self._max_upload_bytes,
                    )
                    raise UploadTooLarge()
            return message

        return capped_receive

    @asynccontextmanager
    async def stage_upload(
        self,
        upload: UploadFile,
        declared_size: Optional[int] = None,
    ) -> AsyncIterator[StagedInput]:
        """Stream *upload* into a scratch file and yield it.

        Raises:
            UploadTooLarge: If the declared or actual size reaches the cap
            StorageError: If the scratch file cannot be written
        """
        self.check_declared_size(declared_size)
        path = self._create_temp("upload-", upload_suffix(upload.filename))
        try:
            await self._copy_upload(upload, path)
            yield StagedInput(path=path)
        finally:
            remove_quietly(path)

    async def _copy_upload(self, upload: UploadFile, path: Path) -> None:
        total = 0
        try:
            with path.open("wb") as buffer:
                while True:
                    chunk = await upload.read(self._chunk_size)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total >= self._max_upload_bytes:
                        logger.warning("Upload exceeded max size: %s", upload.filename)
                        raise UploadTooLarge()
                    buffer.write(chunk)
        except OSError as exc:
            logger.error("Failed to stage upload %s: %s", upload.filename, exc)
            raise StorageError() from exc
        logger.debug("Staged upload %s (%d bytes) at %s", upload.filename, total, path.name)

    # ------------------------------------------------------------------
    # Remote URLs
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def stage_url(self, url: str) -> AsyncIterator[StagedInput]:
        """Download *url* into a scratch file and yield it.

        Raises:
            BadURL: If *url* is not an absolute http(s) URL
            FetchFailed: On connection errors, timeouts or oversized payloads
            UpstreamStatusError: If the server answers anything but 200
            StorageError: If the scratch file cannot be written
        """
        path = await self._download(url)
        try:
            yield StagedInput(path=path)
        finally:
            remove_quietly(path)

    async def _download(self, url: str) -> Path:
        if not is_fetchable_url(url):
            raise BadURL()

        headers = {"User-Agent": self._user_agent}
        try:
            async with self._client.stream("GET", url, headers=headers, timeout=self._fetch_timeout) as response:
                if response.status_code != 200:
                    raise UpstreamStatusError(response.status_code)
                path = self._create_temp("url-", ".mp3")
                try:
                    await self._write_body(response, path)
                except BaseException:
                    remove_quietly(path)
                    raise
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise BadURL() from exc
        except httpx.HTTPError as exc:
            logger.warning("Fetch of %s failed: %s", url, exc)
            raise FetchFailed(f"Failed to download file: {exc}") from exc

        logger.debug("Staged %s at %s", url, path.name)
        return path

    async def _write_body(self, response: httpx.Response, path: Path) -> None:
        total = 0
        try:
            with path.open("wb") as buffer:
                async for chunk in response.aiter_bytes(self._chunk_size):
                    total += len(chunk)
                    if total > self._max_download_bytes:
                        raise FetchFailed("Remote file too large")
                    buffer.write(chunk)
        except OSError as exc:
            logger.error("Failed to save download to %s: %s", path.name, exc)
            raise StorageError("Download save failed") from exc
