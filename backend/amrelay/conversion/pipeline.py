"""Conversion pipeline: stage → transcode → publish.

Both entry points (upload and URL) funnel into the same job runner. Staged
inputs live inside the ingestor's context managers and the ffmpeg output is
removed right after publication, so nothing in the scratch directory
outlives the request.

Name derivation for URLs falls through three tiers and always ends with a
non-empty name:

    1. NetEase song link  -> "<title>_<artist>" from MetadataResolver
    2. any other URL      -> last path segment without its extension
    3. otherwise          -> the configured default name
"""
from __future__ import annotations

import logging
import posixpath
import re
from pathlib import PureWindowsPath
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from starlette.datastructures import UploadFile

from ..artifacts.schemas import ContentKind
from ..artifacts.store import ArtifactStore, sanitize_filename
from ..errors import StorageError
from ..utils import remove_quietly
from .ingest import SourceIngestor
from .metadata import MetadataResolver
from .schemas import ConversionJob, ConversionResult
from .transcoder import ExternalTranscoder

logger = logging.getLogger(__name__)

SOURCE_ID_PATTERN = re.compile(r"[?&]id=(\d+)")


def extract_source_id(url: str, domain: str) -> Optional[str]:
    """Return the numeric song id of a recognized link, else None."""
    if domain not in url:
        return None
    match = SOURCE_ID_PATTERN.search(url)
    return match.group(1) if match else None


def _strip_extension(name: str) -> str:
    dot = name.rfind(".")
    return name[:dot] if dot >= 0 else name


def basename_from_url(url: str) -> str:
    """Last segment of the URL path without its extension; ``""`` if degenerate."""
    try:
        path = unquote(urlparse(url).path)
    except ValueError:
        return ""
    base = posixpath.basename(path.rstrip("/"))
    if base in ("", ".", "/"):
        return ""
    return _strip_extension(base)


def basename_from_upload(filename: Optional[str]) -> str:
    """Uploaded filename without directories (either separator) or extension."""
    if not filename:
        return ""
    return _strip_extension(PureWindowsPath(filename).name).strip()


class ConversionPipeline:
    """Orchestrates SourceIngestor, ExternalTranscoder and ArtifactStore."""

    def __init__(
        self,
        ingestor: SourceIngestor,
        transcoder: ExternalTranscoder,
        store: ArtifactStore,
        resolver: Optional[MetadataResolver] = None,
        recognized_domain: str = "music.163.com",
        default_name: str = "arcpi",
    ) -> None:
        self.ingestor = ingestor
        self.transcoder = transcoder
        self.store = store
        self.resolver = resolver
        self._recognized_domain = recognized_domain
        self._default_name = default_name

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def convert_upload(
        self,
        upload: UploadFile,
        declared_size: Optional[int] = None,
    ) -> ConversionResult:
        """Convert an uploaded file. The user owns the original, so only the AMR is published."""
        base_name = basename_from_upload(upload.filename) or self._default_name
        async with self.ingestor.stage_upload(upload, declared_size) as staged:
            result = await self._run(ConversionJob(staged_path=staged.path, base_name=base_name))
        logger.info("Converted upload: %s", upload.filename)
        return result

    async def convert_url(self, url: str) -> ConversionResult:
        """Fetch *url* and convert it, naming the result as well as the source allows."""
        fetch_url, base_name, retain_original = await self.plan_url(url)
        async with self.ingestor.stage_url(fetch_url) as staged:
            result = await self._run(ConversionJob(
                staged_path=staged.path,
                base_name=base_name,
                retain_original=retain_original,
            ))
        logger.info("Converted URL: %s -> %s", url, result.primary.display_name)
        return result

    async def plan_url(self, url: str) -> Tuple[str, str, bool]:
        """Work out (fetch_url, base_name, retain_original) for a submitted URL."""
        fetch_url = url
        base_name = ""
        retain_original = False

        source_id = None
        if self.resolver is not None:
            source_id = extract_source_id(url, self._recognized_domain)
        if source_id is not None:
            logger.info("Recognized song id %s in %s", source_id, url)
            metadata = await self.resolver.resolve(source_id)
            base_name = sanitize_filename(metadata.filename())
            fetch_url = self.resolver.resource_url(source_id)
            retain_original = True

        if not base_name:
            base_name = basename_from_url(fetch_url)
        if not base_name:
            base_name = self._default_name
        return fetch_url, base_name, retain_original

    # ------------------------------------------------------------------
    # Job runner
    # ------------------------------------------------------------------

    async def _run(self, job: ConversionJob) -> ConversionResult:
        output_path = await self.transcoder.transcode(job.staged_path)
        try:
            primary = await self.store.publish(output_path, job.base_name, ContentKind.PRIMARY)
        finally:
            remove_quietly(output_path)

        companion = None
        if job.retain_original:
            try:
                companion = await self.store.publish(
                    job.staged_path,
                    primary.display_name,
                    ContentKind.COMPANION,
                    timestamp=primary.created_at,
                )
            except StorageError:
                logger.warning("Original not published for %s; returning AMR only", primary.public_name)
        return ConversionResult(primary=primary, companion=companion)
