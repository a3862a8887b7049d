"""Explicit wiring of the relay's components.

build_services() turns one immutable RelayConfig plus the ffmpeg path found at
startup into the object graph every request uses. The result lives on
``app.state.relay``; routes reach it through the get_* dependencies below
rather than through module-level singletons.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from .artifacts.retention import RetentionSweeper
from .artifacts.store import ArtifactStore
from .config import RelayConfig
from .conversion.ingest import SourceIngestor
from .conversion.metadata import MetadataResolver
from .conversion.pipeline import ConversionPipeline
from .conversion.transcoder import ExternalTranscoder

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    config: RelayConfig
    http_client: httpx.AsyncClient
    store: ArtifactStore
    pipeline: ConversionPipeline
    sweeper: RetentionSweeper

    async def start(self) -> None:
        await self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.http_client.aclose()


def build_services(
    config: RelayConfig,
    ffmpeg_path: str,
    http_client: Optional[httpx.AsyncClient] = None,
    transcoder: Optional[ExternalTranscoder] = None,
) -> RelayServices:
    """Construct every component from *config*.

    Args:
        config: Loaded settings
        ffmpeg_path: Executable resolved by locate_ffmpeg()
        http_client: Shared outbound client; one is created when omitted
        transcoder: Replacement transcoder (tests)
    """
    client = http_client or httpx.AsyncClient(follow_redirects=True)

    store = ArtifactStore(
        root=config.storage.downloads_dir,
        primary_extension=config.transcoder.extension,
        companion_extension=config.metadata.companion_extension,
        max_name_length=config.storage.max_display_name_length,
        default_name=config.storage.default_basename,
    )
    ingestor = SourceIngestor(
        scratch_dir=config.storage.scratch_dir,
        http_client=client,
        max_upload_bytes=config.ingest.max_upload_bytes,
        max_download_bytes=config.ingest.max_download_bytes,
        user_agent=config.ingest.user_agent,
        chunk_size=config.ingest.chunk_size,
        fetch_timeout=config.ingest.fetch_timeout_seconds,
    )
    if transcoder is None:
        transcoder = ExternalTranscoder(
            executable=ffmpeg_path,
            channels=config.transcoder.channels,
            sample_rate=config.transcoder.sample_rate,
            codec=config.transcoder.codec,
            extension=config.transcoder.extension,
        )
    resolver = None
    if config.metadata.enabled:
        resolver = MetadataResolver(
            http_client=client,
            api_base=config.metadata.api_base,
            user_agent=config.metadata.user_agent,
            timeout=config.metadata.timeout_seconds,
        )
    pipeline = ConversionPipeline(
        ingestor=ingestor,
        transcoder=transcoder,
        store=store,
        resolver=resolver,
        recognized_domain=config.metadata.domain,
        default_name=config.storage.default_basename,
    )
    sweeper = RetentionSweeper(
        directory=config.storage.downloads_dir,
        interval_seconds=config.retention.interval_seconds,
        max_age_seconds=config.retention.max_age_seconds,
    )
    return RelayServices(
        config=config,
        http_client=client,
        store=store,
        pipeline=pipeline,
        sweeper=sweeper,
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_services(request: Request) -> RelayServices:
    services = getattr(request.app.state, "relay", None)
    if services is None:
        raise RuntimeError("Relay services are not initialised; was the app started?")
    return services


def get_pipeline(request: Request) -> ConversionPipeline:
    return get_services(request).pipeline


def get_store(request: Request) -> ArtifactStore:
    return get_services(request).store
