"""Title/artist lookup for NetEase Cloud Music song links.

The lookup service answers three plain-text queries for a song id:

    {api_base}?type=name&id=<id>     song title
    {api_base}?type=artist&id=<id>   artist name
    {api_base}?type=url&id=<id>      the audio file itself

Title and artist are fetched concurrently and both are always awaited, so a
slow or failed artist lookup never throws away a good title. Lookup failures
are never raised; they just leave the field empty.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackMetadata:
    title: str = ""
    artist: str = ""

    def filename(self) -> str:
        """``title_artist``, ``title`` alone, or ``""`` when the title is unknown."""
        if not self.title:
            return ""
        if self.artist:
            return f"{self.title}_{self.artist}"
        return self.title


class MetadataResolver:
    """Best-effort enrichment of a song id with its title and artist."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_base: str = "https://v.iarc.top/",
        user_agent: str = "Mozilla/5.0",
        timeout: float = 10.0,
    ) -> None:
        self._client = http_client
        self._api_base = api_base
        self._user_agent = user_agent
        self._timeout = timeout

    def _query_url(self, kind: str, source_id: str) -> str:
        return f"{self._api_base}?{urlencode({'type': kind, 'id': source_id})}"

    def resource_url(self, source_id: str) -> str:
        """Canonical download URL for the song's audio."""
        return self._query_url("url", source_id)

    async def resolve(self, source_id: str) -> TrackMetadata:
        title, artist = await asyncio.gather(
            self._fetch_text(self._query_url("name", source_id)),
            self._fetch_text(self._query_url("artist", source_id)),
        )
        logger.info("Metadata for %s: title=%r artist=%r", source_id, title, artist)
        return TrackMetadata(title=title, artist=artist)

    async def _fetch_text(self, url: str) -> str:
        """GET *url* and return its trimmed body, or ``""`` on any failure."""
        try:
            response = await self._client.get(
                url,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.debug("Metadata lookup %s failed: %s", url, exc)
            return ""
        if response.status_code != 200:
            logger.debug("Metadata lookup %s returned %d", url, response.status_code)
            return ""
        return response.text.strip()
