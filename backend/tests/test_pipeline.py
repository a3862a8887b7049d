"""Tests for ConversionPipeline naming, orchestration and cleanup."""
import io
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.datastructures import UploadFile

from amrelay.conversion.pipeline import (
    basename_from_upload,
    basename_from_url,
    extract_source_id,
)
from amrelay.errors import StorageError, TranscodeError, UpstreamStatusError

NETEASE_LINK = "https://music.163.com/#/song?id=12345"


def _netease(title: str = "Song", artist: str = "Artist", audio: bytes = b"ID3 original"):
    """Handler for the metadata API: name/artist text and the resource itself."""
    def handler(request: httpx.Request) -> httpx.Response:
        kind = request.url.params.get("type")
        if kind == "name":
            return httpx.Response(200, text=title)
        if kind == "artist":
            return httpx.Response(200, text=artist)
        if kind == "url":
            return httpx.Response(200, content=audio)
        if request.url.path.endswith(".mp3"):
            return httpx.Response(200, content=audio)
        return httpx.Response(404)
    return handler


def _scratch_files(relay_config):
    scratch = relay_config.storage.scratch_dir
    return list(scratch.iterdir()) if scratch.exists() else []


class TestNameHelpers:
    @pytest.mark.parametrize("url,expected", [
        ("https://music.163.com/#/song?id=12345", "12345"),
        ("https://music.163.com/song?id=987&userid=5", "987"),
        ("https://music.163.com/#/song?foo=1&id=42", "42"),
        ("https://music.163.com/#/playlist", None),
        ("https://example.com/song?id=12345", None),
    ])
    def test_extract_source_id(self, url, expected):
        assert extract_source_id(url, "music.163.com") == expected

    @pytest.mark.parametrize("url,expected", [
        ("https://example.com/audio/clip.mp3", "clip"),
        ("https://example.com/a/My%20Song.flac?x=1", "My Song"),
        ("https://example.com/archive.tar.gz", "archive.tar"),
        ("https://example.com/", ""),
        ("https://example.com", ""),
        ("https://example.com/.mp3", ""),
    ])
    def test_basename_from_url(self, url, expected):
        assert basename_from_url(url) == expected

    @pytest.mark.parametrize("filename,expected", [
        ("song.mp3", "song"),
        ("C:\\Users\\me\\voice memo.m4a", "voice memo"),
        ("dir/sub/clip.wav", "clip"),
        ("noext", "noext"),
        ("", ""),
        (None, ""),
    ])
    def test_basename_from_upload(self, filename, expected):
        assert basename_from_upload(filename) == expected


class TestPlanUrl:
    @pytest.mark.asyncio
    async def test_netease_link_uses_metadata(self, make_services):
        pipeline = make_services(handler=_netease()).pipeline
        fetch_url, base_name, retain = await pipeline.plan_url(NETEASE_LINK)

        assert base_name == "Song_Artist"
        assert fetch_url == "https://v.iarc.top/?type=url&id=12345"
        assert retain is True

    @pytest.mark.asyncio
    async def test_metadata_names_are_sanitized(self, make_services):
        pipeline = make_services(handler=_netease(title="AC/DC: Live?", artist="AC/DC")).pipeline
        _, base_name, _ = await pipeline.plan_url(NETEASE_LINK)
        assert base_name == "AC_DC_ Live__AC_DC"

    @pytest.mark.asyncio
    async def test_artist_alone_never_names_the_file(self, make_services):
        pipeline = make_services(handler=_netease(title="", artist="X")).pipeline
        _, base_name, retain = await pipeline.plan_url(NETEASE_LINK)
        assert base_name == "arcpi"
        assert not base_name.startswith("_")
        assert retain is True

    @pytest.mark.asyncio
    async def test_generic_url_uses_basename(self, make_services):
        pipeline = make_services().pipeline
        fetch_url, base_name, retain = await pipeline.plan_url("https://example.com/audio/clip.mp3")
        assert (fetch_url, base_name, retain) == ("https://example.com/audio/clip.mp3", "clip", False)

    @pytest.mark.asyncio
    async def test_degenerate_url_falls_back_to_default(self, make_services):
        pipeline = make_services().pipeline
        _, base_name, _ = await pipeline.plan_url("https://example.com/")
        assert base_name == "arcpi"

    @pytest.mark.asyncio
    async def test_metadata_disabled_treats_link_as_generic(self, make_services, relay_config):
        config = relay_config.model_copy(update={
            "metadata": relay_config.metadata.model_copy(update={"enabled": False}),
        })
        pipeline = make_services(handler=_netease(), config=config).pipeline
        fetch_url, _, retain = await pipeline.plan_url(NETEASE_LINK)
        assert fetch_url == NETEASE_LINK
        assert retain is False


class TestConvertUpload:
    @pytest.mark.asyncio
    async def test_publishes_amr_only(self, make_services, fake_transcoder, relay_config):
        services = make_services()
        upload = UploadFile(file=io.BytesIO(b"RIFF wav data"), filename="My Song.wav")

        result = await services.pipeline.convert_upload(upload)

        assert result.companion is None
        assert result.primary.display_name == "My Song.amr"
        assert result.primary.path.read_bytes() == fake_transcoder.payload
        assert len(fake_transcoder.calls) == 1
        assert _scratch_files(relay_config) == []

    @pytest.mark.asyncio
    async def test_unnamed_upload_uses_default(self, make_services):
        upload = UploadFile(file=io.BytesIO(b"data"), filename=".wav")
        result = await make_services().pipeline.convert_upload(upload)
        assert result.primary.display_name == "arcpi.amr"

    @pytest.mark.asyncio
    async def test_transcode_failure_leaves_nothing(self, make_services, fake_transcoder, relay_config):
        fake_transcoder.error = TranscodeError("exit status 1", "boom")
        services = make_services()
        upload = UploadFile(file=io.BytesIO(b"data"), filename="a.mp3")

        with pytest.raises(TranscodeError):
            await services.pipeline.convert_upload(upload)

        assert _scratch_files(relay_config) == []
        assert list(services.store.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_publish_failure_removes_scratch_files(self, make_services, fake_transcoder, relay_config):
        services = make_services()
        upload = UploadFile(file=io.BytesIO(b"data"), filename="a.mp3")

        with patch.object(services.store, "publish", AsyncMock(side_effect=StorageError("Save file error"))):
            with pytest.raises(StorageError):
                await services.pipeline.convert_upload(upload)

        assert len(fake_transcoder.calls) == 1
        assert _scratch_files(relay_config) == []


class TestConvertUrl:
    @pytest.mark.asyncio
    async def test_netease_publishes_companion(self, make_services, relay_config):
        services = make_services(handler=_netease(audio=b"ID3 original"))
        result = await services.pipeline.convert_url(NETEASE_LINK)

        primary, companion = result.primary, result.companion
        assert primary.display_name == "Song_Artist.amr"
        assert companion is not None
        assert companion.display_name == "Song_Artist.mp3"
        assert companion.created_at == primary.created_at
        assert companion.path.read_bytes() == b"ID3 original"
        assert _scratch_files(relay_config) == []

        response = result.to_response().model_dump(by_alias=True)
        assert response["mp3Url"] == companion.download_path
        assert response["mp3Name"] == "Song_Artist.mp3"

    @pytest.mark.asyncio
    async def test_generic_url_has_no_companion(self, make_services):
        result = await make_services(handler=_netease()).pipeline.convert_url(
            "https://example.com/audio/clip.mp3"
        )
        assert result.primary.display_name == "clip.amr"
        assert result.companion is None
        assert result.to_response().mp3_url is None

    @pytest.mark.asyncio
    async def test_companion_failure_still_returns_primary(self, make_services):
        services = make_services(handler=_netease())
        real_publish = services.store.publish

        async def publish(source, display_name, kind=None, timestamp=None):
            if timestamp is not None:
                raise StorageError("Save file error")
            return await real_publish(source, display_name, kind, timestamp)

        with patch.object(services.store, "publish", side_effect=publish):
            result = await services.pipeline.convert_url(NETEASE_LINK)

        assert result.primary.display_name == "Song_Artist.amr"
        assert result.companion is None

    @pytest.mark.asyncio
    async def test_upstream_error_skips_transcoder(self, make_services, fake_transcoder, relay_config):
        services = make_services(handler=lambda request: httpx.Response(403))
        with pytest.raises(UpstreamStatusError):
            await services.pipeline.convert_url("https://example.com/a.mp3")
        assert fake_transcoder.calls == []
        assert _scratch_files(relay_config) == []
