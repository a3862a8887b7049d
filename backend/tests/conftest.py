"""Shared test fixtures and configuration for backend tests."""
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from amrelay.config import RelayConfig
from amrelay.main import create_app
from amrelay.services import RelayServices, build_services

AMR_HEADER = b"#!AMR\n"


class FakeTranscoder:
    """Stands in for ffmpeg: writes a tiny AMR file next to the input."""

    extension = ".amr"

    def __init__(self, payload: bytes = AMR_HEADER + b"\x00" * 32, error: Optional[Exception] = None):
        self.payload = payload
        self.error = error
        self.calls: List[Path] = []

    async def transcode(self, input_path: Path) -> Path:
        self.calls.append(Path(input_path))
        if self.error is not None:
            raise self.error
        output = Path(f"{input_path}{self.extension}")
        output.write_bytes(self.payload)
        return output


def _no_network(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="no route in test")


@pytest.fixture
def relay_config(tmp_path) -> RelayConfig:
    """Config rooted in tmp_path with a small upload limit."""
    return RelayConfig(
        storage={
            "downloads_dir": tmp_path / "downloads",
            "scratch_dir": tmp_path / "temp",
        },
        ingest={"max_upload_bytes": 4096, "chunk_size": 512},
    )


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def make_services(relay_config, fake_transcoder) -> Callable[..., RelayServices]:
    """Build RelayServices whose outbound HTTP goes to *handler*."""

    def _make(handler=None, transcoder=None, config: Optional[RelayConfig] = None) -> RelayServices:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler or _no_network),
            follow_redirects=True,
        )
        return build_services(
            config or relay_config,
            ffmpeg_path="ffmpeg",
            http_client=client,
            transcoder=transcoder or fake_transcoder,
        )

    return _make


@pytest.fixture
def make_client(relay_config, make_services) -> Callable[..., TestClient]:
    """TestClient for an app whose services are installed without the lifespan.

    The lifespan would look for a real ffmpeg, so it is never entered here.
    """

    def _make(handler=None, transcoder=None) -> TestClient:
        app = create_app(relay_config)
        app.state.relay = make_services(handler=handler, transcoder=transcoder)
        return TestClient(app)

    return _make
