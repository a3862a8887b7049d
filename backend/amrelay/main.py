"""amrelay application.

amrelay accepts an audio upload or a remote URL, transcodes it to AMR-NB
(mono, 8 kHz) with ffmpeg and serves the result as a download for one hour.

Modules:
    - conversion: staging, ffmpeg invocation, NetEase metadata lookup
    - artifacts: publication, download and hourly retention of results
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from .artifacts.router import router as artifacts_router
from .config import RelayConfig, load_config
from .conversion.router import router as conversion_router
from .conversion.transcoder import locate_ffmpeg
from .errors import RelayError
from .services import build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every connection; not useful when debugging conversions.
for _noisy in ("httpx", "httpcore", "httpcore.http11", "httpcore.connection"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"
INDEX_PAGE = STATIC_DIR / "index.html"


def create_app(config: Optional[RelayConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Components are created in the lifespan, once ffmpeg has been located.
    Tests may instead set ``app.state.relay`` directly and skip the lifespan.
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        ffmpeg_path = locate_ffmpeg(config.transcoder.ffmpeg_path)
        services = build_services(config, ffmpeg_path)
        app.state.relay = services
        await services.start()
        logger.info(
            "Relay ready on http://%s:%s (downloads=%s)",
            config.server.host,
            config.server.port,
            config.storage.downloads_dir,
        )

        yield  # Application runs here

        # Shutdown
        await services.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="amrelay",
        description="Audio to AMR-NB conversion relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.include_router(conversion_router)
    app.include_router(artifacts_router)

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> PlainTextResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        """Serve the single-page upload form."""
        return HTMLResponse(INDEX_PAGE.read_text(encoding="utf-8"))

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = app.state.config
    uvicorn.run(app, host=config.server.host, port=config.server.port)
