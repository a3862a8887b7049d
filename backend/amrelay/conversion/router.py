"""FastAPI router for the conversion endpoints.

Endpoints:
    POST /upload       multipart field ``file``
    POST /convert-url  form field ``url``

Both answer with ConversionResponse; failures are RelayErrors rendered as
plain text by the app-level handler.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from starlette.datastructures import UploadFile

from ..errors import InvalidForm
from ..services import get_pipeline
from .pipeline import ConversionPipeline
from .schemas import ConversionResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversion"])


def declared_body_size(request: Request) -> Optional[int]:
    """Content-Length of the request, if the client sent a usable one."""
    header_value = request.headers.get("content-length")
    if not header_value:
        return None
    try:
        return int(header_value)
    except ValueError:
        logger.warning("Invalid content-length header: %s", header_value)
        return None


@router.post(
    "/upload",
    response_model=ConversionResponse,
    response_model_exclude_none=True,
)
async def upload_file(
    request: Request,
    pipeline: ConversionPipeline = Depends(get_pipeline),
) -> ConversionResponse:
    """Convert an uploaded audio file to AMR.

    The declared body size is checked before the multipart form is parsed,
    and the body itself is counted as it streams in, so an oversized
    request is refused without writing it anywhere, chunked or not.

    Raises:
        UploadTooLarge (400): Body at or over the upload limit
        InvalidForm (400): No ``file`` part in the form
        TranscodeError (500): ffmpeg failed
    """
    declared_size = declared_body_size(request)
    pipeline.ingestor.check_declared_size(declared_size)

    capped = Request(request.scope, receive=pipeline.ingestor.cap_request_body(request.receive))
    form = await capped.form()
    try:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise InvalidForm("Invalid file")
        result = await pipeline.convert_upload(upload, declared_size)
    finally:
        await form.close()

    return result.to_response()


@router.post(
    "/convert-url",
    response_model=ConversionResponse,
    response_model_exclude_none=True,
)
async def convert_url(
    url: Optional[str] = Form(None),
    pipeline: ConversionPipeline = Depends(get_pipeline),
) -> ConversionResponse:
    """Fetch a remote audio URL and convert it to AMR.

    NetEase Cloud Music song links are named from their title and artist
    and also return the original MP3 (mp3Url/mp3Name).

    Raises:
        InvalidForm (400): ``url`` missing or empty
        BadURL / FetchFailed / UpstreamStatusError (400): URL unusable
        TranscodeError (500): ffmpeg failed
    """
    url = (url or "").strip()
    if not url:
        raise InvalidForm("URL is required")

    result = await pipeline.convert_url(url)
    return result.to_response()
