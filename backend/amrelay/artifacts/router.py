"""FastAPI router for artifact downloads."""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..services import get_store
from .store import ArtifactStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["artifacts"])


def content_disposition(filename: str) -> str:
    """Attachment header carrying an ASCII fallback and the UTF-8 name (RFC 6266)."""
    fallback = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in '"\\' else "_" for ch in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.get("/download/{public_name:path}")
async def download_artifact(
    public_name: str,
    store: ArtifactStore = Depends(get_store),
):
    """Download a published artifact by its public name.

    The path converter lets names containing ``/`` reach the store, which
    rejects them along with ``..`` and ``\\``.

    Raises:
        InvalidArtifactName (400): Name contains a traversal token
        ArtifactNotFound (404): No such artifact, or already expired
    """
    path = store.resolve(public_name)
    display_name = store.display_name_of(public_name)

    return FileResponse(
        path=path,
        media_type=store.media_type_of(public_name),
        headers={"Content-Disposition": content_disposition(display_name)},
    )
