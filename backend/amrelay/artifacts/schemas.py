"""Pydantic schemas for published artifacts.

- ContentKind: primary (the AMR output) or companion (the retained original)
- Artifact: one file in the public downloads directory
"""
import time
from enum import Enum
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, Field


class ContentKind(str, Enum):
    """Role of an artifact within one conversion.

    - PRIMARY: the transcoded narrowband output, always present
    - COMPANION: the untranscoded source, published only for sources
      whose original file is worth keeping (NetEase song links)
    """
    PRIMARY = "primary"
    COMPANION = "companion"


class Artifact(BaseModel):
    """A file published into the downloads directory.

    public_name is the on-disk filename and the download URL segment;
    display_name is what the user sees (unsanitized, with extension).
    A companion shares created_at, and therefore the public-name prefix,
    with its primary.
    """
    public_name: str = Field(..., description="Timestamp-prefixed filename on disk")
    path: Path = Field(..., description="Absolute path inside the downloads directory")
    display_name: str = Field(..., description="Human-readable name with extension")
    kind: ContentKind = Field(..., description="Primary output or companion original")
    created_at: int = Field(default_factory=lambda: int(time.time()), description="Unix seconds")

    @property
    def download_path(self) -> str:
        return f"/download/{quote(self.public_name, safe='')}"
