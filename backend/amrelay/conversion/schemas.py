"""Data models for a single conversion request.

- StagedInput: request-scoped copy of the source in the scratch directory
- ConversionJob: what the pipeline needs to transcode and publish
- ConversionResult: the published artifacts
- ConversionResponse: JSON body returned by /upload and /convert-url
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..artifacts.schemas import Artifact


@dataclass(frozen=True)
class StagedInput:
    """A transient local copy of the source media, owned by one request."""
    path: Path


@dataclass(frozen=True)
class ConversionJob:
    staged_path: Path
    base_name: str
    retain_original: bool = False


@dataclass(frozen=True)
class ConversionResult:
    primary: Artifact
    companion: Optional[Artifact] = None

    def to_response(self) -> "ConversionResponse":
        companion = self.companion
        return ConversionResponse(
            url=self.primary.download_path,
            name=self.primary.display_name,
            mp3_url=companion.download_path if companion else None,
            mp3_name=companion.display_name if companion else None,
        )


class ConversionResponse(BaseModel):
    """Response after a successful conversion.

    mp3Url/mp3Name are present only when the original source was published
    next to the AMR output.
    """
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field("success", description="Always 'success' for a 200 response")
    url: str = Field(..., description="Download URL of the AMR artifact")
    name: str = Field(..., description="Display name of the AMR artifact")
    mp3_url: Optional[str] = Field(None, alias="mp3Url", description="Download URL of the original")
    mp3_name: Optional[str] = Field(None, alias="mp3Name", description="Display name of the original")
