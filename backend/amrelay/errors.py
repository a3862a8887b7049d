"""Error taxonomy for the conversion relay.

Every failure the HTTP layer reports is a RelayError; the class decides the
status code and the message is sent to the client as plain text.

    InputError (400)      bad or oversized input, unreachable/non-200 upstream
    ArtifactNotFound (404)
    TranscodeError (500)  ffmpeg exited non-zero or could not be spawned
    StorageError (500)    scratch/artifact I/O failure, generic message only

Metadata lookup failures never surface; MetadataResolver absorbs them.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base class for errors rendered as plain-text HTTP responses."""

    status_code = 500


class InputError(RelayError):
    status_code = 400


class UploadTooLarge(InputError):
    def __init__(self, message: str = "File too big") -> None:
        super().__init__(message)


class InvalidForm(InputError):
    pass


class BadURL(InputError):
    def __init__(self, message: str = "Invalid URL") -> None:
        super().__init__(message)


class FetchFailed(InputError):
    pass


class UpstreamStatusError(InputError):
    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Download failed with status: {status}")


class InvalidArtifactName(InputError):
    def __init__(self, message: str = "Invalid filename") -> None:
        super().__init__(message)


class ArtifactNotFound(RelayError):
    status_code = 404

    def __init__(self, message: str = "File not found") -> None:
        super().__init__(message)


class TranscodeError(RelayError):
    """ffmpeg failed; carries the combined stdout/stderr for diagnosis."""

    def __init__(self, detail: str, output: str = "") -> None:
        self.detail = detail
        self.output = output
        super().__init__(f"{detail}\nOutput: {output}")


class TranscoderNotFound(RuntimeError):
    """No ffmpeg executable could be located at startup."""


class StorageError(RelayError):
    def __init__(self, message: str = "Server error") -> None:
        super().__init__(message)
