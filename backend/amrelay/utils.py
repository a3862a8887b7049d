"""Small filesystem helpers shared by the conversion and artifact modules."""
from pathlib import Path


def remove_quietly(path: Path) -> None:
    """Delete *path*, ignoring a file that is already gone or cannot be removed.

    Cleanup of scratch and partial files is advisory; a failure here must not
    mask the outcome of the request.
    """
    try:
        Path(path).unlink()
    except OSError:
        pass
