"""Artifact store: publication, lookup and naming of downloadable files.

Files are stored in: downloads/{unix_seconds}_{sanitized_display_name}
"""
import asyncio
import logging
import re
import shutil
import time
from pathlib import Path
from typing import Optional

from ..errors import ArtifactNotFound, InvalidArtifactName, StorageError
from ..utils import remove_quietly
from .schemas import Artifact, ContentKind

logger = logging.getLogger(__name__)

# Characters that are illegal in filenames on at least one common platform.
INVALID_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
DOT_RUN = re.compile(r"\.{2,}")

MP3_MEDIA_TYPE = "audio/mpeg"
AMR_MEDIA_TYPE = "audio/amr"


def sanitize_filename(name: str) -> str:
    """Replace illegal filename characters with ``_`` and collapse dot runs.

    Total and idempotent: the result never contains a path separator or
    ``..``, and sanitizing it again changes nothing.
    """
    cleaned = INVALID_FILENAME_CHARS.sub("_", name)
    return DOT_RUN.sub(".", cleaned)


def _strip_suffix(name: str, suffix: str) -> str:
    if name.lower().endswith(suffix.lower()):
        return name[: -len(suffix)]
    return name


class ArtifactStore:
    """Publishes files into the public downloads directory and resolves them back."""

    def __init__(
        self,
        root: Path,
        primary_extension: str = ".amr",
        companion_extension: str = ".mp3",
        max_name_length: int = 50,
        default_name: str = "arcpi",
    ):
        self._root = Path(root)
        self._primary_extension = primary_extension
        self._companion_extension = companion_extension
        self._max_name_length = max_name_length
        self._default_name = default_name
        self._ensure_root()

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_root(self) -> None:
        """Ensure the downloads directory exists."""
        self._root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def normalize_display_name(self, display_name: str, kind: ContentKind) -> str:
        """Force the extension that matches *kind* onto *display_name*.

        A primary name gets the transcoded extension appended when missing;
        a companion name has that extension swapped for its own.
        """
        if kind == ContentKind.PRIMARY:
            if display_name.lower().endswith(self._primary_extension.lower()):
                return display_name
            return display_name + self._primary_extension

        stem = _strip_suffix(display_name, self._primary_extension)
        if stem.lower().endswith(self._companion_extension.lower()):
            return stem
        return stem + self._companion_extension

    def _safe_stem(self, display_name: str, extension: str) -> str:
        stem = sanitize_filename(_strip_suffix(display_name, extension)).strip()
        stem = stem[: self._max_name_length - len(extension)].rstrip(". ")
        return stem or self._default_name

    @staticmethod
    def display_name_of(public_name: str) -> str:
        """Strip the ``{timestamp}_`` prefix added at publish time.

        Only the first underscore separates the prefix; display names may
        contain underscores of their own.
        """
        parts = public_name.split("_", 1)
        if len(parts) == 2:
            return parts[1]
        return public_name

    @staticmethod
    def media_type_of(public_name: str) -> str:
        if public_name.lower().endswith(".mp3"):
            return MP3_MEDIA_TYPE
        return AMR_MEDIA_TYPE

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    async def publish(
        self,
        source: Path,
        display_name: str,
        kind: ContentKind = ContentKind.PRIMARY,
        timestamp: Optional[int] = None,
    ) -> Artifact:
        """Copy *source* into the store under a timestamp-prefixed public name.

        Args:
            source: File to copy; it is left in place for the caller to remove
            display_name: Name shown to the user, extension optional
            kind: Primary output or companion original
            timestamp: Unix seconds for the prefix; companions pass their
                primary's created_at so both share a prefix

        Returns:
            The published Artifact

        Raises:
            StorageError: If the copy fails; no partial file is left behind
        """
        display = self.normalize_display_name(display_name, kind)
        extension = (
            self._primary_extension if kind == ContentKind.PRIMARY else self._companion_extension
        )
        stem = self._safe_stem(display, extension)
        created_at = int(time.time()) if timestamp is None else timestamp

        try:
            path = await asyncio.to_thread(self._copy_exclusive, Path(source), created_at, stem, extension)
        except OSError as exc:
            logger.error("Failed to publish %s (%s): %s", display, kind.value, exc)
            raise StorageError("Save file error") from exc

        logger.info("Published %s artifact: %s", kind.value, path.name)
        return Artifact(
            public_name=path.name,
            path=path,
            display_name=display,
            kind=kind,
            created_at=created_at,
        )

    def _copy_exclusive(self, source: Path, created_at: int, stem: str, extension: str) -> Path:
        """Create a new file for the copy; never overwrite an existing artifact.

        Two publications of the same display name within one second would
        otherwise map to the same public name, so later ones get a -N suffix.
        The stem gives up room for the suffix to stay within the name limit.
        """
        self._ensure_root()
        counter = 0
        while True:
            suffix = f"-{counter}" if counter else ""
            room = self._max_name_length - len(extension) - len(suffix)
            base = stem[:room].rstrip(". ") or stem[:1]
            path = self._root / f"{created_at}_{base}{suffix}{extension}"
            try:
                target = path.open("xb")
            except FileExistsError:
                counter += 1
                continue
            try:
                with target, source.open("rb") as src:
                    shutil.copyfileobj(src, target)
            except OSError:
                remove_quietly(path)
                raise
            return path.resolve()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, public_name: str) -> Path:
        """Map a public name back to its file on disk.

        Raises:
            InvalidArtifactName: For names containing ``..``, ``/`` or ``\\``;
                checked before the filesystem is touched
            ArtifactNotFound: If no such artifact exists (or it was swept)
        """
        if not public_name or ".." in public_name or "/" in public_name or "\\" in public_name:
            raise InvalidArtifactName()

        path = self._root / public_name
        if not path.is_file():
            raise ArtifactNotFound()
        return path
