"""ffmpeg invocation with the fixed narrowband output profile.

The executable is located once at startup (locate_ffmpeg) and never changes
afterwards; every job runs the same command:

    ffmpeg -y -i <input> -ac 1 -ar 8000 -c:a libopencore_amrnb <input>.amr
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from ..errors import TranscodeError, TranscoderNotFound
from ..utils import remove_quietly

logger = logging.getLogger(__name__)


def locate_ffmpeg(configured: Optional[str] = None) -> str:
    """Find the ffmpeg executable.

    Order: the configured path (or command name), ./ffmpeg in the working
    directory, then ffmpeg on PATH.

    Raises:
        TranscoderNotFound: If none of them exists
    """
    if configured:
        found = shutil.which(configured)
        if found:
            logger.info("Using configured ffmpeg: %s", found)
            return found
        raise TranscoderNotFound(f"Configured ffmpeg not found or not executable: {configured}")

    local = Path.cwd() / "ffmpeg"
    if local.is_file() and os.access(local, os.X_OK):
        logger.info("Using local ffmpeg: %s", local)
        return str(local)

    system = shutil.which("ffmpeg")
    if system:
        logger.info("Using system ffmpeg: %s", system)
        return system

    raise TranscoderNotFound(
        "ffmpeg not found. Put an ffmpeg executable in the working directory "
        "or install it on PATH."
    )


class ExternalTranscoder:
    """Runs ffmpeg to turn one input file into one AMR-NB file."""

    def __init__(
        self,
        executable: str,
        channels: int = 1,
        sample_rate: int = 8000,
        codec: str = "libopencore_amrnb",
        extension: str = ".amr",
    ) -> None:
        self.executable = executable
        self.channels = channels
        self.sample_rate = sample_rate
        self.codec = codec
        self.extension = extension

    def output_path_for(self, input_path: Path) -> Path:
        return Path(f"{input_path}{self.extension}")

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.executable,
            "-y",
            "-i", str(input_path),
            "-ac", str(self.channels),
            "-ar", str(self.sample_rate),
            "-c:a", self.codec,
            str(output_path),
        ]

    async def transcode(self, input_path: Path) -> Path:
        """Transcode *input_path*; return the path of the produced file.

        The output sits next to the input and belongs to the caller, who
        removes it once it has been published.

        Raises:
            TranscodeError: On spawn failure or non-zero exit, with ffmpeg's
                combined stdout/stderr attached
        """
        output_path = self.output_path_for(input_path)
        cmd = self.build_command(input_path, output_path)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise TranscodeError(str(exc)) from exc

        try:
            stdout_b, _ = await proc.communicate()
        except asyncio.CancelledError:
            # The request went away; don't leave ffmpeg running.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            remove_quietly(output_path)
            raise

        if proc.returncode != 0:
            remove_quietly(output_path)
            output = stdout_b.decode(errors="replace").strip()
            raise TranscodeError(f"exit status {proc.returncode}", output)

        return output_path
