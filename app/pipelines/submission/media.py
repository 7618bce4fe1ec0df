"""Media classification and audio extraction."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Final

from app.errors import TranscodeFailed, UnsupportedMediaType

from .types import MediaKind

logger = logging.getLogger("app.services.submission_pipeline")

VIDEO_EXTENSIONS: Final[frozenset[str]] = frozenset({".mp4", ".avi", ".mov", ".webm"})
AUDIO_EXTENSIONS: Final[frozenset[str]] = frozenset({".mp3", ".m4a", ".wav"})


def media_extension(filename: str) -> str:
    """Lower-cased extension of a client file name, ignoring `;codec=...` suffixes."""

    clean = filename.split(";", 1)[0].strip()
    return Path(clean).suffix.lower()


def classify(filename: str) -> MediaKind:
    """Map a file name to video/audio by extension."""

    extension = media_extension(filename)
    if extension in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if extension in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    raise UnsupportedMediaType(filename)


class MediaTranscoder:
    """Thin ffmpeg wrapper producing an audio-only track for transcription."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        audio_codec: str = "libmp3lame",
        audio_extension: str = "mp3",
    ) -> None:
        self._ffmpeg_binary = ffmpeg_binary
        self._audio_codec = audio_codec
        self._audio_extension = audio_extension.lstrip(".")

    def classify(self, filename: str) -> MediaKind:
        return classify(filename)

    def audio_path_for(self, video_path: Path) -> Path:
        return video_path.with_name(f"{video_path.stem}-audio.{self._audio_extension}")

    async def extract_audio(self, video_path: Path) -> Path:
        """Write `<stem>-audio.<ext>` next to the video and return its path.

        ffmpeg runs as an asyncio subprocess. If the caller is cancelled (for
        example by a stage timeout) the process is killed and its partial
        output removed before the cancellation propagates.
        """

        audio_path = self.audio_path_for(video_path)
        command = [
            self._ffmpeg_binary,
            "-y",
            "-i", str(video_path),
            "-vn",
            "-acodec", self._audio_codec,
            str(audio_path),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise TranscodeFailed(f"ffmpeg binary not found: {self._ffmpeg_binary}") from exc

        try:
            _, stderr = await process.communicate()
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            audio_path.unlink(missing_ok=True)
            logger.warning("ffmpeg interrupted; killed pid=%s for %s", process.pid, video_path.name)
            raise

        if process.returncode != 0:
            audio_path.unlink(missing_ok=True)
            error_msg = stderr.decode("utf-8", errors="replace") if stderr else "No stderr"
            logger.error("ffmpeg failed. stderr: %s", error_msg)
            raise TranscodeFailed(f"ffmpeg failed to extract audio: {error_msg.strip()}")

        logger.info("Extracted audio %s -> %s", video_path.name, audio_path.name)
        return audio_path


__all__ = [
    "AUDIO_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "MediaTranscoder",
    "classify",
    "media_extension",
]
