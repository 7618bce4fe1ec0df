"""Chunked upload storage and reassembly."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import BinaryIO

from fastapi.concurrency import run_in_threadpool

from app.errors import ChunkMissing, InvalidChunkIndex, NoChunkProvided

logger = logging.getLogger("app.services.submission_pipeline")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_COPY_BUFFER_BYTES = 1024 * 1024


def clean_filename(file_name: str) -> str:
    """Drop any `;codec=...` annotation and directory components from a client name."""

    base = file_name.split(";", 1)[0].strip()
    base = base.replace("\\", "/").rsplit("/", 1)[-1]
    base = _UNSAFE_NAME_CHARS.sub("_", base)
    return base.lstrip(".") or "upload"


def _token(value: object) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", str(value))


class _AssemblyCancelled(Exception):
    pass


class ChunkStore:
    """Scratch-space store for chunked uploads keyed by learner (and upload id).

    Chunk files live at ``{scratch_dir}/{learner}_{index}`` (or
    ``{learner}_{upload_id}_{index}``) until `assemble` consumes them.
    """

    def __init__(self, scratch_dir: str | Path, uploads_dir: str | Path) -> None:
        self._scratch_dir = Path(scratch_dir)
        self._uploads_dir = Path(uploads_dir)

    @property
    def scratch_dir(self) -> Path:
        return self._scratch_dir

    @property
    def uploads_dir(self) -> Path:
        return self._uploads_dir

    def chunk_path(
        self,
        learner_id: object,
        chunk_index: int,
        upload_id: str | None = None,
    ) -> Path:
        if upload_id:
            name = f"{_token(learner_id)}_{_token(upload_id)}_{chunk_index}"
        else:
            name = f"{_token(learner_id)}_{chunk_index}"
        return self._scratch_dir / name

    async def receive_chunk(
        self,
        learner_id: object,
        chunk_index: int,
        data: bytes | None,
        upload_id: str | None = None,
    ) -> Path:
        """Persist one chunk, overwriting any earlier copy of the same index."""

        if chunk_index < 0:
            raise InvalidChunkIndex(chunk_index)
        if not data:
            raise NoChunkProvided()

        target = self.chunk_path(learner_id, chunk_index, upload_id)
        await run_in_threadpool(self._write_chunk, target, data)
        logger.debug(
            "Chunk stored learner=%s index=%s bytes=%s", learner_id, chunk_index, len(data)
        )
        return target

    def output_path(self, learner_id: object, target_filename: str) -> Path:
        """Timestamped destination for an assembled upload in the uploads directory."""

        stamp = int(time.time() * 1000)
        return self._uploads_dir / (
            f"{_token(learner_id)}_{stamp}_{clean_filename(target_filename)}"
        )

    async def assemble(
        self,
        learner_id: object,
        total_chunks: int,
        target_filename: str,
        upload_id: str | None = None,
        output: Path | None = None,
    ) -> Path:
        """Concatenate chunks 0..total_chunks-1 into one file in the uploads directory.

        Each chunk is deleted right after it has been appended. A missing chunk
        aborts the whole assembly: the partial output and the remaining chunks
        are removed and `ChunkMissing` is raised.

        The copy runs in a worker thread. On cancellation the thread is told to
        stop after the current chunk and is awaited, so the partial output and
        the unread chunks are gone by the time the cancellation propagates.
        """

        if total_chunks < 1:
            raise ChunkMissing(0)

        output = output or self.output_path(learner_id, target_filename)
        chunk_paths = [
            self.chunk_path(learner_id, index, upload_id) for index in range(total_chunks)
        ]
        cancelled = threading.Event()
        job = asyncio.ensure_future(
            run_in_threadpool(self._assemble_sync, chunk_paths, output, cancelled)
        )
        try:
            return await asyncio.shield(job)
        except asyncio.CancelledError:
            cancelled.set()
            await asyncio.gather(job, return_exceptions=True)
            output.unlink(missing_ok=True)
            logger.warning("Assembly cancelled output=%s", output.name)
            raise

    async def discard(
        self,
        learner_id: object,
        total_chunks: int,
        upload_id: str | None = None,
    ) -> None:
        """Best-effort removal of every chunk of an abandoned session."""

        chunk_paths = [
            self.chunk_path(learner_id, index, upload_id)
            for index in range(max(total_chunks, 0))
        ]
        await run_in_threadpool(self._remove_all, chunk_paths)

    def _write_chunk(self, target: Path, data: bytes) -> None:
        self._scratch_dir.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        partial.write_bytes(data)
        os.replace(partial, target)

    def _assemble_sync(
        self,
        chunk_paths: list[Path],
        output: Path,
        cancelled: threading.Event,
    ) -> Path:
        self._scratch_dir.mkdir(parents=True, exist_ok=True)
        self._uploads_dir.mkdir(parents=True, exist_ok=True)

        missing = [index for index, path in enumerate(chunk_paths) if not path.is_file()]
        if missing:
            self._remove_all(chunk_paths)
            logger.warning("Assembly aborted output=%s missing_chunks=%s", output.name, missing)
            raise ChunkMissing(missing[0], missing)

        index = 0
        try:
            with output.open("wb") as sink:
                for index, chunk_path in enumerate(chunk_paths):
                    if cancelled.is_set():
                        raise _AssemblyCancelled()
                    self._append_chunk(sink, chunk_path)
                    chunk_path.unlink()
        except FileNotFoundError as exc:
            # A chunk disappeared between the presence check and the read.
            output.unlink(missing_ok=True)
            self._remove_all(chunk_paths[index:])
            raise ChunkMissing(index) from exc
        except _AssemblyCancelled:
            output.unlink(missing_ok=True)
            self._remove_all(chunk_paths[index:])
            raise
        except BaseException:
            output.unlink(missing_ok=True)
            raise

        logger.info("Assembled %s chunks into %s", len(chunk_paths), output)
        return output

    @staticmethod
    def _append_chunk(sink: BinaryIO, chunk_path: Path) -> None:
        with chunk_path.open("rb") as source:
            while True:
                block = source.read(_COPY_BUFFER_BYTES)
                if not block:
                    break
                sink.write(block)

    @staticmethod
    def _remove_all(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to delete chunk %s: %s", path, exc)


__all__ = ["ChunkStore", "clean_filename"]
