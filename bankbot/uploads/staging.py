"""Transient upload staging.

Every uploaded file is written to a private, request-scoped path under the
staging directory, processed exclusively by the request that received it, and
unlinked before that request returns.

  stage()          — write bytes to ``<directory>/<ULID><.ext>`` (owner-only perms)
  release()        — unlink; safe when already gone; never raises
  staged_upload()  — async context manager: stage on entry, release on every exit

Callers MUST go through ``staged_upload()``; the unconditional ``finally`` in it
is what guarantees exactly one release on success, rejection and exception alike.

File I/O goes through aiofiles so large uploads never block the event loop.
"""

from __future__ import annotations

import os
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from bankbot.constants import STAGING_CHUNK_BYTES
from bankbot.utils.logger import get_logger
from bankbot.utils.ulid import generate_ulid

logger = get_logger(__name__)

# Only a short alphanumeric extension of the client-supplied name reaches disk.
_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")

_STAGING_DIR_MODE = 0o700
_STAGED_FILE_MODE = 0o600


def _private_opener(path: str, flags: int) -> int:
    # The file is owner-only from the moment it exists.
    return os.open(path, flags, _STAGED_FILE_MODE)


@dataclass
class StagedFile:
    """A request-scoped transient copy of an uploaded file.

    Attributes:
        local_path:    Absolute path of the staged copy.
        original_name: File name as sent by the client (metadata only).
        declared_type: Content type as sent by the client (not validated).
        released:      Set once ``release()`` has run; the path must not be
                       used afterwards.
    """

    local_path: str
    original_name: str
    declared_type: str
    released: bool = False

    @property
    def extension(self) -> str:
        """Extension of the original name without the dot (``"pdf"``), or ``""``."""
        return _safe_extension(self.original_name).lstrip(".").lower()

    async def iter_bytes(self, chunk_size: int = STAGING_CHUNK_BYTES) -> AsyncIterator[bytes]:
        """Stream the staged file in chunks (used for streamed uploads)."""
        if self.released:
            raise RuntimeError(f"Staged file already released: {self.local_path}")
        async with aiofiles.open(self.local_path, "rb") as fh:
            while True:
                chunk = await fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def read_bytes(self) -> bytes:
        if self.released:
            raise RuntimeError(f"Staged file already released: {self.local_path}")
        async with aiofiles.open(self.local_path, "rb") as fh:
            return await fh.read()


def _safe_extension(original_name: str) -> str:
    ext = os.path.splitext(os.path.basename(original_name or ""))[1]
    return ext if _EXTENSION_RE.match(ext) else ""


async def stage(
    file_bytes: bytes,
    original_name: str,
    declared_type: str = "application/octet-stream",
    directory: str = "tmp-uploads",
) -> StagedFile:
    """Write an upload to a unique path under ``directory``.

    The content is not inspected. A partially written file is removed before
    the error propagates, so a failed ``stage()`` never leaves anything behind.

    Args:
        file_bytes:    Raw upload payload.
        original_name: Client-supplied file name.
        declared_type: Client-supplied content type.
        directory:     Staging directory (created with 0700 if missing).

    Returns:
        StagedFile pointing at the written copy.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    base = os.path.abspath(directory)
    await aiofiles.os.makedirs(base, mode=_STAGING_DIR_MODE, exist_ok=True)

    local_path = os.path.join(base, generate_ulid() + _safe_extension(original_name))
    created = False
    try:
        async with aiofiles.open(local_path, "xb", opener=_private_opener) as fh:
            created = True
            await fh.write(file_bytes)
    except BaseException:
        if created:
            try:
                await aiofiles.os.remove(local_path)
            except FileNotFoundError:
                pass
        raise

    logger.info(
        "upload_staged",
        path=local_path,
        original_name=original_name,
        declared_type=declared_type,
        size_bytes=len(file_bytes),
    )
    return StagedFile(
        local_path=local_path,
        original_name=original_name,
        declared_type=declared_type,
    )


async def release(staged: StagedFile) -> None:
    """Remove a staged file.

    Safe to call when the file is already gone (logged, not raised). Cleanup
    failures are logged only — they must never mask the request's outcome.
    """
    if staged.released:
        logger.warning("staged_file_already_released", path=staged.local_path)
        return

    staged.released = True
    try:
        await aiofiles.os.remove(staged.local_path)
    except FileNotFoundError:
        logger.warning("staged_file_missing_on_release", path=staged.local_path)
    except OSError as exc:
        logger.error(
            "staged_file_cleanup_failed",
            path=staged.local_path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
    else:
        logger.info("staged_file_released", path=staged.local_path)


@asynccontextmanager
async def staged_upload(
    file_bytes: bytes,
    original_name: str,
    declared_type: str = "application/octet-stream",
    directory: str = "tmp-uploads",
) -> AsyncIterator[StagedFile]:
    """Stage an upload for the duration of a ``async with`` block.

    Usage::

        async with staged_upload(data, "statement.pdf") as staged:
            outcome = await scan(staged, verdict_client)
        # staged.local_path no longer exists here, whatever happened inside

    Raises:
        OSError: Propagated from ``stage()``; nothing is left on disk.
    """
    staged = await stage(file_bytes, original_name, declared_type, directory)
    try:
        yield staged
    finally:
        await release(staged)
