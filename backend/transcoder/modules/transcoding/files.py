"""Local media file helpers."""

import logging
import os
import re
from pathlib import Path
from typing import BinaryIO, Union

from transcoder.modules.transcoding.errors import InvalidRequest, ResourceCleanupFailure

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
COPY_CHUNK_SIZE = 1024 * 1024


def safe_filename(name: str) -> str:
    """Reduce a client supplied name to a bare, filesystem-safe file name."""
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    base = _UNSAFE_CHARS.sub("_", base).lstrip(".")
    if not base:
        raise InvalidRequest("A file name is required")
    return base


def resolve_in(directory: Path, file_name: str) -> Path:
    """Path of ``file_name`` inside ``directory``, rejecting anything but a bare name.

    Raises:
        InvalidRequest: If the name contains path separators or is empty
    """
    if not file_name or file_name in (".", "..") or "/" in file_name or "\\" in file_name:
        raise InvalidRequest(f"Invalid file name: {file_name!r}")
    return directory / file_name


def save_stream(source: BinaryIO, destination: Path) -> int:
    """Copy a file object to ``destination``, returning the bytes written."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with open(destination, "wb") as f:
        while chunk := source.read(COPY_CHUNK_SIZE):
            f.write(chunk)
            written += len(chunk)
    return written


def cleanup_local_file(file_path: Union[str, Path]) -> bool:
    """Delete a local file, logging instead of raising on failure.

    Returns:
        True if a file was deleted
    """
    path = Path(file_path)
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        failure = ResourceCleanupFailure(f"Could not delete {path}: {e}")
        logger.warning(failure.message, extra={"path": str(path)})
        return False
