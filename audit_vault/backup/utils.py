"""Utility functions for backup/restore operations."""

import hashlib
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import Iterable, Optional, Tuple
from datetime import datetime

import xxhash

from .._utils import logger

TEMP_PREFIX = "."
TEMP_SUFFIX = ".part"

_SLUG_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def compute_bytes_checksum(data: bytes) -> str:
    """SHA-256 checksum of an in-memory payload, 'sha256:' prefixed."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def generate_slug(name: str, date: datetime, salt: int = 0) -> str:
    """Derive the backup slug from its name and creation time.

    The same (name, date, salt) always gives the same slug; callers bump
    `salt` on the rare collision with an existing backup.
    """
    seed = f"{name}\x00{date.isoformat()}"
    if salt:
        seed = f"{seed}\x00{salt}"
    return xxhash.xxh64(seed.encode("utf-8")).hexdigest()


def default_backup_name(date: datetime) -> str:
    return f"Backup {date.isoformat()}"


def is_valid_slug(slug: str) -> bool:
    """Slugs are plain tokens: no separators, dots or control characters."""
    return bool(_SLUG_RE.match(slug or ""))


def is_temp_file(path: Path) -> bool:
    return path.name.startswith(TEMP_PREFIX) and path.name.endswith(TEMP_SUFFIX)


def temp_path_for(target: Path) -> Path:
    """Hidden sibling of `target` that catalog scans never list."""
    return target.parent / f"{TEMP_PREFIX}{target.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}"


def atomic_write(target: Path, chunks: Iterable[bytes]) -> int:
    """Write chunks to a temp file, fsync, then rename over `target`.

    Args:
        target: Final archive path
        chunks: Byte strings written in order

    Returns:
        Size of the written file in bytes
    """
    tmp_path = temp_path_for(target)
    try:
        with open(tmp_path, "wb") as f:
            for chunk in chunks:
                f.write(chunk)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    size = target.stat().st_size
    logger.debug(f"Wrote {target} ({size:,} bytes)")
    return size


def disk_usage(path: Path) -> Tuple[int, int, int]:
    """Available, free and total bytes of the volume holding `path`.

    `available` is what an unprivileged process may use; `free` also counts
    blocks reserved for root.
    """
    if hasattr(os, "statvfs"):
        st = os.statvfs(path)
        return (
            st.f_bavail * st.f_frsize,
            st.f_bfree * st.f_frsize,
            st.f_blocks * st.f_frsize,
        )
    usage = shutil.disk_usage(path)
    return usage.free, usage.free, usage.total


def cleanup_temp_files(directory: Path, keep: Optional[Iterable[Path]] = None) -> int:
    """Remove leftover temp files from interrupted writes. Returns the count removed."""
    keep = set(keep or ())
    removed = 0
    for path in directory.iterdir():
        if path.is_file() and is_temp_file(path) and path not in keep:
            path.unlink(missing_ok=True)
            removed += 1
    if removed:
        logger.info(f"Removed {removed} leftover temp file(s) from {directory}")
    return removed
