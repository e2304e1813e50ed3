"""Backup directory catalog: listing, slug lookup, uploads, deletion and disk usage."""

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple

from .._utils import logger
from .archive import ArchiveReader, write_archive
from .crypto import EncryptionParams
from .errors import BackupError, BadParameters, Conflict, NotFound
from .lock import OperationLock
from .models import BackupManifest, DiskUsage
from .utils import (
    cleanup_temp_files,
    disk_usage,
    generate_slug,
    is_valid_slug,
    temp_path_for,
)

COPY_CHUNK_SIZE = 1024 * 1024


class BackupCatalog:
    """View over the archives in the backup directory.

    The directory is the source of truth; manifests are cached per file and
    re-read whenever the file's mtime or size changes.
    """

    def __init__(
        self,
        backup_dir: Path,
        extension: str = ".avbak",
        lock: Optional[OperationLock] = None,
        max_upload_bytes: int = 500 * 1024 * 1024,
    ):
        self.backup_dir = Path(backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.extension = extension
        self.lock = lock
        self.max_upload_bytes = max_upload_bytes
        self._cache: Dict[str, Tuple[Tuple[int, int], BackupManifest]] = {}
        self._cache_lock = threading.Lock()
        # Serializes name and slug checks with the rename that claims them
        self._write_lock = threading.Lock()

    # Lookup

    def _archive_paths(self) -> List[Path]:
        return sorted(
            path for path in self.backup_dir.glob(f"*{self.extension}")
            if path.is_file() and not path.name.startswith(".")
        )

    def _manifest_for(self, path: Path) -> BackupManifest:
        stat = path.stat()
        key = (stat.st_mtime_ns, stat.st_size)

        with self._cache_lock:
            cached = self._cache.get(path.name)
        if cached and cached[0] == key:
            return cached[1].model_copy()

        manifest = ArchiveReader(path).read_manifest()
        with self._cache_lock:
            self._cache[path.name] = (key, manifest)
        return manifest.model_copy()

    def get_list(self) -> List[BackupManifest]:
        """Manifests of every readable archive, newest first."""
        backups = []
        seen = set()

        for path in self._archive_paths():
            try:
                backups.append(self._manifest_for(path))
                seen.add(path.name)
            except (BackupError, OSError) as e:
                logger.warning(f"Failed to read backup {path.name}: {e}")

        with self._cache_lock:
            for name in list(self._cache):
                if name not in seen:
                    del self._cache[name]

        backups.sort(key=lambda b: b.date, reverse=True)
        return backups

    def get_manifest(self, slug: str) -> BackupManifest:
        """Resolve a slug to its manifest.

        Raises:
            BadParameters: slug is not a plain token (checked before any disk access)
            NotFound: no archive carries this slug
        """
        if not is_valid_slug(slug):
            raise BadParameters("Invalid backup slug")

        # Archives built here are named after their slug
        direct = self.backup_dir / f"{slug}{self.extension}"
        if direct.is_file():
            try:
                manifest = self._manifest_for(direct)
                if manifest.slug == slug:
                    return manifest
            except (BackupError, OSError) as e:
                logger.warning(f"Failed to read backup {direct.name}: {e}")

        for manifest in self.get_list():
            if manifest.slug == slug:
                return manifest

        raise NotFound("Backup not found")

    def get_filename_by_slug(self, slug: str) -> str:
        return self.get_manifest(slug).filename

    def slug_exists(self, slug: str) -> bool:
        try:
            self.get_manifest(slug)
        except NotFound:
            return False
        return True

    def new_slug(self, name: str, date: datetime) -> str:
        salt = 0
        slug = generate_slug(name, date)
        while (self.backup_dir / f"{slug}{self.extension}").exists() or self.slug_exists(slug):
            salt += 1
            slug = generate_slug(name, date, salt)
        return slug

    def resolve(self, filename: str) -> Path:
        """Path of `filename` inside the backup directory.

        Raises:
            BadParameters: the name carries directory parts or escapes the root
        """
        if not filename or filename in (".", "..") or Path(filename).name != filename or "\x00" in filename:
            raise BadParameters("Invalid backup filename")

        root = self.backup_dir.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            raise BadParameters("Invalid backup filename")
        return path

    # Mutations

    def delete(self, slug: str) -> BackupManifest:
        """Remove an archive.

        Raises:
            NotFound: unknown slug
            Conflict: the running operation is reading this archive
        """
        manifest = self.get_manifest(slug)
        path = self.resolve(manifest.filename)

        if self.lock is not None:
            with self.lock.guard_file(manifest.filename):
                self._unlink(path)
        else:
            self._unlink(path)

        with self._cache_lock:
            self._cache.pop(manifest.filename, None)

        logger.info(f"Deleted backup: {slug} ({manifest.filename})")
        return manifest

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFound("Backup file not found") from e

    def _check_free_target(self, path: Path, slug: str) -> None:
        if path.exists():
            raise Conflict(f"A backup file named {path.name} already exists")
        if self.slug_exists(slug):
            raise Conflict(f"Backup {slug} already exists")

    def add_archive(
        self,
        filename: str,
        manifest: BackupManifest,
        payload: bytes,
        encryption: Optional[EncryptionParams] = None,
    ) -> int:
        """Write a newly built archive. Returns the file size.

        Raises:
            Conflict: the file name or slug was taken in the meantime
        """
        path = self.resolve(filename)
        with self._write_lock:
            self._check_free_target(path, manifest.slug)
            return write_archive(path, manifest, payload, encryption)

    def store_upload(self, filename: str, source: BinaryIO) -> BackupManifest:
        """Store an uploaded archive after validating it.

        The upload is written to a hidden temp file and only renamed into
        place once it reads back as a valid archive with an unused slug, so
        an invalid upload never shows up in listings and leaves no file behind.
        """
        filename = Path(filename or "").name
        if not filename.endswith(self.extension) or filename == self.extension:
            raise BadParameters(f"File must be a {self.extension} archive")
        if filename.startswith("."):
            raise BadParameters("Backup file name must not start with a dot")

        target = self.resolve(filename)
        if target.exists():
            raise Conflict(f"A backup file named {filename} already exists")

        tmp_path = temp_path_for(target)
        try:
            written = self._copy_limited(source, tmp_path)
            logger.info(f"Received backup upload {filename} ({written:,} bytes)")

            try:
                manifest = ArchiveReader(tmp_path).verify_integrity()
            except BackupError as e:
                logger.warning(f"Rejected upload {filename}: {e}")
                raise BadParameters("Invalid backup file") from e

            if not is_valid_slug(manifest.slug):
                logger.warning(f"Rejected upload {filename}: unusable slug")
                raise BadParameters("Invalid backup file")

            with self._write_lock:
                self._check_free_target(target, manifest.slug)
                os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)

        return self._manifest_for(target)

    def _copy_limited(self, source: BinaryIO, destination: Path) -> int:
        available, _, _ = disk_usage(self.backup_dir)
        written = 0
        with open(destination, "wb") as out:
            for chunk in iter(lambda: source.read(COPY_CHUNK_SIZE), b""):
                written += len(chunk)
                if written > self.max_upload_bytes:
                    raise BadParameters(f"Backup file exceeds the {self.max_upload_bytes:,} byte upload limit")
                if written > available:
                    raise BadParameters("Not enough free disk space for the upload")
                out.write(chunk)
        return written

    # Disk

    def disk_usage(self) -> DiskUsage:
        available, free, total = disk_usage(self.backup_dir)
        return DiskUsage(available=available, free=free, total=total)

    def cleanup_temp_files(self) -> int:
        return cleanup_temp_files(self.backup_dir)
