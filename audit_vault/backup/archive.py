"""Archive container format and the reader/validator.

Layout (all integers big endian)::

    preamble   b"AVBAK\\0" + format version (u16)
    block      tag (4 bytes) + body length (u64) + body
      HEAD     JSON header: manifest fields and, when encrypted, KDF/cipher params
      DATA     payload: DSET blocks back to back, or their AES-GCM ciphertext
      DSET     name length (u16) + utf-8 name + gzip'd JSON array of records

HEAD is always the first block so the manifest can be read without touching
the payload. Unknown block tags are skipped by length, which lets an older
reader open archives carrying blocks it does not know about.
"""

import gzip
import io
import json
import struct
import zlib
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError

from .._utils import logger
from . import crypto
from .errors import BadParameters, CorruptArchive, NotFound
from .models import BackupManifest
from .utils import atomic_write, compute_bytes_checksum

MAGIC = b"AVBAK\x00"
FORMAT_VERSION = 1

TAG_HEAD = b"HEAD"
TAG_DATA = b"DATA"
TAG_DSET = b"DSET"

MAX_HEADER_SIZE = 1024 * 1024

_PREAMBLE = struct.Struct(">6sH")
_BLOCK = struct.Struct(">4sQ")
_NAME_LEN = struct.Struct(">H")

INVALID_BACKUP = "Invalid backup file"

# Fields that describe the file on disk rather than its contents
_DISK_FIELDS = {"filename", "size"}

Record = Dict[str, Any]


def pack_block(tag: bytes, body: bytes) -> bytes:
    return _BLOCK.pack(tag, len(body)) + body


def encode_dataset(name: str, records: List[Record], compression_level: int = 6) -> bytes:
    """Serialize one dataset as a self-contained DSET block."""
    name_bytes = name.encode("utf-8")
    raw = json.dumps(records, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    body = _NAME_LEN.pack(len(name_bytes)) + name_bytes + gzip.compress(raw, compresslevel=compression_level, mtime=0)
    return pack_block(TAG_DSET, body)


def _decode_records(name: str, compressed: bytes) -> List[Record]:
    try:
        records = json.loads(gzip.decompress(compressed).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as e:
        raise CorruptArchive(f"Dataset {name} is corrupted") from e

    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise CorruptArchive(f"Dataset {name} is corrupted")
    return records


def build_header(manifest: BackupManifest, encryption: Optional[crypto.EncryptionParams]) -> bytes:
    header = {
        "manifest": manifest.model_dump(mode="json", exclude=_DISK_FIELDS),
        "encryption": encryption.to_header() if encryption else None,
    }
    return json.dumps(header, ensure_ascii=False).encode("utf-8")


def write_archive(
    path: Path,
    manifest: BackupManifest,
    payload: bytes,
    encryption: Optional[crypto.EncryptionParams] = None,
) -> int:
    """Atomically write a complete archive. Returns the file size."""
    header = build_header(manifest, encryption)
    return atomic_write(path, [
        _PREAMBLE.pack(MAGIC, FORMAT_VERSION),
        pack_block(TAG_HEAD, header),
        _BLOCK.pack(TAG_DATA, len(payload)),
        payload,
    ])


def _read_exact(fp: BinaryIO, size: int) -> bytes:
    data = fp.read(size)
    if len(data) != size:
        raise BadParameters(INVALID_BACKUP)
    return data


def _read_block_header(fp: BinaryIO) -> Optional[Tuple[bytes, int]]:
    raw = fp.read(_BLOCK.size)
    if not raw:
        return None
    if len(raw) != _BLOCK.size:
        raise BadParameters(INVALID_BACKUP)
    return _BLOCK.unpack(raw)


def _scan_datasets(
    fp: BinaryIO,
    start: int,
    end: int,
    wanted: Optional[Set[str]] = None,
) -> Iterator[Tuple[str, List[Record]]]:
    """Yield (name, records) for DSET blocks in [start, end), seeking past unwanted ones."""
    for name, compressed in _scan_dataset_blocks(fp, start, end, wanted):
        yield name, _decode_records(name, compressed)


def _scan_dataset_blocks(
    fp: BinaryIO,
    start: int,
    end: int,
    wanted: Optional[Set[str]] = None,
) -> Iterator[Tuple[str, bytes]]:
    """Yield (name, compressed records) without decoding them."""
    fp.seek(start)
    while fp.tell() < end:
        raw = fp.read(_BLOCK.size)
        if len(raw) != _BLOCK.size:
            raise CorruptArchive("Backup payload is truncated")
        tag, length = _BLOCK.unpack(raw)
        body_start = fp.tell()
        if body_start + length > end:
            raise CorruptArchive("Backup payload is truncated")

        if tag != TAG_DSET:
            fp.seek(body_start + length)
            continue

        name_len_raw = fp.read(_NAME_LEN.size)
        if len(name_len_raw) != _NAME_LEN.size:
            raise CorruptArchive("Backup payload is truncated")
        (name_len,) = _NAME_LEN.unpack(name_len_raw)
        if _NAME_LEN.size + name_len > length:
            raise CorruptArchive("Backup payload is corrupted")
        try:
            name = fp.read(name_len).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptArchive("Backup payload is corrupted") from e

        if wanted is None or name in wanted:
            compressed = fp.read(length - _NAME_LEN.size - name_len)
            yield name, compressed
        fp.seek(body_start + length)


class ArchiveReader:
    """Reads and validates one archive file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except FileNotFoundError as e:
            raise NotFound(f"Backup file not found: {self.path.name}") from e

    def _read_structure(self, fp: BinaryIO) -> Tuple[Dict[str, Any], int, int]:
        """Parse preamble and HEAD, locate DATA, check block sizes against the file size.

        Returns:
            (header dict, payload offset, payload length)
        """
        file_size = self.path.stat().st_size

        raw = fp.read(_PREAMBLE.size)
        if len(raw) != _PREAMBLE.size:
            raise BadParameters(INVALID_BACKUP)
        magic, version = _PREAMBLE.unpack(raw)
        if magic != MAGIC:
            raise BadParameters(INVALID_BACKUP)
        if version > FORMAT_VERSION:
            raise BadParameters(f"Unsupported backup format version: {version}")

        block = _read_block_header(fp)
        if block is None or block[0] != TAG_HEAD or block[1] > MAX_HEADER_SIZE:
            raise BadParameters(INVALID_BACKUP)
        try:
            header = json.loads(_read_exact(fp, block[1]).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise BadParameters(INVALID_BACKUP) from e
        if not isinstance(header, dict) or not isinstance(header.get("manifest"), dict):
            raise BadParameters(INVALID_BACKUP)

        data_offset = data_length = None
        while True:
            block = _read_block_header(fp)
            if block is None:
                break
            tag, length = block
            body_start = fp.tell()
            if body_start + length > file_size:
                raise BadParameters(f"{INVALID_BACKUP}: truncated")
            if tag == TAG_DATA and data_offset is None:
                data_offset, data_length = body_start, length
            fp.seek(body_start + length)

        if data_offset is None:
            raise BadParameters(INVALID_BACKUP)
        return header, data_offset, data_length

    def _manifest_from_header(self, header: Dict[str, Any], data_length: int) -> BackupManifest:
        try:
            manifest = BackupManifest(
                **header["manifest"],
                filename=self.path.name,
                size=self.path.stat().st_size,
            )
        except (ValidationError, TypeError) as e:
            raise BadParameters(INVALID_BACKUP) from e

        if manifest.format_version > FORMAT_VERSION:
            raise BadParameters(f"Unsupported backup format version: {manifest.format_version}")
        if manifest.payload_size != data_length:
            raise BadParameters(f"{INVALID_BACKUP}: declared size does not match file size")
        if manifest.encrypted != (header.get("encryption") is not None):
            raise BadParameters(INVALID_BACKUP)
        return manifest

    def read_manifest(self) -> BackupManifest:
        """Read the manifest without materializing any dataset.

        Raises:
            NotFound: the file does not exist
            BadParameters: not a recognized archive
        """
        with self._open() as fp:
            header, _, data_length = self._read_structure(fp)
        return self._manifest_from_header(header, data_length)

    def _encryption_params(self, header: Dict[str, Any]) -> crypto.EncryptionParams:
        return crypto.EncryptionParams.from_header(header.get("encryption"))

    def _load_payload(self, fp: BinaryIO, offset: int, length: int, manifest: BackupManifest) -> bytes:
        fp.seek(offset)
        payload = fp.read(length)
        if len(payload) != length:
            raise CorruptArchive("Backup payload is truncated")
        if manifest.checksum and compute_bytes_checksum(payload) != manifest.checksum:
            raise CorruptArchive("Backup checksum mismatch")
        return payload

    def unlock(self, password: Optional[str]) -> Tuple[BackupManifest, Optional[bytes]]:
        """Verify the password against the header token without decrypting.

        Returns:
            (manifest, AES key) where the key is None for unencrypted archives;
            pass it to `load_datasets` to skip a second key derivation

        Raises:
            Unauthorized: password missing or wrong
        """
        with self._open() as fp:
            header, _, data_length = self._read_structure(fp)
        manifest = self._manifest_from_header(header, data_length)
        key = None
        if manifest.encrypted:
            key = crypto.verify_password(self._encryption_params(header), password)
        return manifest, key

    def validate(self, password: Optional[str] = None) -> BackupManifest:
        """Full integrity check: structure, version, size, checksum and, when
        encrypted, password and payload authentication.

        Unencrypted archives are also decoded dataset by dataset.
        """
        for _ in self.iter_datasets(password):
            pass
        return self.read_manifest()

    def iter_datasets(
        self,
        password: Optional[str] = None,
        names: Optional[Iterable[str]] = None,
    ) -> Iterator[Tuple[str, List[Record]]]:
        """Yield (dataset id, records) in archive order, optionally restricted to `names`."""
        wanted = set(names) if names is not None else None

        with self._open() as fp:
            source, start, end = self._open_payload(fp, password)
            yield from _scan_datasets(source, start, end, wanted)

    def _open_payload(
        self,
        fp: BinaryIO,
        password: Optional[str],
        key: Optional[bytes] = None,
    ) -> Tuple[BinaryIO, int, int]:
        """Check password and checksum, then return a stream over the plaintext DSET blocks."""
        header, offset, length = self._read_structure(fp)
        manifest = self._manifest_from_header(header, length)

        if manifest.encrypted:
            params = self._encryption_params(header)
            if key is None:
                key = crypto.verify_password(params, password)
            ciphertext = self._load_payload(fp, offset, length, manifest)
            plaintext = crypto.decrypt(ciphertext, params, key=key)
            return io.BytesIO(plaintext), 0, len(plaintext)

        self._load_payload(fp, offset, length, manifest)
        return fp, offset, offset + length

    def verify_integrity(self) -> BackupManifest:
        """Structure, size and payload checksum; needs no password."""
        with self._open() as fp:
            header, offset, length = self._read_structure(fp)
            manifest = self._manifest_from_header(header, length)
            self._load_payload(fp, offset, length, manifest)
        return manifest

    def load_datasets(
        self,
        names: Iterable[str],
        password: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> Tuple[Dict[str, List[Record]], Dict[str, str]]:
        """Load several datasets, isolating per-dataset decode failures.

        Archive-wide problems (password, checksum, structure) raise. A dataset
        that fails to decode, or is listed but missing, is returned in the
        error map instead so the others can still be restored. A `key` from
        `unlock` is used instead of deriving it from `password` again.

        Returns:
            (records by dataset id, error message by dataset id)
        """
        wanted = set(names)
        loaded: Dict[str, List[Record]] = {}
        errors: Dict[str, str] = {}

        with self._open() as fp:
            source, start, end = self._open_payload(fp, password, key)
            for name, compressed in _scan_dataset_blocks(source, start, end, wanted):
                try:
                    loaded[name] = _decode_records(name, compressed)
                except CorruptArchive as e:
                    logger.error(f"Failed to decode dataset {name} from {self.path.name}: {e}")
                    errors[name] = e.message

        for name in wanted:
            if name not in loaded and name not in errors:
                errors[name] = f"Dataset {name} is missing from the backup payload"
        return loaded, errors

    def read_dataset(self, dataset_id: str, password: Optional[str] = None) -> List[Record]:
        """Materialize one dataset.

        Raises:
            Unauthorized: password required but missing or wrong
            NotFound: dataset not part of this archive
            CorruptArchive: payload fails integrity checks
        """
        with self._open() as fp:
            header, offset, length = self._read_structure(fp)
            manifest = self._manifest_from_header(header, length)
            if dataset_id not in manifest.dataset:
                raise NotFound(f"Dataset not found in backup: {dataset_id}")

            if manifest.encrypted:
                params = self._encryption_params(header)
                key = crypto.verify_password(params, password)
                ciphertext = self._load_payload(fp, offset, length, manifest)
                plaintext = crypto.decrypt(ciphertext, params, key=key)
                source, start, end = io.BytesIO(plaintext), 0, len(plaintext)
            else:
                # Per-dataset gzip CRCs cover integrity; skip the whole-payload hash
                source, start, end = fp, offset, offset + length

            for _, records in _scan_datasets(source, start, end, {dataset_id}):
                return records

        logger.warning(f"Manifest of {self.path.name} lists {dataset_id} but no block was found")
        raise CorruptArchive(f"Dataset {dataset_id} is missing from the backup payload")


def unknown_datasets(manifest: BackupManifest, known: Iterable[str]) -> List[str]:
    """Dataset ids in the archive that the running system does not register."""
    known = set(known)
    return [name for name in manifest.dataset if name not in known]
