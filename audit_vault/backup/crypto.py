"""Password based payload encryption (PBKDF2-HMAC-SHA256 + AES-256-GCM).

A 64 byte PBKDF2 output is split in two: the first half is the AES key, the
SHA-256 of the second half is the verification token stored in the plaintext
archive header. Checking the token tells a wrong password apart from a
corrupted payload before any decryption is attempted.
"""

import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import BadParameters, CorruptArchive, Unauthorized

KDF_ALGORITHM = "pbkdf2-sha256"
CIPHER = "aes-256-gcm"
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
MAX_ITERATIONS = 10_000_000
ASSOCIATED_DATA = b"audit-vault payload"

WRONG_PASSWORD = "Wrong password or corrupted file"
PASSWORD_REQUIRED = "Backup is protected, password is required"


@dataclass(frozen=True)
class EncryptionParams:
    """Everything needed to re-derive the key, kept in the plaintext header."""
    salt: bytes
    nonce: bytes
    iterations: int
    verifier: bytes
    kdf: str = KDF_ALGORITHM
    cipher: str = CIPHER

    def to_header(self) -> Dict[str, Any]:
        return {
            "kdf": self.kdf,
            "cipher": self.cipher,
            "iterations": self.iterations,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "verifier": base64.b64encode(self.verifier).decode("ascii"),
        }

    @classmethod
    def from_header(cls, data: Any) -> "EncryptionParams":
        if not isinstance(data, dict):
            raise BadParameters("Invalid backup file")
        try:
            params = cls(
                kdf=data["kdf"],
                cipher=data["cipher"],
                iterations=int(data["iterations"]),
                salt=base64.b64decode(data["salt"], validate=True),
                nonce=base64.b64decode(data["nonce"], validate=True),
                verifier=base64.b64decode(data["verifier"], validate=True),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise BadParameters("Invalid backup file") from e

        if params.kdf != KDF_ALGORITHM or params.cipher != CIPHER:
            raise BadParameters(f"Unsupported encryption scheme: {params.kdf}/{params.cipher}")
        if not 0 < params.iterations <= MAX_ITERATIONS:
            raise BadParameters("Invalid backup file")
        if len(params.salt) != SALT_SIZE or len(params.nonce) != NONCE_SIZE:
            raise BadParameters("Invalid backup file")
        return params


@dataclass(frozen=True)
class EncryptedPayload:
    params: EncryptionParams
    ciphertext: bytes


def derive_keys(password: str, salt: bytes, iterations: int) -> Tuple[bytes, bytes]:
    """Return (aes_key, verification_token) for a password."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE * 2,
        salt=salt,
        iterations=iterations,
    )
    material = kdf.derive(password.encode("utf-8"))
    return material[:KEY_SIZE], hashlib.sha256(material[KEY_SIZE:]).digest()


def encrypt(data: bytes, password: str, iterations: int) -> EncryptedPayload:
    """Encrypt a payload with a fresh random salt and nonce."""
    if not password:
        raise BadParameters("Password must not be empty")

    salt = secrets.token_bytes(SALT_SIZE)
    nonce = secrets.token_bytes(NONCE_SIZE)
    key, verifier = derive_keys(password, salt, iterations)

    ciphertext = AESGCM(key).encrypt(nonce, data, ASSOCIATED_DATA)
    params = EncryptionParams(salt=salt, nonce=nonce, iterations=iterations, verifier=verifier)
    return EncryptedPayload(params=params, ciphertext=ciphertext)


def verify_password(params: EncryptionParams, password: Optional[str]) -> bytes:
    """Check the password against the header token and return the AES key.

    Raises:
        Unauthorized: password missing or wrong
    """
    if not password:
        raise Unauthorized(PASSWORD_REQUIRED)

    key, verifier = derive_keys(password, params.salt, params.iterations)
    if not hmac.compare_digest(verifier, params.verifier):
        raise Unauthorized(WRONG_PASSWORD)
    return key


def decrypt(
    ciphertext: bytes,
    params: EncryptionParams,
    password: Optional[str] = None,
    key: Optional[bytes] = None,
) -> bytes:
    """Decrypt a payload with `password`, or with a `key` already returned by
    `verify_password`.

    Raises:
        Unauthorized: password missing or wrong
        CorruptArchive: password right but the payload fails authentication
    """
    if key is None:
        key = verify_password(params, password)
    try:
        return AESGCM(key).decrypt(params.nonce, ciphertext, ASSOCIATED_DATA)
    except InvalidTag as e:
        raise CorruptArchive("Backup payload is corrupted") from e
