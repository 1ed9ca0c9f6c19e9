"""Firebase modified-scrypt password hashes.

Firebase hashes are not re-derived during migration. They are stored with a
``$firebase-scrypt$`` marker so the AYB login path can verify them once and
re-hash the password with its native scheme.
"""

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..models.source import FirebaseHashConfig

FIREBASE_SCRYPT_PREFIX = "$firebase-scrypt$"
NO_PASSWORD_HASH = "$none$"


@dataclass
class FirebaseScryptHash:
    """Decoded components of a stored firebase-scrypt hash."""
    signer_key: bytes
    salt_separator: bytes
    salt: bytes
    rounds: int
    mem_cost: int
    password_hash: bytes


def encode_firebase_scrypt_hash(
    password_hash: str,
    salt: str,
    config: Optional[FirebaseHashConfig]
) -> str:
    """
    Encode a Firebase user's hash and the project parameters for storage.

    Format: $firebase-scrypt$<signerKey>$<saltSep>$<salt>$<rounds>$<memCost>$<passwordHash>
    with every binary part left in the export's base64 form.
    """
    if config is None or not password_hash:
        return NO_PASSWORD_HASH
    return (
        f"{FIREBASE_SCRYPT_PREFIX}{config.base64_signer_key}${config.base64_salt_separator}"
        f"${salt}${config.rounds}${config.mem_cost}${password_hash}"
    )


def parse_firebase_scrypt_hash(encoded: str) -> FirebaseScryptHash:
    """Parse a stored firebase-scrypt hash; raises ValueError when malformed."""
    if not encoded.startswith(FIREBASE_SCRYPT_PREFIX):
        raise ValueError("not a firebase-scrypt hash")

    parts = encoded[len(FIREBASE_SCRYPT_PREFIX):].split("$")
    if len(parts) != 6:
        raise ValueError(f"invalid firebase-scrypt hash: expected 6 parts, got {len(parts)}")

    def decode(label: str, value: str) -> bytes:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"decoding {label}: {e}") from e

    def number(label: str, value: str) -> int:
        try:
            return int(value)
        except ValueError as e:
            raise ValueError(f"parsing {label}: {e}") from e

    return FirebaseScryptHash(
        signer_key=decode("signer key", parts[0]),
        salt_separator=decode("salt separator", parts[1]),
        salt=decode("salt", parts[2]),
        rounds=number("rounds", parts[3]),
        mem_cost=number("memCost", parts[4]),
        password_hash=decode("password hash", parts[5]),
    )


def firebase_scrypt_digest(
    password: str,
    salt: bytes,
    signer_key: bytes,
    salt_separator: bytes,
    rounds: int,
    mem_cost: int
) -> bytes:
    """
    Compute Firebase's modified scrypt digest.

    1. key = scrypt(password, salt + separator, N=2^memCost, r=rounds, p=1, 32 bytes)
    2. AES-256-CTR encrypt the signer key with that key and a zero IV
    """
    n = 1 << mem_cost
    derived_key = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt + salt_separator,
        n=n,
        r=rounds,
        p=1,
        maxmem=max(64 * 1024 * 1024, 256 * rounds * n),
        dklen=32,
    )
    encryptor = Cipher(algorithms.AES(derived_key), modes.CTR(b"\x00" * 16)).encryptor()
    return encryptor.update(signer_key) + encryptor.finalize()


def verify_firebase_scrypt(password: str, encoded: str) -> bool:
    """Check a plaintext password against a stored firebase-scrypt hash."""
    parsed = parse_firebase_scrypt_hash(encoded)
    digest = firebase_scrypt_digest(
        password,
        parsed.salt,
        parsed.signer_key,
        parsed.salt_separator,
        parsed.rounds,
        parsed.mem_cost,
    )
    return hmac.compare_digest(digest, parsed.password_hash)


def is_foreign_hash(stored: str) -> bool:
    """True when the stored hash needs a progressive re-hash on next login."""
    return stored.startswith(FIREBASE_SCRYPT_PREFIX)
