"""
Cryptographic utilities for SecureVault.
Handles key derivation, vault blob encryption and account password hashing.
"""
import json
import secrets
import struct
import logging
from typing import Tuple, Optional, Dict, Any

import argon2
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.exceptions import InvalidTag

from errors import CorruptStoreError

# Configure logging
logger = logging.getLogger(__name__)

BLOB_MAGIC = b'SV1'
NONCE_SIZE = 12
SALT_SIZE = 16
KEY_SIZE = 32
_HEADER_LEN = struct.Struct('>H')
MIN_SALT_SIZE = 8
MIN_PBKDF2_ITERATIONS = 1000


def _bounded(params: Dict[str, Any], name: str, floor: int, ceiling: int) -> int:
    """Read an integer KDF cost from a stored header, rejecting values outside [floor, ceiling]."""
    value = params[name]
    if isinstance(value, bool) or not isinstance(value, int):
        raise CorruptStoreError(f"Key derivation parameter {name} is not an integer")
    if not floor <= value <= ceiling:
        raise CorruptStoreError(
            f"Key derivation parameter {name}={value} is outside the accepted range {floor}..{ceiling}"
        )
    return value


class CryptoUtils:
    """Cryptographic utilities for secure password management."""

    def __init__(self, server_pepper: str, kdf_algorithm: str = 'argon2id',
                 time_cost: int = 2, memory_cost: int = 102400,
                 parallelism: int = 8, pbkdf2_iterations: int = 200000):
        """
        Initialize crypto utilities with server pepper.

        Args:
            server_pepper: Server-wide secret pepper for additional security
            kdf_algorithm: 'argon2id' (preferred) or 'pbkdf2_sha256' for new vaults
            time_cost: Argon2 iterations
            memory_cost: Argon2 memory usage in KiB
            parallelism: Argon2 lanes
            pbkdf2_iterations: PBKDF2 iterations
        """
        self.server_pepper = server_pepper.encode()
        self.kdf_algorithm = kdf_algorithm
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self.pbkdf2_iterations = pbkdf2_iterations
        self.argon2_hasher = argon2.PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16
        )

    @classmethod
    def from_settings(cls, settings) -> 'CryptoUtils':
        return cls(
            settings.server_pepper,
            kdf_algorithm=settings.kdf_algorithm,
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
            pbkdf2_iterations=settings.pbkdf2_iterations
        )

    def new_kdf_params(self) -> Dict[str, Any]:
        """Return key derivation parameters for a fresh vault, with a random salt."""
        salt = secrets.token_bytes(SALT_SIZE)
        if self.kdf_algorithm == 'argon2id':
            return {
                'algorithm': 'argon2id',
                'salt': salt.hex(),
                'time_cost': self.time_cost,
                'memory_cost': self.memory_cost,
                'parallelism': self.parallelism
            }
        return {
            'algorithm': 'pbkdf2_sha256',
            'salt': salt.hex(),
            'iterations': self.pbkdf2_iterations
        }

    def derive_key(self, master_password: str, params: Dict[str, Any]) -> bytes:
        """
        Derive encryption key from master password.

        Args:
            master_password: User's account password
            params: Key derivation parameters, as produced by new_kdf_params
                or read back from a stored vault header

        Returns:
            32-byte key for AES-256-GCM

        Raises:
            CorruptStoreError: If params name an unknown algorithm, are malformed,
                or ask for more work than this instance is configured for
        """
        # Combine master password with server pepper
        password_with_pepper = master_password.encode() + self.server_pepper

        try:
            salt = bytes.fromhex(params['salt'])
            algorithm = params['algorithm']
            if len(salt) < MIN_SALT_SIZE:
                raise CorruptStoreError("Key derivation salt is too short")
            if algorithm == 'argon2id':
                parallelism = _bounded(params, 'parallelism', 1, self.parallelism)
                return hash_secret_raw(
                    password_with_pepper,
                    salt,
                    time_cost=_bounded(params, 'time_cost', 1, self.time_cost),
                    memory_cost=_bounded(params, 'memory_cost', 8 * parallelism, self.memory_cost),
                    parallelism=parallelism,
                    hash_len=KEY_SIZE,
                    type=Type.ID
                )
            if algorithm == 'pbkdf2_sha256':
                kdf = PBKDF2HMAC(
                    algorithm=hashes.SHA256(),
                    length=KEY_SIZE,
                    salt=salt,
                    iterations=_bounded(params, 'iterations', MIN_PBKDF2_ITERATIONS, self.pbkdf2_iterations),
                )
                return kdf.derive(password_with_pepper)
        except (KeyError, TypeError, ValueError, argon2.exceptions.HashingError) as e:
            raise CorruptStoreError(f"Invalid key derivation parameters: {e}") from e

        raise CorruptStoreError(f"Unknown key derivation algorithm: {algorithm!r}")

    def encrypt_data(self, data: bytes, key: bytes,
                     associated_data: Optional[bytes] = None) -> Tuple[bytes, bytes]:
        """
        Encrypt data using AES-GCM.

        Args:
            data: Data to encrypt
            key: Encryption key (must be 32 bytes for AES-256)
            associated_data: Authenticated but unencrypted context

        Returns:
            Tuple of (nonce, ciphertext) where nonce is needed for decryption
        """
        nonce = secrets.token_bytes(NONCE_SIZE)
        aesgcm = AESGCM(key)
        ciphertext = aesgcm.encrypt(nonce, data, associated_data)
        return nonce, ciphertext

    def decrypt_data(self, ciphertext: bytes, nonce: bytes, key: bytes,
                     associated_data: Optional[bytes] = None) -> bytes:
        """
        Decrypt data using AES-GCM.

        Raises:
            InvalidTag: If authentication fails (wrong key or tampered data)
        """
        aesgcm = AESGCM(key)
        return aesgcm.decrypt(nonce, ciphertext, associated_data)

    def hash_password(self, password: str) -> str:
        """Hash an account password for the local identity provider."""
        return self.argon2_hasher.hash(password.encode() + self.server_pepper)

    def verify_password(self, password_hash: str, password: str) -> bool:
        """Check an account password against its stored Argon2 hash."""
        try:
            return self.argon2_hasher.verify(password_hash, password.encode() + self.server_pepper)
        except argon2.exceptions.VerifyMismatchError:
            return False


def pack_blob(header: Dict[str, Any], nonce: bytes, ciphertext: bytes) -> bytes:
    header_bytes = json.dumps(header, separators=(',', ':'), sort_keys=True).encode('utf-8')
    return BLOB_MAGIC + _HEADER_LEN.pack(len(header_bytes)) + header_bytes + nonce + ciphertext


def unpack_blob(blob: bytes) -> Tuple[Dict[str, Any], bytes, bytes, bytes]:
    """
    Split a stored vault blob into its parts.

    Returns:
        Tuple of (header, header_bytes, nonce, ciphertext)

    Raises:
        CorruptStoreError: If the blob is truncated or its header is unreadable
    """
    prefix = len(BLOB_MAGIC) + _HEADER_LEN.size
    if len(blob) < prefix or not blob.startswith(BLOB_MAGIC):
        raise CorruptStoreError("Vault blob has an unknown format")

    (header_len,) = _HEADER_LEN.unpack_from(blob, len(BLOB_MAGIC))
    header_end = prefix + header_len
    if len(blob) < header_end + NONCE_SIZE:
        raise CorruptStoreError("Vault blob is truncated")

    header_bytes = blob[prefix:header_end]
    try:
        header = json.loads(header_bytes.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptStoreError("Vault blob header is unreadable") from e
    if not isinstance(header, dict):
        raise CorruptStoreError("Vault blob header is unreadable")

    nonce = blob[header_end:header_end + NONCE_SIZE]
    ciphertext = blob[header_end + NONCE_SIZE:]
    return header, header_bytes, nonce, ciphertext


class VaultCipher:
    """
    Encrypts and decrypts one principal's vault blob.

    The key is derived once when the cipher is built; the password is not kept.
    The principal id and the blob header are bound as associated data, so a blob
    copied under another principal or with an edited header fails to decrypt.
    """

    def __init__(self, crypto: CryptoUtils, key: bytes, kdf_params: Dict[str, Any], principal_id: str):
        self._crypto = crypto
        self._key = key
        self._kdf_params = dict(kdf_params)
        self._principal_id = principal_id

    @classmethod
    def for_principal(cls, crypto: CryptoUtils, password: str, principal_id: str,
                      existing_blob: Optional[bytes] = None) -> 'VaultCipher':
        """
        Derive the vault key for a principal.

        An existing blob's KDF parameters are reused so its contents stay readable.
        Without usable parameters, fresh ones are generated; opening the old blob
        then fails with CorruptStoreError until the vault is reset.
        """
        if existing_blob:
            try:
                header, _, _, _ = unpack_blob(existing_blob)
                params = header.get('kdf')
                if isinstance(params, dict):
                    return cls(crypto, crypto.derive_key(password, params), params, principal_id)
            except CorruptStoreError as e:
                logger.warning("Stored vault header for principal %s is unusable: %s", principal_id, e)

        params = crypto.new_kdf_params()
        return cls(crypto, crypto.derive_key(password, params), params, principal_id)

    def _associated_data(self, header_bytes: bytes) -> bytes:
        return BLOB_MAGIC + header_bytes + self._principal_id.encode('utf-8')

    def seal(self, plaintext: bytes) -> bytes:
        header = {'kdf': self._kdf_params}
        header_bytes = json.dumps(header, separators=(',', ':'), sort_keys=True).encode('utf-8')
        nonce, ciphertext = self._crypto.encrypt_data(
            plaintext, self._key, self._associated_data(header_bytes)
        )
        return pack_blob(header, nonce, ciphertext)

    def open(self, blob: bytes) -> bytes:
        """
        Decrypt a stored vault blob.

        Raises:
            CorruptStoreError: On a malformed blob, a wrong key or tampering
        """
        header, header_bytes, nonce, ciphertext = unpack_blob(blob)
        if header.get('kdf') != self._kdf_params:
            raise CorruptStoreError("Vault blob was sealed under different key parameters")
        try:
            return self._crypto.decrypt_data(
                ciphertext, nonce, self._key, self._associated_data(header_bytes)
            )
        except InvalidTag as e:
            raise CorruptStoreError("Vault blob failed authentication") from e

    def close(self) -> None:
        self._key = b''
