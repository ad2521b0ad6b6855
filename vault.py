"""
Vault store for SecureVault.
Owns one principal's credential records and writes them through to storage,
encrypted, after every change.
"""
import json
import logging
import threading
from typing import List, Optional, Tuple

from crypto_utils import VaultCipher
from errors import CorruptStoreError, NotFoundError, StorageIOError, ValidationError, VaultClosedError
from models import CredentialRecord, Principal
from storage import Storage
from utils import validate_record_fields

# Configure logging
logger = logging.getLogger(__name__)

VAULT_FORMAT_VERSION = 1


def serialize_records(records: List[CredentialRecord]) -> bytes:
    payload = {
        'version': VAULT_FORMAT_VERSION,
        'records': [record.to_dict() for record in records]
    }
    return json.dumps(payload, separators=(',', ':')).encode('utf-8')


def deserialize_records(data: bytes) -> List[CredentialRecord]:
    """
    Parse decrypted vault bytes.

    Raises:
        CorruptStoreError: If the payload is not a readable vault
    """
    try:
        payload = json.loads(data.decode('utf-8'))
        if payload.get('version') != VAULT_FORMAT_VERSION:
            raise CorruptStoreError(f"Unsupported vault format version: {payload.get('version')!r}")
        records = [CredentialRecord.from_dict(item) for item in payload['records']]
    except CorruptStoreError:
        raise
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise CorruptStoreError(f"Decrypted vault is unreadable: {e}") from e

    if len({record.id for record in records}) != len(records):
        raise CorruptStoreError("Decrypted vault contains duplicate record ids")
    return records


class VaultStore:
    """
    A principal's credential vault.

    Storage is the source of truth and the record list kept here is a cache.
    A failed write drops the cache so the next operation reloads from storage.
    A blob that cannot be decrypted or parsed leaves the store unusable until
    load() succeeds again or reset(confirm=True) is called.
    """

    def __init__(self, principal: Principal, storage: Storage, cipher: VaultCipher):
        """
        Args:
            principal: Authenticated owner of the vault
            storage: Durable blob storage
            cipher: Cipher holding the key derived for this principal
        """
        self.principal = principal
        self.storage = storage
        self._cipher = cipher
        self._records: Optional[List[CredentialRecord]] = None
        self._corrupt = False
        self._closed = False
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self):
        if self._closed:
            raise VaultClosedError("This vault was closed when its session ended")

    def _current(self) -> List[CredentialRecord]:
        if self._corrupt:
            raise CorruptStoreError("Stored vault is unreadable; reset it to continue")
        if self._records is None:
            self.load()
        return self._records

    def _find(self, record_id: str) -> int:
        for index, record in enumerate(self._current()):
            if record.id == record_id:
                return index
        raise NotFoundError(record_id)

    def _persist(self):
        blob = self._cipher.seal(serialize_records(self._records))
        try:
            self.storage.write_blob(self.principal.id, blob)
        except StorageIOError:
            self._records = None
            logger.error("Vault write failed for principal %s; cache dropped", self.principal.id)
            raise

    def load(self) -> List[CredentialRecord]:
        """
        Read and decrypt the vault from storage.

        Returns:
            Records in insertion order. Empty when nothing is stored yet.

        Raises:
            CorruptStoreError: If the stored bytes cannot be decrypted or parsed
            StorageIOError: If storage cannot be read
        """
        with self._lock:
            self._ensure_open()
            self._records = None
            blob = self.storage.read_blob(self.principal.id)

            if not blob:
                records = []
            else:
                try:
                    records = deserialize_records(self._cipher.open(blob))
                except CorruptStoreError as e:
                    self._corrupt = True
                    logger.error("Vault for principal %s is corrupt: %s", self.principal.id, e)
                    raise

            self._records = records
            self._corrupt = False
            logger.info("Loaded %d records for principal %s", len(records), self.principal.id)
            return list(records)

    def add(self, website: str, username: str, secret: str) -> CredentialRecord:
        """
        Validate and store a new credential.

        Raises:
            ValidationError: For the first invalid field (website, username, secret)
            StorageIOError: If the write fails; the record is then not stored
        """
        with self._lock:
            self._ensure_open()
            validate_record_fields(website, username, secret)
            records = self._current()

            record = CredentialRecord.create(website, username, secret)
            records.append(record)
            self._persist()

            logger.info("Added credential %s for principal %s", record.id, self.principal.id)
            return record

    def remove(self, record_id: str):
        """
        Delete a credential.

        Raises:
            NotFoundError: If no record has this id, including one already removed
            StorageIOError: If the write fails
        """
        with self._lock:
            self._ensure_open()
            index = self._find(record_id)
            del self._records[index]
            self._persist()

            logger.info("Removed credential %s for principal %s", record_id, self.principal.id)

    def list(self) -> Tuple[CredentialRecord, ...]:
        """Return a snapshot of the records in insertion order."""
        with self._lock:
            self._ensure_open()
            return tuple(self._current())

    def reveal(self, record_id: str) -> str:
        """
        Return a record's plaintext password for display.

        Raises:
            NotFoundError: If no record has this id
        """
        with self._lock:
            self._ensure_open()
            index = self._find(record_id)
            return self._records[index].secret

    def reset(self, confirm: bool = False):
        """
        Discard the stored vault and start empty.

        Only for recovering from a corrupt store, and only on explicit request.

        Raises:
            ValidationError: If confirm is not True
        """
        if confirm is not True:
            raise ValidationError('confirm', "Resetting deletes every saved password and must be confirmed")

        with self._lock:
            self._ensure_open()
            self.storage.delete_blob(self.principal.id)
            self._records = []
            self._corrupt = False
            logger.warning("Vault for principal %s was reset", self.principal.id)

    def close(self):
        """Drop records and key material. Later calls raise VaultClosedError."""
        with self._lock:
            self._closed = True
            self._records = None
            self._cipher.close()
            logger.info("Closed vault for principal %s", self.principal.id)
