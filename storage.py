"""
Database storage layer for SecureVault.
Uses SQLite for accounts and one encrypted vault blob per principal.
"""
import sqlite3
import logging
import threading
from datetime import datetime
from typing import Optional

from errors import StorageIOError
from models import Account

# Configure logging
logger = logging.getLogger(__name__)


class Storage:
    """SQLite storage handler for SecureVault."""

    def __init__(self, db_path: str = "securevault.db", timeout: float = 5.0):
        """
        Initialize SQLite database connection settings.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.timeout = timeout
        self.conn = None
        self._lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """Establish database connection."""
        if self.conn is None:
            try:
                self.conn = sqlite3.connect(
                    self.db_path,
                    timeout=self.timeout,
                    check_same_thread=False,
                    isolation_level=None
                )
            except sqlite3.Error as e:
                raise StorageIOError(f"Cannot open database {self.db_path}: {e}") from e
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            conn = self.connect()
            try:
                return conn.execute(query, params).fetchone()
            except sqlite3.Error as e:
                raise StorageIOError(f"Database operation failed: {e}") from e

    def _execute(self, query: str, params: tuple = ()) -> None:
        with self._lock:
            conn = self.connect()
            try:
                conn.execute(query, params)
            except sqlite3.Error as e:
                raise StorageIOError(f"Database operation failed: {e}") from e

    def init_db(self):
        """Initialize database tables."""
        # Accounts table
        self._execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_login TIMESTAMP
            )
        """)

        # Vault blobs, one per principal
        self._execute("""
            CREATE TABLE IF NOT EXISTS vaults (
                principal_id TEXT PRIMARY KEY,
                blob BLOB NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self._execute("CREATE INDEX IF NOT EXISTS idx_accounts_email ON accounts(email)")
        logger.info("Database initialized successfully")

    def add_account(self, account_id: str, email: str, password_hash: str) -> Account:
        """
        Add a new account.

        Args:
            account_id: Generated principal id
            email: Account email, unique
            password_hash: Argon2 hash of the account password

        Returns:
            The stored Account

        Raises:
            sqlite3.IntegrityError: If the email is already registered
            StorageIOError: For any other database failure
        """
        with self._lock:
            conn = self.connect()
            try:
                conn.execute(
                    "INSERT INTO accounts (id, email, password_hash) VALUES (?, ?, ?)",
                    (account_id, email, password_hash)
                )
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise StorageIOError(f"Database operation failed: {e}") from e

        logger.info("Added new account %s", account_id)
        return Account(id=account_id, email=email, password_hash=password_hash)

    def get_account(self, email: str) -> Optional[Account]:
        """
        Get account by email.

        Args:
            email: Account email

        Returns:
            Account object or None if not found
        """
        row = self._fetchone(
            "SELECT * FROM accounts WHERE email = ?",
            (email,)
        )

        if row:
            return Account(
                id=row['id'],
                email=row['email'],
                password_hash=row['password_hash'],
                created_at=datetime.fromisoformat(row['created_at']) if row['created_at'] else None,
                last_login=datetime.fromisoformat(row['last_login']) if row['last_login'] else None
            )
        return None

    def update_last_login(self, account_id: str):
        self._execute(
            "UPDATE accounts SET last_login = CURRENT_TIMESTAMP WHERE id = ?",
            (account_id,)
        )

    def read_blob(self, principal_id: str) -> Optional[bytes]:
        """
        Read the vault blob stored for a principal.

        Returns:
            The stored bytes, or None if the principal has no vault yet
        """
        row = self._fetchone(
            "SELECT blob FROM vaults WHERE principal_id = ?",
            (principal_id,)
        )
        return bytes(row['blob']) if row else None

    def write_blob(self, principal_id: str, data: bytes):
        """Replace the vault blob stored for a principal."""
        self._execute(
            """INSERT INTO vaults (principal_id, blob, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(principal_id) DO UPDATE SET
                blob = excluded.blob,
                updated_at = excluded.updated_at""",
            (principal_id, sqlite3.Binary(data))
        )
        logger.debug("Wrote %d-byte vault blob for principal %s", len(data), principal_id)

    def delete_blob(self, principal_id: str):
        """Delete the vault blob stored for a principal."""
        self._execute("DELETE FROM vaults WHERE principal_id = ?", (principal_id,))
        logger.info("Deleted vault blob for principal %s", principal_id)
