"""
Key storage for the chat client.

The encryption core persists nothing; the client keeps each user's box
identity (current keypair, version and keys still in their rotation grace
period) behind the KeyStore interface. EncryptedKeyStore keeps them on disk
encrypted with a key derived from the user's password.
"""

import os
import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from inbox_crypto import CryptoError, KeyPair, keypair_from_private
from inbox_crypto.logger import get_logger


PBKDF2_ITERATIONS = 100000
SALT_SIZE = 16
STORAGE_NONCE_SIZE = 12
PASSWORD_CHECK = b"inbox-client/key-store/v1"

logger = get_logger(__name__)


class KeyStoreError(CryptoError):
    """Key storage could not be read or written"""
    pass


class KeyStoreLocked(KeyStoreError):
    """Wrong password for an existing key store"""
    pass


@dataclass(frozen=True)
class StoredIdentity:
    """
    A user's persisted encryption identity.

    Attributes:
        keypair: Current box keypair (the only one used for new envelopes)
        version: Rotation version of the current keypair
        retiring: Previous keypairs still accepted for decryption
    """
    keypair: KeyPair
    version: int = 0
    retiring: Tuple[KeyPair, ...] = ()

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization"""
        return {
            'private_key': self.keypair.private_key_hex,
            'version': self.version,
            'retiring': [kp.private_key_hex for kp in self.retiring]
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'StoredIdentity':
        """Create from dictionary; public keys are re-derived"""
        return cls(
            keypair=keypair_from_private(data['private_key']),
            version=int(data.get('version', 0)),
            retiring=tuple(keypair_from_private(k) for k in data.get('retiring', []))
        )


class KeyStore(Protocol):
    """Where identities live between sessions"""

    def load(self, address: str) -> Optional[StoredIdentity]:
        ...

    def save(self, address: str, identity: StoredIdentity) -> None:
        ...

    def delete(self, address: str) -> None:
        ...


class MemoryKeyStore:
    """Process-local key store, mostly for tests"""

    def __init__(self):
        self._identities: Dict[str, StoredIdentity] = {}
        self._lock = threading.Lock()

    def load(self, address: str) -> Optional[StoredIdentity]:
        with self._lock:
            return self._identities.get(address)

    def save(self, address: str, identity: StoredIdentity) -> None:
        with self._lock:
            self._identities[address] = identity

    def delete(self, address: str) -> None:
        with self._lock:
            self._identities.pop(address, None)


class EncryptedKeyStore:
    """
    Password-protected SQLite key store.

    Every identity row is encrypted with AES-256-GCM under a key derived
    from the password with PBKDF2-SHA256. The salt and a password check
    value live in the metadata table.
    """

    def __init__(self, path: str, password: str, iterations: int = PBKDF2_ITERATIONS):
        """
        Open (or create) a key store.

        Args:
            path: SQLite database file
            password: User's password
            iterations: PBKDF2 iteration count

        Raises:
            KeyStoreLocked: If the store exists and the password is wrong
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.iterations = iterations
        self._lock = threading.Lock()

        self.db: Optional[sqlite3.Connection] = sqlite3.connect(str(self.path), check_same_thread=False)
        try:
            self._init_database()
            self.encryption_key = self._unlock(password)
        except Exception:
            self.close()
            raise

    def derive_key(self, password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Args:
            password: User's password
            salt: Salt for key derivation

        Returns:
            32-byte encryption key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(password.encode())

    def _init_database(self):
        """Initialize SQLite database"""
        cursor = self.db.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS identities (
                address TEXT PRIMARY KEY,
                encrypted_data BLOB NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        self.db.commit()

    def _unlock(self, password: str) -> bytes:
        salt = self._get_metadata("salt")
        if salt is None:
            salt = os.urandom(SALT_SIZE)
            key = self.derive_key(password, salt)
            check = self._encrypt(key, PASSWORD_CHECK, b"check")
            cursor = self.db.cursor()
            cursor.executemany(
                "INSERT INTO metadata (key, value) VALUES (?, ?)",
                [("salt", salt), ("check", check)]
            )
            self.db.commit()
            logger.info("created key store at %s", self.path)
            return key

        key = self.derive_key(password, salt)
        self._decrypt(key, self._get_metadata("check") or b"", b"check")
        return key

    def _get_metadata(self, key: str) -> Optional[bytes]:
        cursor = self.db.cursor()
        cursor.execute("SELECT value FROM metadata WHERE key = ?", (key,))
        result = cursor.fetchone()
        return bytes(result[0]) if result else None

    @staticmethod
    def _encrypt(key: bytes, data: bytes, associated_data: bytes) -> bytes:
        """Encrypt data with storage key"""
        nonce = os.urandom(STORAGE_NONCE_SIZE)
        return nonce + AESGCM(key).encrypt(nonce, data, associated_data)

    @staticmethod
    def _decrypt(key: bytes, encrypted_data: bytes, associated_data: bytes) -> bytes:
        """Decrypt data with storage key"""
        nonce = encrypted_data[:STORAGE_NONCE_SIZE]
        ciphertext = encrypted_data[STORAGE_NONCE_SIZE:]
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
        except (InvalidTag, ValueError):
            raise KeyStoreLocked("Key store could not be decrypted (wrong password?)") from None

    def _require_open(self) -> sqlite3.Connection:
        if self.db is None:
            raise KeyStoreError("Key store is closed")
        return self.db

    def load(self, address: str) -> Optional[StoredIdentity]:
        """
        Load a user's identity.

        Args:
            address: User address the identity belongs to

        Returns:
            StoredIdentity or None
        """
        with self._lock:
            db = self._require_open()
            cursor = db.cursor()
            cursor.execute("SELECT encrypted_data FROM identities WHERE address = ?", (address,))
            result = cursor.fetchone()

        if not result:
            return None

        decrypted = self._decrypt(self.encryption_key, bytes(result[0]), address.encode())
        try:
            return StoredIdentity.from_dict(json.loads(decrypted.decode()))
        except (ValueError, KeyError, CryptoError) as e:
            raise KeyStoreError(f"Stored identity for {address} is corrupt") from e

    def save(self, address: str, identity: StoredIdentity) -> None:
        """
        Save a user's identity, replacing any previous one.

        Args:
            address: User address the identity belongs to
            identity: Identity to persist
        """
        encrypted = self._encrypt(
            self.encryption_key,
            json.dumps(identity.to_dict()).encode(),
            address.encode()
        )
        timestamp = datetime.now(timezone.utc).isoformat()

        with self._lock:
            db = self._require_open()
            db.execute(
                "INSERT OR REPLACE INTO identities (address, encrypted_data, updated_at) VALUES (?, ?, ?)",
                (address, encrypted, timestamp)
            )
            db.commit()

    def delete(self, address: str) -> None:
        """Remove a user's identity if present"""
        with self._lock:
            db = self._require_open()
            db.execute("DELETE FROM identities WHERE address = ?", (address,))
            db.commit()

    def list_addresses(self):
        """List all addresses with a stored identity"""
        with self._lock:
            db = self._require_open()
            cursor = db.execute("SELECT address FROM identities ORDER BY address")
            return [row[0] for row in cursor.fetchall()]

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
