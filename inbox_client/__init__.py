"""
Client-side collaborators of the encryption core: key storage and a
per-user encryption manager.
"""

from .storage import (
    KeyStore,
    StoredIdentity,
    MemoryKeyStore,
    EncryptedKeyStore,
    KeyStoreError,
    KeyStoreLocked
)
from .manager import EncryptionManager, KeysNotInitialized

__all__ = [
    'KeyStore',
    'StoredIdentity',
    'MemoryKeyStore',
    'EncryptedKeyStore',
    'KeyStoreError',
    'KeyStoreLocked',
    'EncryptionManager',
    'KeysNotInitialized'
]
