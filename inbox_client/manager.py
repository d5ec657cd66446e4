"""
Per-user encryption manager for the chat client.

Holds one user's box identity, loads it from (or creates it in) a KeyStore
and wraps the stateless core: encrypt before send, decrypt after receive,
rotate on demand. During a rotation grace period the old keys stay
available for decrypting in-flight messages.
"""

from typing import Optional, Union

from inbox_crypto import (
    CryptoError,
    DecryptionFailed,
    EncryptedEnvelope,
    KeyPair,
    KeyRotationRecord,
    RandomSource,
    derive_signing_keypair,
    encrypt,
    generate_keypair,
    open_envelope,
    rotate,
)
from inbox_crypto.logger import get_logger
from inbox_crypto.primitives import fingerprint

from .storage import KeyStore, StoredIdentity


logger = get_logger(__name__)


class KeysNotInitialized(CryptoError):
    """The manager was used before initialize_keys()"""
    pass


class EncryptionManager:
    """
    Encryption state for a single user address.
    """

    def __init__(self, key_store: KeyStore, random_source: Optional[RandomSource] = None):
        """
        Args:
            key_store: Where the identity is loaded from and saved to
            random_source: Optional source of secure random bytes
        """
        self.key_store = key_store
        self.random_source = random_source
        self.address: Optional[str] = None
        self._identity: Optional[StoredIdentity] = None

    @property
    def identity(self) -> StoredIdentity:
        if self._identity is None:
            raise KeysNotInitialized("Keys not initialized")
        return self._identity

    @property
    def keypair(self) -> KeyPair:
        return self.identity.keypair

    def initialize_keys(self, address: str) -> StoredIdentity:
        """
        Load the user's identity, generating and storing one if none exists.

        Args:
            address: User address

        Returns:
            The active identity
        """
        identity = self.key_store.load(address)
        if identity is None:
            identity = StoredIdentity(keypair=generate_keypair(self.random_source))
            self.key_store.save(address, identity)
            logger.info("generated identity %s", fingerprint(identity.keypair.public_key))
        else:
            logger.info("loaded identity %s (version %d)", fingerprint(identity.keypair.public_key), identity.version)

        self.address = address
        self._identity = identity
        return identity

    @property
    def public_key_hex(self) -> str:
        """Box public key for sharing"""
        return self.keypair.public_key_hex

    @property
    def verify_key_hex(self) -> str:
        """Ed25519 verify key peers use to check this user's rotations"""
        return derive_signing_keypair(self.keypair).verify_key_hex

    def encrypt(self, recipient_public_key: Union[bytes, str], plaintext: str) -> EncryptedEnvelope:
        """Encrypt a message for a recipient with the current key"""
        return encrypt(self.keypair.private_key, recipient_public_key, plaintext, self.random_source)

    def decrypt(self, envelope: EncryptedEnvelope) -> str:
        """
        Decrypt a received envelope.

        Tries the current key, then each key still in its grace period,
        once each.

        Raises:
            DecryptionFailed: If no held key opens the envelope
        """
        identity = self.identity
        for keypair in (identity.keypair,) + identity.retiring:
            try:
                return open_envelope(keypair.private_key, envelope)
            except DecryptionFailed:
                continue
        raise DecryptionFailed()

    def rotate_keys(self) -> KeyRotationRecord:
        """
        Replace the current key and keep the old one for decryption only.

        Returns:
            The rotation record to publish
        """
        identity = self.identity
        new_keypair, record = rotate(identity.keypair.private_key, identity.version, self.random_source)
        rotated = StoredIdentity(
            keypair=new_keypair,
            version=record.version,
            retiring=(identity.keypair,) + identity.retiring
        )
        self.key_store.save(self.address, rotated)
        self._identity = rotated
        return record

    def retire_keys(self) -> int:
        """
        End the grace period: drop all retiring keys.

        Returns:
            Number of keys discarded
        """
        identity = self.identity
        dropped = len(identity.retiring)
        if dropped:
            self._identity = StoredIdentity(keypair=identity.keypair, version=identity.version)
            self.key_store.save(self.address, self._identity)
            logger.info("retired %d key(s) for version %d", dropped, identity.version)
        return dropped

    def clear_keys(self, address: str) -> None:
        """Delete stored keys (logout)"""
        self.key_store.delete(address)
        if address == self.address:
            self._identity = None
            self.address = None
