"""
Key Rotation Manager

Replaces an identity's box keypair and emits a continuity proof: an Ed25519
signature, made with the old identity's signing key, over the new public
key. Peers that trust the old verify key can follow the chain of records to
the current key.

Lifecycle: Active -> (rotate) -> Rotating -> (grace period) -> Retired.
Only the Active -> Rotating step happens here; version bookkeeping, grace
periods and retirement belong to the key store.
"""

import struct
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .codec import base64_to_bytes, bytes_to_base64, bytes_to_hex, hex_to_bytes
from .errors import EncodingError, KeyFormatError, RotationChainError
from .logger import get_logger
from .primitives import (
    KeyInput,
    KeyPair,
    RandomSource,
    coerce_key,
    constant_time_compare,
    derive_signing_keypair,
    fingerprint,
    generate_keypair,
    keypair_from_private,
    sign_detached,
    verify_detached,
)


ROTATION_CONTEXT = b"inbox-crypto/rotation/v1|"

logger = get_logger(__name__)


def rotation_message(version: int, old_public_key: bytes, new_public_key: bytes, new_verify_key: bytes) -> bytes:
    """Bytes covered by the continuity signature"""
    return ROTATION_CONTEXT + struct.pack(">Q", version) + old_public_key + new_public_key + new_verify_key


@dataclass(frozen=True)
class KeyRotationRecord:
    """
    Signed statement that old_public_key hands over to new_public_key.

    Attributes:
        old_public_key: Previous box public key (hex)
        new_public_key: Replacement box public key (hex)
        old_verify_key: Ed25519 key that made the signature (hex)
        new_verify_key: Ed25519 key of the new identity, for the next rotation (hex)
        signature: Ed25519 signature (base64)
        version: Identity version this record establishes
    """
    old_public_key: str
    new_public_key: str
    old_verify_key: str
    new_verify_key: str
    signature: str
    version: int

    def signed_bytes(self) -> bytes:
        return rotation_message(
            self.version,
            hex_to_bytes(self.old_public_key),
            hex_to_bytes(self.new_public_key),
            hex_to_bytes(self.new_verify_key)
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary for publication"""
        return {
            'oldPublicKey': self.old_public_key,
            'newPublicKey': self.new_public_key,
            'oldVerifyKey': self.old_verify_key,
            'newVerifyKey': self.new_verify_key,
            'signature': self.signature,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'KeyRotationRecord':
        """
        Create from dictionary.

        Raises:
            EncodingError: If a field is missing or has the wrong type
        """
        try:
            record = cls(
                old_public_key=data['oldPublicKey'],
                new_public_key=data['newPublicKey'],
                old_verify_key=data['oldVerifyKey'],
                new_verify_key=data['newVerifyKey'],
                signature=data['signature'],
                version=data['version']
            )
        except KeyError as e:
            raise EncodingError(f"Rotation record missing field {e}") from e
        if not isinstance(record.version, int) or isinstance(record.version, bool):
            raise EncodingError("Rotation record version must be an integer")
        return record


def rotate(
    current_private_key: KeyInput,
    previous_version: int = 0,
    random_source: Optional[RandomSource] = None
) -> Tuple[KeyPair, KeyRotationRecord]:
    """
    Generate a replacement keypair vouched for by the current one.

    Args:
        current_private_key: Current box private key (bytes or hex)
        previous_version: Last version recorded for this identity
        random_source: Optional source of secure random bytes

    Returns:
        Tuple of (new_keypair, record)

    Raises:
        KeyFormatError: If current_private_key is malformed
        ValueError: If previous_version is not a non-negative integer
    """
    if not isinstance(previous_version, int) or isinstance(previous_version, bool) or previous_version < 0:
        raise ValueError(f"previous_version must be a non-negative integer, got {previous_version!r}")

    current = keypair_from_private(current_private_key)
    old_signing = derive_signing_keypair(current)

    new_keypair = generate_keypair(random_source)
    new_signing = derive_signing_keypair(new_keypair)

    version = previous_version + 1
    signature = sign_detached(
        old_signing,
        rotation_message(version, current.public_key, new_keypair.public_key, new_signing.verify_key)
    )

    record = KeyRotationRecord(
        old_public_key=current.public_key_hex,
        new_public_key=new_keypair.public_key_hex,
        old_verify_key=old_signing.verify_key_hex,
        new_verify_key=new_signing.verify_key_hex,
        signature=bytes_to_base64(signature),
        version=version
    )
    logger.info(
        "rotated %s -> %s (version %d)",
        fingerprint(current.public_key), fingerprint(new_keypair.public_key), version
    )
    return new_keypair, record


def verify_rotation(record: KeyRotationRecord, trusted_verify_key: Optional[KeyInput] = None) -> bool:
    """
    Check a rotation record's continuity signature.

    Args:
        record: Record to check
        trusted_verify_key: Verify key already trusted for the old identity;
            if given, the record must have been signed by it

    Returns:
        True if the signature verifies, False otherwise
    """
    try:
        old_verify_key = coerce_key(record.old_verify_key, "old verify key")
        if trusted_verify_key is not None:
            trusted = coerce_key(trusted_verify_key, "trusted verify key")
            if not constant_time_compare(old_verify_key, trusted):
                return False
        signature = base64_to_bytes(record.signature)
        message = record.signed_bytes()
    except (EncodingError, KeyFormatError, struct.error):
        return False
    return verify_detached(old_verify_key, signature, message)


def verify_rotation_chain(
    records: Iterable[KeyRotationRecord],
    trusted_public_key: KeyInput,
    trusted_verify_key: KeyInput,
    trusted_version: int = 0
) -> Tuple[str, str, int]:
    """
    Follow rotation records from a trusted identity to its current key.

    Args:
        records: Records in the order they were issued
        trusted_public_key: Box public key known to be authentic
        trusted_verify_key: Verify key belonging to that identity
        trusted_version: Version of the trusted identity

    Returns:
        Tuple of (public_key_hex, verify_key_hex, version) at the end of the chain

    Raises:
        RotationChainError: If a record does not link, goes backwards or fails to verify
    """
    try:
        public_key = bytes_to_hex(coerce_key(trusted_public_key, "trusted public key"))
        verify_key = bytes_to_hex(coerce_key(trusted_verify_key, "trusted verify key"))
    except KeyFormatError as e:
        raise RotationChainError(str(e)) from e
    version = trusted_version

    for record in records:
        if record.old_public_key.lower() != public_key:
            raise RotationChainError(f"Record version {record.version} does not start at the current key")
        if record.version <= version:
            raise RotationChainError(f"Version {record.version} does not increase past {version}")
        if not verify_rotation(record, verify_key):
            raise RotationChainError(f"Signature on version {record.version} does not verify")
        public_key = record.new_public_key.lower()
        verify_key = record.new_verify_key.lower()
        version = record.version

    return public_key, verify_key, version
