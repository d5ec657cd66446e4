"""
Cryptographic Primitives for End-to-End Encryption

Key types and low-level operations shared by the envelope cipher and the
key rotation manager:

- Curve25519 box keypairs (encryption identity)
- Ed25519 signing keypairs derived from a box private key (continuity proofs)
- An injectable source of secure random bytes
"""

import os
import hmac
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import nacl.exceptions
from nacl.public import PrivateKey
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .codec import bytes_to_hex, hex_to_bytes
from .errors import EncodingError, KeyFormatError
from .logger import get_logger


KEY_SIZE = 32
NONCE_SIZE = 24
SIGNATURE_SIZE = 64
SIGNING_KEY_INFO = b"inbox-crypto/identity-signing/v1"

logger = get_logger(__name__)

# Fills n bytes from a CSPRNG; must be safe to call from several threads
RandomSource = Callable[[int], bytes]
KeyInput = Union[bytes, bytearray, str]


def default_random_source(n: int) -> bytes:
    """OS entropy source"""
    return os.urandom(n)


def draw_random(n: int, random_source: Optional[RandomSource] = None) -> bytes:
    """
    Draw exactly n bytes from the given source (OS entropy by default).

    Raises:
        ValueError: If the source returns the wrong number of bytes
    """
    source = random_source or default_random_source
    data = bytes(source(n))
    if len(data) != n:
        raise ValueError(f"Random source returned {len(data)} bytes, expected {n}")
    return data


@dataclass(frozen=True)
class KeyPair:
    """
    Curve25519 keypair used for box encryption.

    Attributes:
        public_key: 32-byte public key, derived from private_key
        private_key: 32-byte secret scalar (never leaves its owner)
    """
    public_key: bytes
    private_key: bytes = field(repr=False)

    @property
    def public_key_hex(self) -> str:
        return bytes_to_hex(self.public_key)

    @property
    def private_key_hex(self) -> str:
        return bytes_to_hex(self.private_key)


@dataclass(frozen=True)
class SigningKeyPair:
    """
    Ed25519 keypair used only for signing.

    Kept as its own type so a signing key is never passed where a box key
    is expected.
    """
    verify_key: bytes
    signing_key: bytes = field(repr=False)

    @property
    def verify_key_hex(self) -> str:
        return bytes_to_hex(self.verify_key)


def coerce_key(key: KeyInput, name: str = "key") -> bytes:
    """
    Accept 32 raw bytes or a hex string (optional 0x prefix).

    Raises:
        KeyFormatError: If the key is not 32 bytes or not decodable
    """
    if isinstance(key, str):
        try:
            key = hex_to_bytes(key)
        except EncodingError as e:
            raise KeyFormatError(f"{name} is not valid hex: {e}") from e
    elif not isinstance(key, (bytes, bytearray)):
        raise KeyFormatError(f"{name} must be bytes or hex string, got {type(key).__name__}")
    if len(key) != KEY_SIZE:
        raise KeyFormatError(f"{name} must be {KEY_SIZE} bytes, got {len(key)}")
    return bytes(key)


def keypair_from_private(private_key: KeyInput) -> KeyPair:
    """
    Rebuild a box keypair from its private half.

    Any 32-byte value is a usable Curve25519 scalar.
    """
    raw = coerce_key(private_key, "private key")
    try:
        public_key = PrivateKey(raw).public_key.encode()
    except nacl.exceptions.CryptoError as e:
        raise KeyFormatError(f"Invalid private key: {e}") from e
    return KeyPair(public_key=public_key, private_key=raw)


def generate_keypair(random_source: Optional[RandomSource] = None) -> KeyPair:
    """
    Generate a fresh box keypair.

    Args:
        random_source: Optional source of secure random bytes

    Returns:
        New KeyPair
    """
    keypair = keypair_from_private(draw_random(KEY_SIZE, random_source))
    logger.debug("generated keypair %s", fingerprint(keypair.public_key))
    return keypair


def derive_signing_keypair(identity: Union[KeyPair, KeyInput]) -> SigningKeyPair:
    """
    Derive the Ed25519 signing capability of a box identity.

    The seed is HKDF-SHA256 over the box private key, so the same identity
    always yields the same verify key.

    Args:
        identity: KeyPair or box private key

    Returns:
        SigningKeyPair
    """
    raw = identity.private_key if isinstance(identity, KeyPair) else coerce_key(identity, "private key")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=SIGNING_KEY_INFO
    )
    seed = hkdf.derive(raw)
    signing_key = Ed25519PrivateKey.from_private_bytes(seed)
    return SigningKeyPair(
        verify_key=signing_key.public_key().public_bytes_raw(),
        signing_key=seed
    )


def sign_detached(signing: SigningKeyPair, data: bytes) -> bytes:
    """Produce a 64-byte Ed25519 signature over data"""
    if not isinstance(signing, SigningKeyPair):
        raise KeyFormatError("A SigningKeyPair is required for signing")
    return Ed25519PrivateKey.from_private_bytes(signing.signing_key).sign(data)


def verify_detached(verify_key: KeyInput, signature: bytes, data: bytes) -> bool:
    """
    Check an Ed25519 signature.

    Returns:
        True if the signature is valid, False otherwise
    """
    raw = coerce_key(verify_key, "verify key")
    if len(signature) != SIGNATURE_SIZE:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(raw).verify(signature, data)
        return True
    except (InvalidSignature, ValueError):
        return False


def fingerprint(public_key: bytes) -> str:
    """Short hex prefix of a public key, safe for logs"""
    return bytes_to_hex(public_key[:8])


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Constant-time comparison to prevent timing attacks.

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)
