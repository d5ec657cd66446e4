"""
End-to-end message encryption for peer-to-peer chat.

Implements:
- NaCl box envelopes (Curve25519 + XSalsa20 + Poly1305)
- Key rotation with Ed25519 continuity proofs
- Hex/base64 codecs for key and ciphertext material
"""

from .errors import (
    CryptoError,
    EncodingError,
    KeyFormatError,
    DecryptionFailed,
    RotationChainError
)
from .codec import (
    hex_to_bytes,
    bytes_to_hex,
    bytes_to_base64,
    base64_to_bytes
)
from .primitives import (
    KeyPair,
    SigningKeyPair,
    RandomSource,
    generate_keypair,
    keypair_from_private,
    derive_signing_keypair
)
from .envelope import EncryptedEnvelope, encrypt, decrypt, open_envelope
from .rotation import KeyRotationRecord, rotate, verify_rotation, verify_rotation_chain

__all__ = [
    'CryptoError',
    'EncodingError',
    'KeyFormatError',
    'DecryptionFailed',
    'RotationChainError',
    'hex_to_bytes',
    'bytes_to_hex',
    'bytes_to_base64',
    'base64_to_bytes',
    'KeyPair',
    'SigningKeyPair',
    'RandomSource',
    'generate_keypair',
    'keypair_from_private',
    'derive_signing_keypair',
    'EncryptedEnvelope',
    'encrypt',
    'decrypt',
    'open_envelope',
    'KeyRotationRecord',
    'rotate',
    'verify_rotation',
    'verify_rotation_chain'
]
