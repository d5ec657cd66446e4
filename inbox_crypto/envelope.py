"""
Envelope Cipher

Authenticated public-key encryption of a single chat message using the NaCl
box construction (Curve25519 key agreement, XSalsa20 stream cipher, Poly1305
tag). The envelope wire form is three strings::

    {"cipher": <base64>, "nonce": <base64>, "senderPk": <hex>}
"""

import json
from dataclasses import dataclass
from typing import Dict, Optional

import nacl.exceptions
from nacl.public import Box, PrivateKey, PublicKey

from .codec import base64_to_bytes, bytes_to_base64, bytes_to_hex
from .errors import DecryptionFailed, EncodingError, KeyFormatError
from .logger import get_logger
from .primitives import (
    NONCE_SIZE,
    KeyInput,
    RandomSource,
    coerce_key,
    draw_random,
    fingerprint,
    keypair_from_private,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class EncryptedEnvelope:
    """
    One encrypted message, ready for transport.

    Attributes:
        cipher: Box output (ciphertext with 16-byte tag), base64
        nonce: 24-byte nonce, base64
        sender_pk: Sender's box public key, hex
    """
    cipher: str
    nonce: str
    sender_pk: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to the wire dictionary"""
        return {
            'cipher': self.cipher,
            'nonce': self.nonce,
            'senderPk': self.sender_pk
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'EncryptedEnvelope':
        """
        Create from a wire dictionary.

        Raises:
            EncodingError: If a field is missing or not a string
        """
        if not isinstance(data, dict):
            raise EncodingError("Envelope must be a JSON object")
        fields = {}
        for wire_name, attr in (('cipher', 'cipher'), ('nonce', 'nonce'), ('senderPk', 'sender_pk')):
            value = data.get(wire_name)
            if not isinstance(value, str):
                raise EncodingError(f"Envelope field '{wire_name}' missing or not a string")
            fields[attr] = value
        return cls(**fields)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> 'EncryptedEnvelope':
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise EncodingError(f"Envelope is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise EncodingError("Envelope JSON must be an object")
        return cls.from_dict(data)


def encrypt(
    sender_private_key: KeyInput,
    recipient_public_key: KeyInput,
    plaintext: str,
    random_source: Optional[RandomSource] = None
) -> EncryptedEnvelope:
    """
    Encrypt a text message for one recipient.

    Args:
        sender_private_key: Sender's 32-byte box private key (bytes or hex)
        recipient_public_key: Recipient's 32-byte box public key (bytes or hex)
        plaintext: Message text, UTF-8 encoded before encryption
        random_source: Optional source of secure random bytes for the nonce

    Returns:
        EncryptedEnvelope

    Raises:
        EncodingError: If the message contains unencodable surrogates
        KeyFormatError: If either key is malformed or low-order
    """
    sender = keypair_from_private(sender_private_key)
    recipient_pk = coerce_key(recipient_public_key, "recipient public key")
    nonce = draw_random(NONCE_SIZE, random_source)

    try:
        message = plaintext.encode('utf-8')
    except UnicodeEncodeError as e:
        raise EncodingError("Message is not encodable as UTF-8") from e

    try:
        box = Box(PrivateKey(sender.private_key), PublicKey(recipient_pk))
    except nacl.exceptions.CryptoError as e:
        # Low-order points have no usable shared secret
        raise KeyFormatError("Recipient public key is not usable for key agreement") from e
    encrypted = box.encrypt(message, nonce)

    return EncryptedEnvelope(
        cipher=bytes_to_base64(encrypted.ciphertext),
        nonce=bytes_to_base64(nonce),
        sender_pk=bytes_to_hex(sender.public_key)
    )


def decrypt(
    recipient_private_key: KeyInput,
    sender_public_key: KeyInput,
    ciphertext: str,
    nonce: str
) -> str:
    """
    Open a box and return the message text.

    Args:
        recipient_private_key: Recipient's 32-byte box private key (bytes or hex)
        sender_public_key: Sender's 32-byte box public key (bytes or hex)
        ciphertext: Box output, base64
        nonce: Nonce used at encryption, base64

    Returns:
        Decrypted plaintext

    Raises:
        EncodingError: If ciphertext or nonce is not valid base64
        KeyFormatError: If either key is malformed
        DecryptionFailed: If the box does not authenticate
    """
    cipher_bytes = base64_to_bytes(ciphertext)
    nonce_bytes = base64_to_bytes(nonce)
    recipient = keypair_from_private(recipient_private_key)
    sender_pk = coerce_key(sender_public_key, "sender public key")

    try:
        box = Box(PrivateKey(recipient.private_key), PublicKey(sender_pk))
        plain_bytes = box.decrypt(cipher_bytes, nonce_bytes)
    except nacl.exceptions.CryptoError:
        # Same signal for bad tag, wrong or low-order key, wrong or short nonce
        logger.debug("box from %s did not authenticate", fingerprint(sender_pk))
        raise DecryptionFailed() from None

    try:
        return plain_bytes.decode('utf-8')
    except UnicodeDecodeError as e:
        raise EncodingError("Decrypted message is not valid UTF-8") from e


def open_envelope(recipient_private_key: KeyInput, envelope: EncryptedEnvelope) -> str:
    """Decrypt an envelope using the sender key it carries"""
    return decrypt(recipient_private_key, envelope.sender_pk, envelope.cipher, envelope.nonce)
