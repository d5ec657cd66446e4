"""
Text encodings for key and ciphertext material.

Key material travels as hexadecimal, ciphertext and nonces as standard
base64. None of these functions has a cryptographic role.
"""

import base64
import binascii

from .errors import EncodingError


def hex_to_bytes(value: str) -> bytes:
    """
    Decode a hex string, accepting an optional ``0x`` prefix.

    Args:
        value: Hex string, upper or lower case

    Returns:
        Decoded bytes

    Raises:
        EncodingError: If the string has odd length or non-hex characters
    """
    if not isinstance(value, str):
        raise EncodingError(f"Expected hex string, got {type(value).__name__}")
    if value.startswith("0x"):
        value = value[2:]
    if len(value) % 2:
        raise EncodingError("Hex string has odd length")
    try:
        # unhexlify rejects whitespace, unlike bytes.fromhex
        return binascii.unhexlify(value)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"Invalid hex string: {e}") from e


def bytes_to_hex(data: bytes) -> str:
    """Encode bytes as lower-case hex without a prefix"""
    return bytes(data).hex()


def bytes_to_base64(data: bytes) -> str:
    """Encode bytes with the standard base64 alphabet"""
    return base64.b64encode(bytes(data)).decode("ascii")


def base64_to_bytes(value: str) -> bytes:
    """
    Decode standard base64.

    Raises:
        EncodingError: On characters outside the alphabet or bad padding
    """
    if not isinstance(value, str):
        raise EncodingError(f"Expected base64 string, got {type(value).__name__}")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise EncodingError(f"Invalid base64 string: {e}") from e
