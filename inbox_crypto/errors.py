"""
Exceptions raised by the encryption core.

Backend exceptions (PyNaCl, cryptography, binascii) are translated into
these types at module boundaries so callers only handle one family.
"""


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class EncodingError(CryptoError):
    """Malformed hex, base64 or UTF-8 input"""
    pass


class KeyFormatError(CryptoError):
    """Key material of the wrong length or type"""
    pass


class DecryptionFailed(CryptoError):
    """
    Authenticated decryption did not verify.

    Raised for tampering, wrong keys, wrong nonce and truncated ciphertext
    alike; the message never says which.
    """

    def __init__(self, message: str = "Decryption failed"):
        super().__init__(message)


class RotationChainError(CryptoError):
    """A sequence of key rotation records does not link up"""
    pass
