"""
Tests for the encryption core: codecs, box envelopes and key rotation.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from inbox_crypto import (
    DecryptionFailed,
    EncodingError,
    EncryptedEnvelope,
    KeyFormatError,
    KeyRotationRecord,
    RotationChainError,
    base64_to_bytes,
    bytes_to_base64,
    bytes_to_hex,
    decrypt,
    derive_signing_keypair,
    encrypt,
    generate_keypair,
    hex_to_bytes,
    keypair_from_private,
    open_envelope,
    rotate,
    verify_rotation,
    verify_rotation_chain,
)


SENDER_SK = "0x" + "11" * 32
RECIPIENT_SK = "0x" + "22" * 32
STRANGER_SK = "0x" + "33" * 32
LOW_ORDER_PK = b"\x00" * 32


def fixed_source(byte: int):
    """Deterministic random source for reproducible nonces"""
    return lambda n: bytes([byte]) * n


def flip_bit(data: bytes, index: int) -> bytes:
    buf = bytearray(data)
    buf[index // 8] ^= 1 << (index % 8)
    return bytes(buf)


# Codec

@pytest.mark.parametrize("data", [b"", b"\x00", b"\xff\x00\x10", bytes(range(256))])
def test_codec_round_trip(data):
    assert hex_to_bytes(bytes_to_hex(data)) == data
    assert base64_to_bytes(bytes_to_base64(data)) == data


def test_hex_accepts_prefix_and_upper_case():
    assert hex_to_bytes("0xDEADbeef") == b"\xde\xad\xbe\xef"
    assert bytes_to_hex(b"\xde\xad\xbe\xef") == "deadbeef"


@pytest.mark.parametrize("bad", ["abc", "0xabc", "zz", "12 34", "é1", "0x0g"])
def test_hex_rejects_malformed(bad):
    with pytest.raises(EncodingError):
        hex_to_bytes(bad)


@pytest.mark.parametrize("bad", ["abc", "ab=c", "!!!!", "aGVsbG8", "aGVs bG8="])
def test_base64_rejects_malformed(bad):
    with pytest.raises(EncodingError):
        base64_to_bytes(bad)


def test_base64_is_not_url_safe():
    assert bytes_to_base64(b"\xfb\xff") == "+/8="
    with pytest.raises(EncodingError):
        base64_to_bytes("-_8=")


# Keys

def test_public_key_matches_x25519():
    sk = hex_to_bytes(RECIPIENT_SK)
    expected = X25519PrivateKey.from_private_bytes(sk).public_key().public_bytes_raw()
    assert keypair_from_private(sk).public_key == expected
    assert keypair_from_private(RECIPIENT_SK).public_key == expected


@pytest.mark.parametrize("bad", [b"\x11" * 31, b"\x11" * 33, "11" * 31, "not hex", 42])
def test_malformed_private_key_rejected(bad):
    with pytest.raises(KeyFormatError):
        keypair_from_private(bad)


def test_keypair_repr_hides_private_key():
    keypair = keypair_from_private(SENDER_SK)
    assert keypair.private_key_hex not in repr(keypair)
    assert keypair.public_key_hex == bytes_to_hex(keypair.public_key)


def test_signing_key_is_deterministic_and_distinct():
    keypair = keypair_from_private(SENDER_SK)
    signing = derive_signing_keypair(keypair)
    assert signing == derive_signing_keypair(SENDER_SK)
    assert signing.verify_key != keypair.public_key
    assert signing.signing_key != keypair.private_key


# Envelope cipher

def test_example_scenario():
    recipient = keypair_from_private(RECIPIENT_SK)
    sender = keypair_from_private(SENDER_SK)

    envelope = encrypt(SENDER_SK, recipient.public_key_hex, "hello")
    assert envelope.sender_pk == sender.public_key_hex

    assert decrypt(RECIPIENT_SK, envelope.sender_pk, envelope.cipher, envelope.nonce) == "hello"

    with pytest.raises(DecryptionFailed):
        decrypt(STRANGER_SK, envelope.sender_pk, envelope.cipher, envelope.nonce)


@pytest.mark.parametrize("plaintext", ["", "hello", "Привет, 世界 🔐", "x" * 10000])
def test_round_trip(plaintext):
    alice = generate_keypair()
    bob = generate_keypair()
    envelope = encrypt(alice.private_key, bob.public_key, plaintext)
    assert decrypt(bob.private_key, alice.public_key, envelope.cipher, envelope.nonce) == plaintext
    assert open_envelope(bob.private_key, envelope) == plaintext


def test_envelope_field_sizes():
    bob = generate_keypair()
    envelope = encrypt(SENDER_SK, bob.public_key, "hello")
    assert len(base64_to_bytes(envelope.nonce)) == 24
    assert len(base64_to_bytes(envelope.cipher)) == len(b"hello") + 16
    assert len(hex_to_bytes(envelope.sender_pk)) == 32


def test_every_bit_flip_is_detected():
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(SENDER_SK, bob.public_key, "tamper test")
    cipher = base64_to_bytes(envelope.cipher)
    nonce = base64_to_bytes(envelope.nonce)

    for i in range(len(cipher) * 8):
        with pytest.raises(DecryptionFailed):
            decrypt(RECIPIENT_SK, envelope.sender_pk, bytes_to_base64(flip_bit(cipher, i)), envelope.nonce)

    for i in range(len(nonce) * 8):
        with pytest.raises(DecryptionFailed):
            decrypt(RECIPIENT_SK, envelope.sender_pk, envelope.cipher, bytes_to_base64(flip_bit(nonce, i)))


def test_truncation_and_short_nonce_fail_the_same_way():
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(SENDER_SK, bob.public_key, "hello")
    cipher = base64_to_bytes(envelope.cipher)
    nonce = base64_to_bytes(envelope.nonce)

    cases = [
        (cipher[:-1], nonce),
        (cipher[:15], nonce),
        (b"", nonce),
        (cipher, nonce[:23]),
    ]
    messages = set()
    for bad_cipher, bad_nonce in cases:
        with pytest.raises(DecryptionFailed) as excinfo:
            decrypt(RECIPIENT_SK, envelope.sender_pk, bytes_to_base64(bad_cipher), bytes_to_base64(bad_nonce))
        messages.add(str(excinfo.value))
    assert len(messages) == 1


def test_wrong_sender_key_rejected():
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(SENDER_SK, bob.public_key, "hello")
    impostor = generate_keypair()
    with pytest.raises(DecryptionFailed):
        decrypt(RECIPIENT_SK, impostor.public_key, envelope.cipher, envelope.nonce)


def test_bad_base64_is_encoding_error():
    with pytest.raises(EncodingError):
        decrypt(RECIPIENT_SK, keypair_from_private(SENDER_SK).public_key, "not base64!", "AAAA")


def test_malformed_keys_rejected_by_encrypt():
    with pytest.raises(KeyFormatError):
        encrypt(b"\x11" * 16, keypair_from_private(RECIPIENT_SK).public_key, "hello")
    with pytest.raises(KeyFormatError):
        encrypt(SENDER_SK, b"\x22" * 31, "hello")


@pytest.mark.parametrize("recipient_sk, sender_pk", [
    (b"\x22" * 31, LOW_ORDER_PK),
    ("0x" + "22" * 31 + "2", LOW_ORDER_PK),
    (RECIPIENT_SK, b"\x11" * 33),
    (RECIPIENT_SK, "abc"),
    (RECIPIENT_SK, "zz" * 32),
])
def test_malformed_keys_rejected_by_decrypt(recipient_sk, sender_pk):
    envelope = encrypt(SENDER_SK, keypair_from_private(RECIPIENT_SK).public_key, "hello")
    with pytest.raises(KeyFormatError):
        decrypt(recipient_sk, sender_pk, envelope.cipher, envelope.nonce)


def test_low_order_recipient_key_rejected_by_encrypt():
    with pytest.raises(KeyFormatError):
        encrypt(SENDER_SK, LOW_ORDER_PK, "hi")


def test_low_order_sender_key_fails_like_a_bad_tag():
    envelope = encrypt(SENDER_SK, keypair_from_private(RECIPIENT_SK).public_key, "hello")
    with pytest.raises(DecryptionFailed) as excinfo:
        decrypt(RECIPIENT_SK, LOW_ORDER_PK, envelope.cipher, envelope.nonce)
    assert str(excinfo.value) == str(DecryptionFailed())

    forged = EncryptedEnvelope(cipher=envelope.cipher, nonce=envelope.nonce, sender_pk="00" * 32)
    with pytest.raises(DecryptionFailed):
        open_envelope(RECIPIENT_SK, forged)


def test_unencodable_message_rejected():
    with pytest.raises(EncodingError):
        encrypt(SENDER_SK, keypair_from_private(RECIPIENT_SK).public_key, "lone \ud800 surrogate")


def test_fresh_nonce_per_message():
    bob = keypair_from_private(RECIPIENT_SK)
    first = encrypt(SENDER_SK, bob.public_key, "same")
    second = encrypt(SENDER_SK, bob.public_key, "same")
    assert first.nonce != second.nonce
    assert first.cipher != second.cipher


def test_injected_random_source_gives_reproducible_envelope():
    bob = keypair_from_private(RECIPIENT_SK)
    first = encrypt(SENDER_SK, bob.public_key, "hello", random_source=fixed_source(7))
    second = encrypt(SENDER_SK, bob.public_key, "hello", random_source=fixed_source(7))
    assert first == second
    assert base64_to_bytes(first.nonce) == b"\x07" * 24


def test_short_random_source_is_an_error():
    with pytest.raises(ValueError):
        encrypt(SENDER_SK, keypair_from_private(RECIPIENT_SK).public_key, "hello", random_source=lambda n: b"\x00")


def test_decrypt_is_repeatable():
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(SENDER_SK, bob.public_key, "again")
    results = {open_envelope(RECIPIENT_SK, envelope) for _ in range(3)}
    assert results == {"again"}


def test_envelope_wire_format():
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(SENDER_SK, bob.public_key, "hello")
    wire = envelope.to_dict()
    assert set(wire) == {"cipher", "nonce", "senderPk"}
    assert EncryptedEnvelope.from_dict(wire) == envelope
    assert EncryptedEnvelope.from_json(envelope.to_json()) == envelope

    with pytest.raises(EncodingError):
        EncryptedEnvelope.from_dict({"cipher": "AAAA", "nonce": "AAAA"})
    with pytest.raises(EncodingError):
        EncryptedEnvelope.from_json("[1, 2]")
    with pytest.raises(EncodingError):
        EncryptedEnvelope.from_dict(["cipher", "nonce", "senderPk"])


def test_concurrent_encrypt_uses_distinct_nonces():
    bob = keypair_from_private(RECIPIENT_SK)
    with ThreadPoolExecutor(max_workers=8) as pool:
        envelopes = list(pool.map(lambda i: encrypt(SENDER_SK, bob.public_key, f"msg {i}"), range(200)))
    assert len({e.nonce for e in envelopes}) == 200
    assert open_envelope(RECIPIENT_SK, envelopes[42]) == "msg 42"


# Key rotation

def test_rotate_produces_verifiable_record():
    old = keypair_from_private(SENDER_SK)
    new_keypair, record = rotate(SENDER_SK, previous_version=4)

    assert new_keypair.public_key != old.public_key
    assert new_keypair.private_key != old.private_key
    assert record.version == 5
    assert record.old_public_key == old.public_key_hex
    assert record.new_public_key == new_keypair.public_key_hex
    assert len(base64_to_bytes(record.signature)) == 64

    old_verify_key = derive_signing_keypair(old).verify_key
    assert verify_rotation(record, old_verify_key)
    assert record.new_verify_key == derive_signing_keypair(new_keypair).verify_key_hex


def test_rotated_key_encrypts():
    new_keypair, _ = rotate(SENDER_SK)
    bob = keypair_from_private(RECIPIENT_SK)
    envelope = encrypt(new_keypair.private_key, bob.public_key, "after rotation")
    assert envelope.sender_pk == new_keypair.public_key_hex
    assert open_envelope(RECIPIENT_SK, envelope) == "after rotation"


def test_forged_or_altered_record_rejected():
    _, record = rotate(SENDER_SK, 1)
    attacker = generate_keypair()

    swapped = KeyRotationRecord(**{**record.__dict__, 'new_public_key': attacker.public_key_hex})
    assert not verify_rotation(swapped)

    bumped = KeyRotationRecord(**{**record.__dict__, 'version': 7})
    assert not verify_rotation(bumped)

    # Signed by someone else entirely
    _, forged = rotate(attacker.private_key, 1)
    assert verify_rotation(forged)
    assert not verify_rotation(forged, record.old_verify_key)

    garbage = KeyRotationRecord(**{**record.__dict__, 'signature': "%%%"})
    assert not verify_rotation(garbage)


def test_rotate_rejects_bad_input():
    with pytest.raises(KeyFormatError):
        rotate(b"\x11" * 30)
    with pytest.raises(KeyFormatError):
        rotate("0x11")
    with pytest.raises(ValueError):
        rotate(SENDER_SK, previous_version=-1)
    with pytest.raises(ValueError):
        rotate(SENDER_SK, previous_version=True)


def test_rotate_with_injected_randomness_is_reproducible():
    first = rotate(SENDER_SK, 0, random_source=fixed_source(9))
    second = rotate(SENDER_SK, 0, random_source=fixed_source(9))
    assert first == second


def test_record_dict_round_trip():
    _, record = rotate(SENDER_SK, 2)
    data = record.to_dict()
    assert data['version'] == 3
    assert KeyRotationRecord.from_dict(data) == record

    del data['signature']
    with pytest.raises(EncodingError):
        KeyRotationRecord.from_dict(data)


def test_rotation_chain():
    root = keypair_from_private(SENDER_SK)
    root_verify = derive_signing_keypair(root).verify_key

    records = []
    current, version = root, 0
    for _ in range(3):
        current, record = rotate(current.private_key, version)
        version = record.version
        records.append(record)

    public_key, verify_key, final_version = verify_rotation_chain(records, root.public_key, root_verify)
    assert public_key == current.public_key_hex
    assert verify_key == derive_signing_keypair(current).verify_key_hex
    assert final_version == 3

    with pytest.raises(RotationChainError):
        verify_rotation_chain([records[0], records[2]], root.public_key, root_verify)
    with pytest.raises(RotationChainError):
        verify_rotation_chain(records, root.public_key, root_verify, trusted_version=1)
    with pytest.raises(RotationChainError):
        verify_rotation_chain(records, root.public_key, generate_keypair().public_key)
