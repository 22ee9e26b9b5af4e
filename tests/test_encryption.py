"""Tests for refresh token encryption."""

from cryptography.fernet import Fernet

from vendor_tracker.db.encryption import build_cipher, normalize_key


def test_rotated_key_still_decrypts():
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()

    token = build_cipher(old_key).encrypt(b"Atzr|secret")

    assert build_cipher(f"{new_key},{old_key}").decrypt(token) == b"Atzr|secret"


def test_passphrase_key():
    key = normalize_key("not a fernet key")
    cipher = build_cipher("not a fernet key")

    assert len(key) == 44
    assert cipher.decrypt(cipher.encrypt(b"x")) == b"x"
