import pytest

from rvlib.common import *
from rvlib.rvl_crypto import title_key_iv, content_iv, decrypt_title_key, encrypt_title_key, decrypt_content, encrypt_content, verify_content
from rvlib.rvl_tmd import ContentType, new_content_record

from builders import COMMON_KEYS, TITLEKEY

TITLEID_BYTES = hextobytes('0001000157415445')


class TestIVs:
    def test_title_key_iv(self):
        assert title_key_iv(TITLEID_BYTES) == TITLEID_BYTES + b'\x00' * 8
        with pytest.raises(CryptoError):
            title_key_iv(b'\x00' * 7)

    def test_content_iv(self):
        assert content_iv(0) == b'\x00' * 16
        assert content_iv(1) == b'\x00\x01' + b'\x00' * 14
        assert content_iv(0x1234) == b'\x12\x34' + b'\x00' * 14
        with pytest.raises(CryptoError):
            content_iv(0x10000)


class TestTitleKeyCrypto:
    def test_roundtrip(self):
        for index in COMMON_KEYS:
            for key in [TITLEKEY, b'\x00' * 16, b'\xff' * 16]:
                enc = encrypt_title_key(key, index, TITLEID_BYTES, COMMON_KEYS)
                assert enc != key
                assert decrypt_title_key(enc, index, TITLEID_BYTES, COMMON_KEYS) == key

    def test_unknown_index(self):
        with pytest.raises(UnknownKeyIndexError):
            decrypt_title_key(b'\x00' * 16, 3, TITLEID_BYTES, COMMON_KEYS)


class TestContentCrypto:
    def test_roundtrip(self):
        for size in [0, 5, 16, 32, 48, 1000]:
            plaintext = bytes(i & 0xFF for i in range(size))
            for index in [0, 1, 0xFFFF]:
                ciphertext = encrypt_content(TITLEKEY, index, plaintext)
                assert len(ciphertext) == roundup(size, 16)
                assert decrypt_content(TITLEKEY, index, ciphertext, size) == plaintext

    def test_index_is_the_iv(self):
        plaintext = b'A' * 32
        ciphertext = encrypt_content(TITLEKEY, 0, plaintext)
        assert ciphertext != encrypt_content(TITLEKEY, 1, plaintext)
        assert decrypt_content(TITLEKEY, 1, ciphertext, 32) != plaintext

    def test_bad_lengths(self):
        with pytest.raises(CryptoError):
            decrypt_content(TITLEKEY, 0, b'\x00' * 17, 17)
        with pytest.raises(CryptoError):
            decrypt_content(TITLEKEY, 0, b'\x00' * 16, 17)

    def test_verify(self):
        record = new_content_record(1, ContentType.NORMAL, b'payload')
        assert verify_content(b'payload', record)
        assert not verify_content(b'payloae', record)
        assert not verify_content(b'payload\x00', record)
