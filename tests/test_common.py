import pytest
from Crypto.PublicKey import RSA

from rvlib.common import *

KEY = RSA.generate(1024)
MOD = KEY.n.to_bytes(128, 'big')
PRIV = KEY.d.to_bytes(128, 'big')


class TestHelpers:
    def test_align(self):
        assert align(0, 64) == 0
        assert align(1, 64) == 63
        assert align(64, 64) == 0
        assert roundup(0x21, 16) == 0x30
        assert roundup(0x30, 16) == 0x30

    def test_pad_to(self):
        assert pad_to(b'abc', 4) == b'abc\x00'
        assert pad_to(b'abcd', 4) == b'abcd'
        assert len(pad_to(b'\x01' * 65, 64)) == 128

    def test_titleid(self):
        expected = hextobytes('0001000157415445')
        assert titleid_tobytes('0001000157415445') == expected
        assert titleid_tobytes(0x0001000157415445) == expected
        assert titleid_tobytes(expected) == expected
        with pytest.raises(ValueError):
            titleid_tobytes('00010001')
        with pytest.raises(ValueError):
            titleid_tobytes('000100015741544z')
        with pytest.raises(ValueError):
            titleid_tobytes(b'\x00' * 4)

    def test_common_key_lookup(self):
        keys = {0: b'\x01' * 16}
        assert get_common_key(keys, 0) == b'\x01' * 16
        assert get_common_key([b'\x02' * 16], 0) == b'\x02' * 16
        with pytest.raises(UnknownKeyIndexError) as e:
            get_common_key(keys, 1)
        assert e.value.index == 1
        with pytest.raises(CryptoError):
            get_common_key(None, 0)
        with pytest.raises(UnknownKeyIndexError):
            get_common_key({0: None}, 0)


class TestCrypto:
    def test_aes_cbc(self):
        key = bytes(range(16))
        iv = b'\x00' * 16
        data = b'0123456789abcdef' * 3
        enc = Crypto.aes_cbc_encrypt(key, iv, data)
        assert enc != data
        assert len(enc) == len(data)
        assert Crypto.aes_cbc_decrypt(key, iv, enc) == data

    def test_aes_rejects_bad_input(self):
        with pytest.raises(CryptoError):
            Crypto.aes_cbc_decrypt(b'\x00' * 15, b'\x00' * 16, b'\x00' * 16)
        with pytest.raises(CryptoError):
            Crypto.aes_cbc_decrypt(b'\x00' * 16, b'\x00' * 8, b'\x00' * 16)
        with pytest.raises(CryptoError):
            Crypto.aes_cbc_encrypt(b'\x00' * 16, b'\x00' * 16, b'\x00' * 17)

    def test_sha1(self):
        assert Crypto.sha1(b'abc').hex() == 'a9993e364706816aba3e25717850c26c9cd0d89d'

    def test_rsa_sign_verify(self):
        sig = Crypto.sign_rsa_sha1(MOD, PRIV, b'signed data')
        assert len(sig) == 128
        assert Crypto.verify_rsa_sha1(MOD, b'signed data', sig)
        assert not Crypto.verify_rsa_sha1(MOD, b'other data', sig)
        assert not Crypto.verify_rsa_sha1(MOD, b'signed data', b'\x00' * 128)
        assert not Crypto.verify_rsa_sha1(MOD, b'signed data', b'\x00' * 3)

    def test_rsa_bad_key(self):
        with pytest.raises(CryptoError):
            Crypto.verify_rsa_sha1(MOD, b'data', b'\x00' * 128, exp=1)


class TestFakesignSearch:
    def test_finds_counter(self):
        state = {'counter': 0}
        def set_counter(i):
            state['counter'] = i
        def region():
            return b'body' + int16tobytes(state['counter'])

        found = brute_sha1(set_counter, region)
        assert found == state['counter']
        assert Crypto.sha1(region())[0] == 0

    def test_gives_up(self):
        with pytest.raises(FakesignNotFoundError):
            brute_sha1(lambda i: None, lambda: b'abc', attempts=16)
        with pytest.raises(FakesignError):
            brute_sha1(lambda i: None, lambda: b'abc', attempts=0)


class TestMatchFinder:
    def test_finds_nearest_longest(self):
        data = b'abcdXabcdYabcd'
        finder = MatchFinder(data, 0x1000, 18)
        for i in range(10):
            finder.insert(i)
        assert finder.find(10) == (4, 5)

    def test_respects_window(self):
        data = b'abc' + b'x' * 20 + b'abc'
        finder = MatchFinder(data, 8, 18)
        for i in range(23):
            finder.insert(i)
        assert finder.find(23) == (0, 0)

    def test_overlapping(self):
        data = b'aaaaaaaaaa'
        finder = MatchFinder(data, 0x1000, 18)
        finder.insert(0)
        assert finder.find(1) == (9, 1)
