import os, sys, string, struct, hashlib, logging, warnings

from ctypes import *
from Crypto.Cipher import AES
from Crypto.PublicKey import RSA
from Crypto.Hash import SHA1
from Crypto.Signature import pkcs1_15

logger = logging.getLogger(__name__)

FAKESIGN_ATTEMPTS = 0x10000 # Every value of a 16-bit counter field

class RVLError(Exception):
    pass

class FormatError(RVLError):
    '''Truncated, malformed or self-inconsistent binary structure'''

class CryptoError(RVLError):
    pass

class UnknownKeyIndexError(CryptoError):
    def __init__(self, index):
        super().__init__(f'Common key index {index} is not in the key table')
        self.index = index

class SignatureError(CryptoError):
    pass

class IntegrityError(RVLError):
    def __init__(self, index, failed=None):
        self.index = index
        self.failed = list(failed) if failed is not None else [index]
        super().__init__(f'Content at index {index} does not match its TMD hash (failed: {self.failed})')

class CodecError(RVLError):
    pass

class TruncatedInputError(CodecError):
    pass

class LengthMismatchError(CodecError):
    def __init__(self, expected, got):
        super().__init__(f'Expected {expected} decompressed bytes but got {got}')
        self.expected = expected
        self.got = got

class FakesignError(RVLError):
    pass

class FakesignNotFoundError(FakesignError):
    pass

def readle(b):
    return int.from_bytes(b, 'little')

def readbe(b):
    return int.from_bytes(b, 'big')

def int16tobytes(x):
    return int.to_bytes(x, 2, 'big')

def int32tobytes(x):
    return int.to_bytes(x, 4, 'big')

def int64tobytes(x):
    return int.to_bytes(x, 8, 'big')

def hextobytes(s):
	return bytes.fromhex(s)

def align(size, alignment): # Returns (min) number needed to be added to 'size' so 'size' is a multiple of 'alignment'
	if size % alignment != 0:
		return alignment - (size % alignment)
	else:
		return 0

def roundup(size, alignment):
	if size % alignment != 0:
		return size + alignment - (size % alignment)
	else:
		return size

def pad_to(data, alignment):
    return data + b'\x00' * align(len(data), alignment)

def titleid_tobytes(titleID): # Accepts 8 bytes, a 16-char hex string or an int
    if isinstance(titleID, str):
        if not all([i in string.hexdigits for i in titleID]) or len(titleID) != 16:
            raise ValueError(f'Invalid TitleID: {titleID!r}')
        return hextobytes(titleID)
    if isinstance(titleID, int):
        return int64tobytes(titleID)
    titleID = bytes(titleID)
    if len(titleID) != 8:
        raise ValueError(f'TitleID must be 8 bytes (was {len(titleID)})')
    return titleID

def get_common_key(common_keys, index):
    try:
        key = common_keys[index]
    except (KeyError, IndexError, TypeError):
        raise UnknownKeyIndexError(index) from None
    if key is None:
        raise UnknownKeyIndexError(index)
    return bytes(key)

def brute_sha1(set_counter, signed_region, attempts=FAKESIGN_ATTEMPTS):
    '''
    Step a counter field until the SHA-1 of the signed region starts with a zero byte.
    set_counter: called with each candidate value
    signed_region: returns the bytes covered by the signature after the counter is set
    '''
    for i in range(attempts):
        set_counter(i)
        if Crypto.sha1(signed_region())[0] == 0:
            logger.debug('Fakesign counter found after %d attempts: %#06x', i + 1, i)
            return i
    raise FakesignNotFoundError(f'No fakesign counter found in {attempts} attempts')

class MatchFinder:
    '''Longest-match search over a sliding window, keyed on 3-byte prefixes'''

    def __init__(self, data, window, max_len, max_chain=128):
        self.data = data
        self.window = window
        self.max_len = max_len
        self.max_chain = max_chain
        self.chains = {}

    def insert(self, pos):
        if pos + 3 <= len(self.data):
            chain = self.chains.setdefault(self.data[pos:pos + 3], [])
            chain.append(pos)
            if len(chain) > self.max_chain * 2:
                del chain[:-self.max_chain]

    def find(self, pos): # Returns (length, distance); length is 0 if there is no match of at least 3 bytes
        data = self.data
        limit = min(self.max_len, len(data) - pos)
        if limit < 3:
            return 0, 0
        chain = self.chains.get(data[pos:pos + 3])
        if not chain:
            return 0, 0

        best_len = best_dist = 0
        for cand in reversed(chain[-self.max_chain:]): # Nearest candidates first
            dist = pos - cand
            if dist > self.window:
                break
            length = 3
            while length < limit and data[cand + length] == data[pos + length]: # Overlapping copies are fine
                length += 1
            if length > best_len:
                best_len, best_dist = length, dist
                if length == limit:
                    break
        return best_len, best_dist

class Crypto:
	def aes_cbc_decrypt(key: bytes, iv: bytes, data: bytes):
		Crypto._check_aes(key, iv, data)
		return AES.new(bytes(key), AES.MODE_CBC, iv=bytes(iv)).decrypt(bytes(data))

	def aes_cbc_encrypt(key: bytes, iv: bytes, data: bytes):
		Crypto._check_aes(key, iv, data)
		return AES.new(bytes(key), AES.MODE_CBC, iv=bytes(iv)).encrypt(bytes(data))

	def _check_aes(key, iv, data):
		if len(key) != 16:
			raise CryptoError(f'AES-128 key must be 16 bytes (was {len(key)})')
		if len(iv) != 16:
			raise CryptoError(f'AES IV must be 16 bytes (was {len(iv)})')
		if len(data) % 16 != 0:
			raise CryptoError(f'AES-CBC data length must be a multiple of 16 (was {len(data)})')

	def sha1(data: bytes):
		return hashlib.sha1(data).digest()

	def sign_rsa_sha1(mod: bytes, priv: bytes, data: bytes, exp=0x10001):
		try:
			x = pkcs1_15.new(RSA.construct((readbe(mod), exp, readbe(priv))))
		except ValueError as e:
			raise CryptoError(f'Invalid RSA private key: {e}') from e
		h = SHA1.new(data)
		try:
			sig = x.sign(h)
		except (ValueError, TypeError) as e:
			raise CryptoError(f'RSA signing failed: {e}') from e
		return sig

	def verify_rsa_sha1(mod: bytes, data: bytes, sig: bytes, exp=0x10001):
		try:
			x = pkcs1_15.new(RSA.construct((readbe(mod), exp)))
		except ValueError as e:
			raise CryptoError(f'Invalid RSA public key: {e}') from e
		h = SHA1.new(data)
		try:
			x.verify(h, sig)
			return True
		except (ValueError, TypeError):
			return False
