from .common import *

def title_key_iv(title_id): # Title ID followed by 8 zero bytes
    title_id = bytes(title_id)
    if len(title_id) != 8:
        raise CryptoError(f'Title ID must be 8 bytes (was {len(title_id)})')
    return title_id + (b'\0' * 8)

def content_iv(index): # Content index as BE u16 followed by 14 zero bytes
    if not 0 <= index <= 0xFFFF:
        raise CryptoError(f'Content index {index} does not fit in 16 bits')
    return int16tobytes(index) + (b'\0' * 14)

def decrypt_title_key(enc_titlekey, common_key_index, title_id, common_keys):
    return Crypto.aes_cbc_decrypt(get_common_key(common_keys, common_key_index), title_key_iv(title_id), enc_titlekey)

def encrypt_title_key(titlekey, common_key_index, title_id, common_keys):
    return Crypto.aes_cbc_encrypt(get_common_key(common_keys, common_key_index), title_key_iv(title_id), titlekey)

def decrypt_content(titlekey, index, ciphertext, declared_size):
    '''
    titlekey: decrypted title key
    index: content index from the TMD (not the position in the content list)
    ciphertext: encrypted content, padded to 16 bytes
    declared_size: size from the content record; the decrypted data is cut to this length
    '''
    if len(ciphertext) % 16 != 0:
        raise CryptoError(f'Content {index} ciphertext is {len(ciphertext)} bytes, not a multiple of 16')
    if len(ciphertext) < declared_size:
        raise CryptoError(f'Content {index} ciphertext is {len(ciphertext)} bytes but {declared_size} are declared')
    return Crypto.aes_cbc_decrypt(titlekey, content_iv(index), ciphertext)[:declared_size]

def encrypt_content(titlekey, index, plaintext):
    return Crypto.aes_cbc_encrypt(titlekey, content_iv(index), pad_to(bytes(plaintext), 16))

def verify_content(plaintext, record):
    return len(plaintext) == record.content_size and Crypto.sha1(plaintext) == bytes(record.content_hash)
