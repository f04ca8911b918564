from enum import IntEnum

from .common import *
from .rvl_crypto import decrypt_title_key, encrypt_title_key

logger = logging.getLogger(__name__)

TIK_BODY_SIZE = 0x164
TIK_COUNTER_OFFSET = 0xA4 # 'unknown2' within the body, stepped when fakesigning
TIK_V1_HDR_SIZE = 0x14

class SigType(IntEnum):
    RSA_4096 = 0x00010000
    RSA_2048 = 0x00010001
    ECC_B233 = 0x00010002

signature_types = { # Each tuple is (signature size, size of padding after signature)
    SigType.RSA_4096: (0x200, 0x3C),
    SigType.RSA_2048: (0x100, 0x3C),
    SigType.ECC_B233: (0x3C, 0x40),
}

def read_signature(data, name):
    '''
    Split the signature block off the front of a signed blob.
    Returns (sig_type, signature, padding, offset of the signed body)
    '''
    if len(data) < 4:
        raise FormatError(f'{name} is truncated at offset 0 (signature type)')
    tag = readbe(data[:4])
    if tag not in signature_types:
        raise FormatError(f'{name} has unknown signature type {hex(tag)} at offset 0')
    sig_type = SigType(tag)
    sig_size, pad_size = signature_types[sig_type]
    body = 4 + sig_size + pad_size
    if len(data) < body:
        raise FormatError(f'{name} is truncated at offset {hex(len(data))} (signature block ends at {hex(body)})')
    return sig_type, data[4:4 + sig_size], data[4 + sig_size:body], body

class TitleLimit(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('limit_type', c_uint32),
        ('limit_max', c_uint32),
    ]

class tikData(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('issuer', c_char * 0x40),
        ('ecdh_data', c_uint8 * 0x3C),
        ('format_ver', c_uint8),
        ('reserved1', c_uint8 * 2),
        ('enc_titlekey', c_uint8 * 16),
        ('unknown1', c_uint8),
        ('ticketID', c_uint64),
        ('consoleID', c_uint32),
        ('titleID', c_uint8 * 8),
        ('unknown2', c_uint16),
        ('title_ver', c_uint16),
        ('permitted_titles_mask', c_uint32),
        ('permit_mask', c_uint32),
        ('title_export_allowed', c_uint8),
        ('common_key_index', c_uint8),
        ('reserved2', c_uint8 * 0x30),
        ('content_access_permissions', c_uint8 * 0x40),
        ('reserved3', c_uint16),
        ('limits', TitleLimit * 8),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class Ticket:
    def __init__(self, data):
        data = bytes(data)
        self.sig_type, self.sig, self.sig_padding, body = read_signature(data, 'Ticket')
        if len(data) < body + TIK_BODY_SIZE:
            raise FormatError(f'Ticket is truncated at offset {hex(len(data))} (body ends at {hex(body + TIK_BODY_SIZE)})')
        self.data = tikData(data[body:body + TIK_BODY_SIZE])
        self.extra = data[body + TIK_BODY_SIZE:] # v1 section and/or appended certificates, kept as-is
        self.v1_size = 0 # Bytes of 'extra' covered by the signature
        if self.data.format_ver == 1:
            if len(self.extra) < TIK_V1_HDR_SIZE:
                raise FormatError(f'v1 ticket is truncated at offset {hex(len(data))} (v1 header ends at {hex(body + TIK_BODY_SIZE + TIK_V1_HDR_SIZE)})')
            self.v1_size = readbe(self.extra[4:8])
            if not TIK_V1_HDR_SIZE <= self.v1_size <= len(self.extra):
                raise FormatError(f'v1 ticket section at offset {hex(body + TIK_BODY_SIZE)} declares {hex(self.v1_size)} bytes but {hex(len(self.extra))} follow the body')
        logger.debug('Parsed ticket for %s (%s, %d trailing bytes)', self.titleID, self.sig_type.name, len(self.extra))

    @classmethod
    def parse(cls, data):
        return cls(data)

    @property
    def title_id(self):
        return bytes(self.data.titleID)

    @property
    def titleID(self):
        return hex(readbe(self.title_id))[2:].zfill(16)

    @property
    def issuer(self):
        return self.data.issuer.decode('ascii', errors='replace')

    @property
    def common_key_index(self):
        return self.data.common_key_index

    @property
    def title_version(self):
        return self.data.title_ver

    @title_version.setter
    def title_version(self, value):
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f'Title version {value} does not fit in 16 bits')
        self.data.title_ver = value

    @property
    def title_limits(self):
        return tuple((i.limit_type, i.limit_max) for i in self.data.limits)

    def is_dev(self): # Signed by one of the development XS certificates
        return 'Root-CA00000002-XS00000004' in self.issuer or 'Root-CA00000002-XS00000006' in self.issuer

    def signed_region(self): # Body, plus the v1 section for v1 tickets
        return bytes(self.data) + self.extra[:self.v1_size]

    def decrypted_title_key(self, common_keys):
        return decrypt_title_key(bytes(self.data.enc_titlekey), self.data.common_key_index, self.title_id, common_keys)

    def set_title_key(self, titlekey, common_keys):
        titlekey = bytes(titlekey)
        if len(titlekey) != 16:
            raise CryptoError(f'Title key must be 16 bytes (was {len(titlekey)})')
        enc_titlekey = encrypt_title_key(titlekey, self.data.common_key_index, self.title_id, common_keys)
        self.data.enc_titlekey = (c_uint8 * sizeof(self.data.enc_titlekey))(*enc_titlekey)

    def set_title_id(self, titleID, common_keys=None):
        '''
        titleID: 8 bytes, hex string or int
        common_keys: if given, the title key is re-encrypted so it still decrypts under the new TitleID
        '''
        titleID_bytes = titleid_tobytes(titleID)
        if common_keys is not None:
            titlekey = self.decrypted_title_key(common_keys)
        self.data.titleID = (c_uint8 * sizeof(self.data.titleID))(*titleID_bytes)
        if common_keys is not None:
            self.set_title_key(titlekey, common_keys)

    def set_common_key_index(self, index, common_keys=None):
        if not 0 <= index <= 0xFF:
            raise ValueError(f'Common key index {index} does not fit in 8 bits')
        if common_keys is not None:
            titlekey = self.decrypted_title_key(common_keys)
        self.data.common_key_index = index
        if common_keys is not None:
            self.set_title_key(titlekey, common_keys)

    def set_issuer(self, issuer):
        issuer = issuer.encode('ascii') if isinstance(issuer, str) else bytes(issuer)
        if len(issuer) > 0x40:
            raise ValueError(f'Issuer is {len(issuer)} bytes but the field holds 64')
        self.data.issuer = issuer.ljust(0x40, b'\0')

    def sign(self, mod, priv):
        sig = Crypto.sign_rsa_sha1(mod, priv, self.signed_region())
        if len(sig) != len(self.sig):
            raise SignatureError(f'{len(sig) * 8}-bit key cannot sign a {self.sig_type.name} ticket')
        self.sig = sig

    def fakesign(self):
        self.sig = b'\0' * len(self.sig)
        def set_counter(i):
            self.data.unknown2 = i
        brute_sha1(set_counter, self.signed_region)

    def is_fakesigned(self):
        return self.sig == b'\0' * len(self.sig) and Crypto.sha1(self.signed_region())[0] == 0

    def serialize(self):
        return int32tobytes(self.sig_type) + self.sig + self.sig_padding + bytes(self.data) + self.extra

    def __bytes__(self):
        return self.serialize()

    def __str__(self):
        limits = ''
        for limit_type, limit_max in self.title_limits:
            if limit_type:
                limits += f' > type {limit_type}: {limit_max}\n'
        limits = limits[:-1] if limits else ' > none'

        return (
            f'Issuer:            {self.issuer}{" [dev]" if self.is_dev() else ""}\n'
            f'Signature:         {self.sig_type.name}{" [fakesigned]" if self.is_fakesigned() else ""}\n'
            f'TitleKey:          {hex(readbe(bytes(self.data.enc_titlekey)))[2:].zfill(32)} (encrypted)\n'
            f'TicketID:          {hex(self.data.ticketID)[2:].zfill(16)}\n'
            f'ConsoleID:         {hex(self.data.consoleID)[2:].zfill(8)}\n'
            f'TitleID:           {self.titleID}\n'
            f'Title version:     {self.data.title_ver}\n'
            f'Common key index:  {self.data.common_key_index}\n'
            f'Limits:\n'
            f'{limits}'
        )
