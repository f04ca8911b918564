from enum import IntEnum

from .common import *
from .rvl_tik import read_signature

logger = logging.getLogger(__name__)

class KeyType(IntEnum):
    RSA_4096 = 0
    RSA_2048 = 1
    ECC_B233 = 2

class CertificateInfo(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('issuer', c_char * 0x40),
        ('key_type', c_uint32),
        ('name', c_char * 0x40),
        ('key_id', c_uint32),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class RSA4096PubKey(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('mod', c_uint8 * 0x200),
        ('pub_exp', c_uint32),
        ('reserved', c_uint8 * 0x34),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class RSA2048PubKey(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('mod', c_uint8 * 0x100),
        ('pub_exp', c_uint32),
        ('reserved', c_uint8 * 0x34),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class ECCPubKey(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('key', c_uint8 * 0x3C),
        ('reserved', c_uint8 * 0x3C),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

key_types = {
    KeyType.RSA_4096: RSA4096PubKey,
    KeyType.RSA_2048: RSA2048PubKey,
    KeyType.ECC_B233: ECCPubKey,
}

class Certificate:
    def __init__(self, data):
        data = bytes(data)
        self.sig_type, self.sig, self.sig_padding, info_start = read_signature(data, 'Certificate')
        key_start = info_start + sizeof(CertificateInfo)
        if len(data) < key_start:
            raise FormatError(f'Certificate is truncated at offset {hex(len(data))} (info ends at {hex(key_start)})')
        self.info = CertificateInfo(data[info_start:key_start])

        if self.info.key_type not in key_types:
            raise FormatError(f'Certificate has unknown key type {self.info.key_type} at offset {hex(info_start + 0x40)}')
        self.key_type = KeyType(self.info.key_type)
        key_struct = key_types[self.key_type]
        end = key_start + sizeof(key_struct)
        if len(data) < end:
            raise FormatError(f'Certificate is truncated at offset {hex(len(data))} (public key ends at {hex(end)})')
        self.pubkey = key_struct(data[key_start:end])
        self.size = end

    @classmethod
    def parse(cls, data):
        return cls(data)

    @property
    def issuer(self):
        return self.info.issuer.decode('ascii', errors='replace')

    @property
    def name(self):
        return self.info.name.decode('ascii', errors='replace')

    @property
    def full_name(self): # What the issuer field of anything signed by this certificate reads
        return f'{self.issuer}-{self.name}'

    def signed_region(self):
        return bytes(self.info) + bytes(self.pubkey)

    def serialize(self):
        return int32tobytes(self.sig_type) + self.sig + self.sig_padding + self.signed_region()

    def __bytes__(self):
        return self.serialize()

    def __str__(self):
        return f'{self.full_name} ({self.key_type.name}, signed with {self.sig_type.name})'

def verify_signature(cert, signed):
    '''
    Check one RSA signature; the chain above 'cert' is not checked.
    cert: Certificate holding the signer's public key
    signed: Ticket, TMD or Certificate
    '''
    if cert.key_type == KeyType.ECC_B233:
        raise SignatureError(f'Cannot check signatures made with ECC certificate {cert.full_name}')
    if signed.issuer.split('-')[-1] != cert.name:
        logger.debug('Issuer %s was not signed by %s', signed.issuer, cert.full_name)
        return False
    return Crypto.verify_rsa_sha1(bytes(cert.pubkey.mod), signed.signed_region(), signed.sig, cert.pubkey.pub_exp)

class CertificateChain:
    def __init__(self, data=b''):
        data = bytes(data)
        self.certs = []
        offset = 0
        while offset < len(data):
            try:
                cert = Certificate(data[offset:])
            except FormatError as e:
                raise FormatError(f'Certificate chain entry at offset {hex(offset)}: {e}') from e
            self.certs.append(cert)
            offset += cert.size
        logger.debug('Parsed certificate chain: %s', ', '.join(i.name for i in self.certs))

    @classmethod
    def parse(cls, data):
        return cls(data)

    def by_name(self, name):
        for i in self.certs:
            if i.name == name:
                return i
        return None

    def issuer_of(self, signed): # Certificate named by the last component of 'signed.issuer'
        return self.by_name(signed.issuer.split('-')[-1])

    def ca_cert(self):
        return next((i for i in self.certs if i.name.startswith('CA')), None)

    def tmd_cert(self):
        return next((i for i in self.certs if i.name.startswith('CP')), None)

    def ticket_cert(self):
        return next((i for i in self.certs if i.name.startswith('XS')), None)

    def serialize(self):
        return b''.join(i.serialize() for i in self.certs)

    def __bytes__(self):
        return self.serialize()

    def __len__(self):
        return len(self.certs)
