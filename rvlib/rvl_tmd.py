from enum import IntEnum, IntFlag

from .common import *
from .rvl_tik import read_signature

logger = logging.getLogger(__name__)

TMD_HDR_SIZE = 0xA4
CONTENT_RECORD_SIZE = 0x24

class ContentType(IntFlag):
    NORMAL = 0x0001
    DEVELOPMENT = 0x0002 # 0x0003 marks a hash tree content
    LZ77 = 0x0010
    ASH = 0x0020
    DLC = 0x4000
    SHARED = 0x8000

class AccessRight(IntEnum):
    AHB = 0
    DVD_VIDEO = 1

title_types = {
    '00000001': 'System',
    '00010000': 'Game',
    '00010001': 'Channel',
    '00010002': 'SystemChannel',
    '00010004': 'GameChannel',
    '00010005': 'DLC',
    '00010008': 'HiddenChannel',
}

regions = {
    0: 'JPN',
    1: 'USA',
    2: 'EUR',
    3: 'None',
    4: 'KOR',
}

class TMDHdr(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('issuer', c_char * 0x40),
        ('format_ver', c_uint8),
        ('ca_crl_ver', c_uint8),
        ('signer_crl_ver', c_uint8),
        ('is_vwii', c_uint8),
        ('system_ver', c_uint64), # IOS TitleID
        ('titleID', c_uint8 * 8),
        ('title_type', c_uint32),
        ('groupID', c_uint16),
        ('reserved1', c_uint16),
        ('region', c_uint16),
        ('ratings', c_uint8 * 16),
        ('reserved2', c_uint8 * 12),
        ('ipc_mask', c_uint8 * 12),
        ('reserved3', c_uint8 * 18),
        ('access_rights', c_uint32),
        ('title_ver', c_uint16),
        ('content_count', c_uint16),
        ('boot_content', c_uint16),
        ('minor_ver', c_uint16),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class ContentRecord(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('contentID', c_uint32),
        ('content_index', c_uint16),
        ('content_type', c_uint16),
        ('content_size', c_uint64),
        ('content_hash', c_uint8 * 20),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

def new_content_record(contentID, content_type, data, content_index=0):
    '''
    contentID: content ID for the new record
    content_type: ContentType flags
    data: decrypted, uncompressed content; sets the size and SHA-1
    content_index: index to store (TMD.add_content replaces it with the next free index)
    '''
    record = ContentRecord(b'\x00' * CONTENT_RECORD_SIZE)
    record.contentID = contentID
    record.content_index = content_index
    record.content_type = content_type
    record.content_size = len(data)
    hashed = Crypto.sha1(data)
    record.content_hash = (c_uint8 * sizeof(record.content_hash))(*hashed)
    return record

class TMD:
    def __init__(self, data):
        data = bytes(data)
        self.sig_type, self.sig, self.sig_padding, hdr_start = read_signature(data, 'TMD')
        hdr_end = hdr_start + TMD_HDR_SIZE
        if len(data) < hdr_end:
            raise FormatError(f'TMD is truncated at offset {hex(len(data))} (header ends at {hex(hdr_end)})')
        self.hdr = TMDHdr(data[hdr_start:hdr_end])

        count = self.hdr.content_count
        available = (len(data) - hdr_end) // CONTENT_RECORD_SIZE
        if available < count:
            raise FormatError(f'TMD declares {count} content records at offset {hex(hdr_end)} but only {available} fit in {hex(len(data))} bytes')

        self._contents = []
        for i in range(count):
            offset = hdr_end + i * CONTENT_RECORD_SIZE
            self._contents.append(ContentRecord(data[offset:offset + CONTENT_RECORD_SIZE]))
        self.extra = data[hdr_end + count * CONTENT_RECORD_SIZE:] # Appended certificates, kept as-is
        logger.debug('Parsed TMD for %s with %d contents', self.titleID, count)

    @classmethod
    def parse(cls, data):
        return cls(data)

    @property
    def contents(self):
        return tuple(self._contents)

    @property
    def title_id(self):
        return bytes(self.hdr.titleID)

    @property
    def titleID(self):
        return hex(readbe(self.title_id))[2:].zfill(16)

    @property
    def issuer(self):
        return self.hdr.issuer.decode('ascii', errors='replace')

    @property
    def title_version(self):
        return self.hdr.title_ver

    def is_vwii(self):
        return self.hdr.is_vwii == 1

    def title_type(self):
        return title_types.get(self.titleID[:8], 'Unknown')

    def region(self):
        return regions.get(self.hdr.region, 'Unknown')

    def check_access_right(self, right):
        return self.hdr.access_rights & (1 << right) != 0

    def content_by_index(self, index):
        for i in self._contents:
            if i.content_index == index:
                return i
        return None

    def content_by_cid(self, contentID):
        for i in self._contents:
            if i.contentID == contentID:
                return i
        return None

    def add_content(self, record):
        if self.content_by_cid(record.contentID) is not None:
            raise ValueError(f'Content ID {hex(record.contentID)[2:].zfill(8)} is already in the TMD')
        index = max((i.content_index for i in self._contents), default=-1) + 1 # Parsed TMDs may have gaps in their indices
        if index > 0xFFFF:
            raise ValueError(f'No content index left after {hex(index - 1)}')
        record = ContentRecord(bytes(record))
        record.content_index = index
        self._contents.append(record)
        self.hdr.content_count = len(self._contents)
        return record

    def remove_content(self, position):
        if not 0 <= position < len(self._contents):
            raise IndexError(f'No content at position {position}')
        record = self._contents.pop(position)
        for i, j in enumerate(self._contents): # Keep indices contiguous
            j.content_index = i
        self.hdr.content_count = len(self._contents)
        return record

    def set_title_id(self, titleID):
        titleID_bytes = titleid_tobytes(titleID)
        self.hdr.titleID = (c_uint8 * sizeof(self.hdr.titleID))(*titleID_bytes)

    def set_issuer(self, issuer):
        issuer = issuer.encode('ascii') if isinstance(issuer, str) else bytes(issuer)
        if len(issuer) > 0x40:
            raise ValueError(f'Issuer is {len(issuer)} bytes but the field holds 64')
        self.hdr.issuer = issuer.ljust(0x40, b'\0')

    def signed_region(self):
        self.hdr.content_count = len(self._contents)
        return bytes(self.hdr) + b''.join(bytes(i) for i in self._contents)

    def sign(self, mod, priv):
        sig = Crypto.sign_rsa_sha1(mod, priv, self.signed_region())
        if len(sig) != len(self.sig):
            raise SignatureError(f'{len(sig) * 8}-bit key cannot sign a {self.sig_type.name} TMD')
        self.sig = sig

    def fakesign(self):
        self.sig = b'\0' * len(self.sig)
        def set_counter(i):
            self.hdr.minor_ver = i
        brute_sha1(set_counter, self.signed_region)

    def is_fakesigned(self):
        return self.sig == b'\0' * len(self.sig) and Crypto.sha1(self.signed_region())[0] == 0

    def serialize(self):
        return int32tobytes(self.sig_type) + self.sig + self.sig_padding + self.signed_region() + self.extra

    def __bytes__(self):
        return self.serialize()

    def __str__(self):
        contents = ''
        for i in self._contents:
            contents += f' > {hex(i.content_index)[2:].zfill(4)}\n'
            cid = f'   Content ID:     {hex(i.contentID)[2:].zfill(8)}'
            if i.content_type & ContentType.SHARED:
                cid += f' [shared]'
            if i.content_type & ContentType.DLC:
                cid += f' [dlc]'
            if i.content_type & ContentType.LZ77:
                cid += f' [lz77]'
            if i.content_type & ContentType.ASH:
                cid += f' [ash]'
            contents += f'{cid}\n'
            contents += f'   Content size:   {i.content_size}\n'
            contents += f'   Content hash:   {bytes(i.content_hash).hex()}\n'
        contents = contents[:-1] # Remove last '\n'

        return (
            f'TitleID:           {self.titleID} ({self.title_type()})\n'
            f'Title version:     {self.hdr.title_ver}\n'
            f'System version:    {hex(self.hdr.system_ver)[2:].zfill(16)}\n'
            f'Region:            {self.region()}\n'
            f'vWii:              {self.is_vwii()}\n'
            f'Signature:         {self.sig_type.name}{" [fakesigned]" if self.is_fakesigned() else ""}\n'
            f'Boot content:      {self.hdr.boot_content}\n'
            f'Contents:\n'
            f'{contents}'
        )
