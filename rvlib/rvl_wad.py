from .common import *
from .rvl_tik import Ticket
from .rvl_tmd import TMD

logger = logging.getLogger(__name__)

WAD_ALIGNMENT = 64
WAD_HDR_SIZE = 0x20
BOOT2_TITLEID = '0000000100000001'

wad_types = {
    b'Is': 'Installable',
    b'ib': 'boot2',
}

sections = ['cert_chain', 'crl', 'ticket', 'tmd', 'content', 'meta'] # On-disk order after the header

class WADHdr(BigEndianStructure):
    _pack_ = 1

    _fields_ = [
        ('hdr_size', c_uint32), # 0x20 bytes
        ('wad_type', c_char * 2),
        ('wad_ver', c_uint16),
        ('cert_chain_size', c_uint32),
        ('crl_size', c_uint32),
        ('ticket_size', c_uint32),
        ('tmd_size', c_uint32),
        ('content_size', c_uint32),
        ('meta_size', c_uint32),
    ]

    def __new__(cls, buf):
        return cls.from_buffer_copy(buf)

    def __init__(self, data):
        pass

class WAD:
    def __init__(self, data):
        data = bytes(data)
        if len(data) < WAD_HDR_SIZE:
            raise FormatError(f'WAD header is truncated at offset {hex(len(data))}')
        self.hdr = WADHdr(data[:WAD_HDR_SIZE])
        if self.hdr.hdr_size != WAD_HDR_SIZE:
            raise FormatError(f'WAD header size at offset 0 is {hex(self.hdr.hdr_size)}, expected 0x20')
        if self.hdr.wad_type not in wad_types:
            raise FormatError(f'Unknown WAD type {self.hdr.wad_type!r} at offset 4')
        self.hdr_padding = data[WAD_HDR_SIZE:WAD_HDR_SIZE + 0x20] # Kept verbatim
        self.hdr_padding += b'\0' * (0x20 - len(self.hdr_padding))

        # Get offsets for WAD components
        sizes = {
            'cert_chain': self.hdr.cert_chain_size,
            'crl': self.hdr.crl_size,
            'ticket': self.hdr.ticket_size,
            'tmd': self.hdr.tmd_size,
            'content': roundup(self.hdr.content_size, 16), # Last content is only padded to the AES block size
            'meta': self.hdr.meta_size,
        }
        self.sections = {}
        curr = roundup(WAD_HDR_SIZE, WAD_ALIGNMENT)
        for name in sections:
            size = sizes[name]
            if curr + size > len(data):
                raise FormatError(f'WAD {name} section at offset {hex(curr)} ({hex(size)} bytes) runs past the end of the data ({hex(len(data))})')
            self.sections[name] = data[curr:curr + size]
            logger.debug('WAD %s section: offset %#x, size %#x', name, curr, size)
            curr = roundup(curr + size, WAD_ALIGNMENT)
        if curr < len(data):
            warnings.warn(f'Ignoring {len(data) - curr} bytes after the last WAD section')

        self._ticket = None
        self._tmd = None

    @classmethod
    def parse(cls, data):
        return cls(data)

    @classmethod
    def from_parts(cls, cert_chain, crl, ticket, tmd, content, meta=b''):
        '''
        cert_chain, crl, content, meta: raw section data
        ticket, tmd: raw data, or Ticket / TMD objects
        Type is 'ib' for boot2 and 'Is' for everything else
        '''
        if not isinstance(tmd, TMD):
            tmd = TMD(tmd)
        hdr = WADHdr(b'\x00' * WAD_HDR_SIZE)
        hdr.hdr_size = WAD_HDR_SIZE
        hdr.wad_type = b'ib' if tmd.titleID == BOOT2_TITLEID else b'Is'
        wad = cls(bytes(hdr) + b'\0' * 0x20)
        wad.cert_chain = bytes(cert_chain)
        wad.crl = bytes(crl)
        wad.ticket_data = bytes(ticket)
        wad.tmd_data = bytes(tmd)
        wad.content_data = bytes(content)
        wad.meta = bytes(meta)
        return wad

    @property
    def wad_type(self):
        return wad_types[self.hdr.wad_type]

    def _set_section(self, name, data):
        self.sections[name] = bytes(data)
        if name == 'content':
            # Declared size may leave off the final block padding
            if roundup(self.hdr.content_size, 16) != len(data):
                self.hdr.content_size = len(data)
        else:
            setattr(self.hdr, f'{name}_size', len(data))

    @property
    def cert_chain(self):
        return self.sections['cert_chain']

    @cert_chain.setter
    def cert_chain(self, data):
        self._set_section('cert_chain', data)

    @property
    def crl(self):
        return self.sections['crl']

    @crl.setter
    def crl(self, data):
        self._set_section('crl', data)

    @property
    def ticket_data(self):
        return self.sections['ticket']

    @ticket_data.setter
    def ticket_data(self, data):
        self._set_section('ticket', data)
        self._ticket = None

    @property
    def tmd_data(self):
        return self.sections['tmd']

    @tmd_data.setter
    def tmd_data(self, data):
        self._set_section('tmd', data)
        self._tmd = None

    @property
    def content_data(self):
        return self.sections['content']

    @content_data.setter
    def content_data(self, data):
        self._set_section('content', data)

    @property
    def meta(self):
        return self.sections['meta']

    @meta.setter
    def meta(self, data):
        self._set_section('meta', data)

    def ticket(self):
        if self._ticket is None:
            self._ticket = Ticket(self.ticket_data)
        return self._ticket

    def tmd(self):
        if self._tmd is None:
            self._tmd = TMD(self.tmd_data)
        return self._tmd

    def serialize(self):
        out = pad_to(bytes(self.hdr) + self.hdr_padding, WAD_ALIGNMENT)
        for name in sections:
            out += pad_to(self.sections[name], WAD_ALIGNMENT)
        return out

    def __bytes__(self):
        return self.serialize()

    def __str__(self):
        return (
            f'WAD type:          {self.wad_type} ({self.hdr.wad_type.decode()})\n'
            f'Cert chain size:   {hex(self.hdr.cert_chain_size)}\n'
            f'CRL size:          {hex(self.hdr.crl_size)}\n'
            f'Ticket size:       {hex(self.hdr.ticket_size)}\n'
            f'TMD size:          {hex(self.hdr.tmd_size)}\n'
            f'Content size:      {hex(self.hdr.content_size)}\n'
            f'Meta size:         {hex(self.hdr.meta_size)}'
        )
