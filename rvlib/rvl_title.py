import concurrent.futures
from functools import partial

from .common import *
from .rvl_ash import compress_ash, decompress_ash
from .rvl_cert import CertificateChain, verify_signature
from .rvl_crypto import decrypt_content, encrypt_content, verify_content
from .rvl_lz77 import compress_lz77, decompress_lz77
from .rvl_tik import Ticket
from .rvl_tmd import TMD, ContentType, new_content_record
from .rvl_wad import WAD, WAD_ALIGNMENT

logger = logging.getLogger(__name__)

BLOCK_SIZE = 0x20000 # 128 KiB, the unit the System Menu reports title sizes in

def codec_for(content_type): # Returns (compress, decompress), or None for stored contents
    if content_type & ContentType.LZ77:
        return partial(compress_lz77, magic=True), decompress_lz77
    if content_type & ContentType.ASH:
        return compress_ash, decompress_ash
    return None

def open_content(titlekey, record, ciphertext):
    '''
    Decrypt (and inflate, if flagged) one content.
    Returns the plaintext, or None if it does not match the content record
    '''
    stored = decrypt_content(titlekey, record.content_index, ciphertext, record.content_size)
    codec = codec_for(record.content_type)
    if codec is not None:
        try:
            plaintext = codec[1](stored, expected_size=record.content_size)
        except CodecError as e:
            logger.debug('Content %04x does not decompress: %s', record.content_index, e)
            return None
    else:
        plaintext = stored
    return plaintext if verify_content(plaintext, record) else None

def seal_content(titlekey, record, plaintext):
    '''
    Compress (if flagged) and encrypt one content.
    Returns (ciphertext, whether the compression flag has to be dropped because the stream did not fit)
    '''
    stored = plaintext
    codec = codec_for(record.content_type)
    if codec is not None:
        packed = codec[0](plaintext)
        if len(packed) > record.content_size:
            return encrypt_content(titlekey, record.content_index, plaintext), True
        stored = packed + b'\0' * (record.content_size - len(packed))
    return encrypt_content(titlekey, record.content_index, stored), False

def drop_compression(record):
    warnings.warn(f'Content {hex(record.content_index)[2:].zfill(4)} does not shrink when compressed, storing it uncompressed')
    record.content_type = record.content_type & ~int(ContentType.LZ77 | ContentType.ASH)

def _signature_state(signed, cert):
    if signed.is_fakesigned():
        return 'fakesigned'
    if cert is not None and verify_signature(cert, signed):
        return 'legit'
    return 'invalid'

class Title:
    def __init__(self, ticket, tmd, contents, cert_chain=b'', crl=b'', meta=b'', is_decrypted=False):
        '''
        ticket, tmd: Ticket and TMD objects, owned by the title from here on
        contents: payloads in TMD order; ciphertext unless 'is_decrypted'
        cert_chain, crl, meta: raw WAD sections, written back by repack()
        '''
        if len(contents) != len(tmd.contents):
            raise FormatError(f'TMD lists {len(tmd.contents)} contents but {len(contents)} were given')
        self.ticket = ticket
        self.tmd = tmd
        self._contents = [bytes(i) for i in contents]
        self.cert_chain = bytes(cert_chain)
        self.crl = bytes(crl)
        self.meta = bytes(meta)
        self.is_decrypted = is_decrypted

    @classmethod
    def from_wad(cls, wad):
        ticket = Ticket(wad.ticket_data)
        tmd = TMD(wad.tmd_data)

        data = wad.content_data
        contents = []
        curr = 0
        for record in tmd.contents:
            size = roundup(record.content_size, 16)
            if curr + size > len(data):
                raise FormatError(f'Content {hex(record.content_index)[2:].zfill(4)} at offset {hex(curr)} ({hex(size)} bytes) runs past the content section ({hex(len(data))})')
            contents.append(data[curr:curr + size])
            curr += roundup(record.content_size, WAD_ALIGNMENT)

        logger.debug('Loaded title %s with %d contents', tmd.titleID, len(contents))
        return cls(ticket, tmd, contents, wad.cert_chain, wad.crl, wad.meta)

    @classmethod
    def from_bytes(cls, data):
        return cls.from_wad(WAD(data))

    @property
    def contents(self):
        return tuple(self._contents)

    def _map(self, func, records, payloads, workers):
        if workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                return list(executor.map(func, records, payloads))
        return list(map(func, records, payloads))

    def decrypt_contents(self, common_keys, workers=1):
        if self.is_decrypted:
            return
        titlekey = self.ticket.decrypted_title_key(common_keys)
        records = self.tmd.contents
        results = self._map(partial(open_content, titlekey), records, self._contents, workers)

        failed = [record.content_index for record, plaintext in zip(records, results) if plaintext is None]
        if failed:
            raise IntegrityError(failed[0], failed)
        self._contents = results
        self.is_decrypted = True
        logger.debug('Decrypted %d contents of %s', len(results), self.tmd.titleID)

    def _seal_all(self, common_keys, workers):
        titlekey = self.ticket.decrypted_title_key(common_keys)
        records = self.tmd.contents
        results = self._map(partial(seal_content, titlekey), records, self._contents, workers)

        sealed = []
        for record, (ciphertext, drop_flag) in zip(records, results):
            if drop_flag:
                drop_compression(record)
            sealed.append(ciphertext)
        return sealed

    def encrypt_contents(self, common_keys, workers=1):
        if not self.is_decrypted:
            return
        self._contents = self._seal_all(common_keys, workers)
        self.is_decrypted = False

    def verify_contents(self, common_keys=None, workers=1):
        records = self.tmd.contents
        if self.is_decrypted:
            return [verify_content(p, r) for r, p in zip(records, self._contents)]
        titlekey = self.ticket.decrypted_title_key(common_keys)
        return [i is not None for i in self._map(partial(open_content, titlekey), records, self._contents, workers)]

    def repack(self, common_keys=None, workers=1):
        if self.is_decrypted:
            if common_keys is None:
                raise CryptoError('A common-key table is needed to repack a decrypted title')
            payloads = self._seal_all(common_keys, workers)
        else:
            payloads = self._contents

        content = b''.join(pad_to(i, WAD_ALIGNMENT) for i in payloads)
        return WAD.from_parts(self.cert_chain, self.crl, self.ticket.serialize(), self.tmd.serialize(), content, self.meta)

    def serialize(self, common_keys=None):
        return self.repack(common_keys).serialize()

    def get_content(self, position, common_keys=None):
        record = self.tmd.contents[position]
        if self.is_decrypted:
            return self._contents[position]
        plaintext = open_content(self.ticket.decrypted_title_key(common_keys), record, self._contents[position])
        if plaintext is None:
            raise IntegrityError(record.content_index)
        return plaintext

    def _store(self, position, plaintext, common_keys):
        if self.is_decrypted:
            self._contents[position] = plaintext
            return
        record = self.tmd.contents[position]
        ciphertext, drop_flag = seal_content(self.ticket.decrypted_title_key(common_keys), record, plaintext)
        if drop_flag:
            drop_compression(record)
        self._contents[position] = ciphertext

    def set_content(self, position, data, common_keys=None, contentID=None, content_type=None):
        '''
        Replace the payload at 'position' and update its record's size and hash.
        data: decrypted, uncompressed content
        common_keys: required while the title is encrypted
        contentID, content_type: optionally replace these record fields too
        '''
        data = bytes(data)
        record = self.tmd.contents[position]
        if contentID is not None and contentID != record.contentID and self.tmd.content_by_cid(contentID) is not None:
            raise ValueError(f'Content ID {hex(contentID)[2:].zfill(8)} is already in the TMD')
        if not self.is_decrypted: # Check the key before touching the record
            self.ticket.decrypted_title_key(common_keys)

        if contentID is not None:
            record.contentID = contentID
        if content_type is not None:
            record.content_type = content_type
        record.content_size = len(data)
        hashed = Crypto.sha1(data)
        record.content_hash = (c_uint8 * sizeof(record.content_hash))(*hashed)
        self._store(position, data, common_keys)

    def add_content(self, data, contentID, content_type=ContentType.NORMAL, common_keys=None):
        data = bytes(data)
        if not self.is_decrypted:
            self.ticket.decrypted_title_key(common_keys)
        self.tmd.add_content(new_content_record(contentID, content_type, data))
        self._contents.append(b'')
        self._store(len(self._contents) - 1, data, common_keys)

    def remove_content(self, position, common_keys=None):
        '''
        Remove a content and its payload. Later contents are renumbered, and since the content index
        is the IV, their ciphertext is re-encrypted (which needs 'common_keys' while encrypted)
        '''
        records = self.tmd.contents
        if not 0 <= position < len(records):
            raise IndexError(f'No content at position {position}')
        # (old position, new position) of every content whose index changes once the TMD renumbers
        shifted = []
        for i, record in enumerate(records):
            if i != position:
                new_pos = i if i < position else i - 1
                if record.content_index != new_pos:
                    shifted.append((i, new_pos))

        reopened = {}
        if not self.is_decrypted and shifted:
            if common_keys is None:
                raise CryptoError('A common-key table is needed to re-encrypt the renumbered contents')
            titlekey = self.ticket.decrypted_title_key(common_keys)
            for i, new_pos in shifted:
                plaintext = open_content(titlekey, records[i], self._contents[i])
                if plaintext is None:
                    raise IntegrityError(records[i].content_index)
                reopened[new_pos] = plaintext

        self.tmd.remove_content(position)
        self._contents.pop(position)
        for i, plaintext in reopened.items():
            self._store(i, plaintext, common_keys)

    def fakesign(self):
        self.ticket.fakesign()
        self.tmd.fakesign()

    def is_fakesigned(self):
        return self.ticket.is_fakesigned() and self.tmd.is_fakesigned()

    def certificate_chain(self):
        return CertificateChain(self.cert_chain)

    def signature_states(self):
        '''
        Returns (ticket state, TMD state), each 'legit', 'fakesigned' or 'invalid'.
        The ticket is checked against the XS certificate and the TMD against the CP certificate
        of the title's own chain; the CA certificate above them is not checked
        '''
        chain = self.certificate_chain()
        return _signature_state(self.ticket, chain.ticket_cert()), _signature_state(self.tmd, chain.tmd_cert())

    def verify(self):
        return self.signature_states() == ('legit', 'legit')

    def signing_status(self):
        ticket_state, tmd_state = self.signature_states()
        if ticket_state == tmd_state == 'legit':
            return 'Legitimate (unmodified TMD and ticket)'
        if ticket_state == tmd_state == 'fakesigned':
            return 'Fakesigned'
        if tmd_state == 'legit':
            return 'Piratelegit (unmodified TMD, modified ticket)'
        if ticket_state == 'legit':
            return 'Edited (modified TMD, unmodified ticket)'
        return 'Illegitimate (modified TMD and ticket)'

    def title_size(self, absolute=False):
        '''Installed size in bytes; shared contents only count when 'absolute' is set'''
        size = len(self.tmd.serialize()) + len(self.ticket.serialize())
        for i in self.tmd.contents:
            if absolute or not i.content_type & ContentType.SHARED:
                size += i.content_size
        return size

    def title_size_blocks(self, absolute=False):
        return -(-self.title_size(absolute) // BLOCK_SIZE)

    def __str__(self):
        return (
            f'TitleID:           {self.tmd.titleID} ({self.tmd.title_type()})\n'
            f'Title version:     {self.tmd.title_version}\n'
            f'Contents:          {len(self._contents)} ({"decrypted" if self.is_decrypted else "encrypted"})\n'
            f'Size:              {self.title_size()} bytes ({self.title_size_blocks()} blocks)\n'
            f'Fakesigned:        {self.is_fakesigned()}'
        )
