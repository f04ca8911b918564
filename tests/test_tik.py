import pytest

from rvlib.common import *
from rvlib.rvl_tik import Ticket, SigType, TIK_BODY_SIZE, TIK_COUNTER_OFFSET, TIK_V1_HDR_SIZE, read_signature

from builders import COMMON_KEYS, TITLEID, TITLEKEY, make_ticket, make_ticket_bytes, sig_block


class TestTicket:
    def test_file(self):
        ticket = make_ticket()
        assert ticket.sig_type == SigType.RSA_2048
        assert ticket.titleID == TITLEID
        assert ticket.title_version == 0x200
        assert ticket.common_key_index == 0
        assert ticket.issuer == 'Root-CA00000001-XS00000003'
        assert ticket.title_limits[0] == (1, 100)
        assert len(ticket.title_limits) == 8
        assert not ticket.is_dev()
        assert 'TitleID:           0001000157415445' in str(ticket)

    def test_dumpload(self):
        data = make_ticket_bytes()
        assert len(data) == 0x2A4
        assert Ticket(data).serialize() == data
        assert bytes(Ticket.parse(data)) == data

    def test_keeps_trailing_data(self):
        data = make_ticket_bytes(extra=b'\x01\x02certificates')
        ticket = Ticket(data)
        assert ticket.extra == b'\x01\x02certificates'
        assert ticket.serialize() == data

    def test_other_signature_types(self):
        for sig_type, body in [(SigType.RSA_4096, 0x240), (SigType.ECC_B233, 0x80)]:
            data = make_ticket_bytes(sig_type=sig_type)
            assert len(data) == body + TIK_BODY_SIZE
            ticket = Ticket(data)
            assert ticket.sig_type == sig_type
            assert ticket.titleID == TITLEID
            assert ticket.serialize() == data

    def test_truncated(self):
        data = make_ticket_bytes()
        with pytest.raises(FormatError):
            Ticket(data[:-1])
        with pytest.raises(FormatError):
            Ticket(data[:0x100])
        with pytest.raises(FormatError):
            Ticket(data[:2])

    def test_unknown_signature_type(self):
        data = make_ticket_bytes()
        with pytest.raises(FormatError):
            Ticket(b'\x00\x01\x00\x05' + data[4:])

    def test_read_signature(self):
        sig_type, sig, padding, body = read_signature(sig_block(), 'Test')
        assert sig_type == SigType.RSA_2048
        assert sig == b'\xaa' * 0x100
        assert padding == b'\x00' * 0x3C
        assert body == 0x140


class TestTitleKey:
    def test_decrypt(self):
        assert make_ticket().decrypted_title_key(COMMON_KEYS) == TITLEKEY

    def test_key_indices(self):
        for index in COMMON_KEYS:
            ticket = make_ticket(common_key_index=index)
            assert ticket.decrypted_title_key(COMMON_KEYS) == TITLEKEY

    def test_set_title_key(self):
        ticket = make_ticket()
        for key in [b'\x00' * 16, b'\xff' * 16, bytes(range(16))]:
            ticket.set_title_key(key, COMMON_KEYS)
            assert ticket.decrypted_title_key(COMMON_KEYS) == key
            assert Ticket(ticket.serialize()).decrypted_title_key(COMMON_KEYS) == key
        with pytest.raises(CryptoError):
            ticket.set_title_key(b'\x00' * 15, COMMON_KEYS)

    def test_unknown_key_index(self):
        ticket = make_ticket()
        ticket.data.common_key_index = 5
        with pytest.raises(UnknownKeyIndexError):
            ticket.decrypted_title_key(COMMON_KEYS)
        with pytest.raises(CryptoError):
            ticket.decrypted_title_key({})

    def test_set_title_id(self):
        ticket = make_ticket()
        ticket.set_title_id('0001000148414141', COMMON_KEYS)
        assert ticket.titleID == '0001000148414141'
        assert ticket.decrypted_title_key(COMMON_KEYS) == TITLEKEY

        ticket = make_ticket()
        ticket.set_title_id('0001000148414141')
        assert ticket.decrypted_title_key(COMMON_KEYS) != TITLEKEY

    def test_set_common_key_index(self):
        ticket = make_ticket()
        ticket.set_common_key_index(1, COMMON_KEYS)
        assert ticket.common_key_index == 1
        assert ticket.decrypted_title_key(COMMON_KEYS) == TITLEKEY
        with pytest.raises(ValueError):
            ticket.set_common_key_index(0x100)


class TestTicketEdits:
    def test_issuer(self):
        ticket = make_ticket()
        ticket.set_issuer('Root-CA00000002-XS00000006')
        assert ticket.issuer == 'Root-CA00000002-XS00000006'
        assert ticket.is_dev()
        ticket.set_issuer('Root')
        assert Ticket(ticket.serialize()).issuer == 'Root'
        with pytest.raises(ValueError):
            ticket.set_issuer('x' * 65)

    def test_title_version(self):
        ticket = make_ticket()
        ticket.title_version = 513
        assert Ticket(ticket.serialize()).title_version == 513
        with pytest.raises(ValueError):
            ticket.title_version = 0x10000


class TestTicketFakesign:
    def test_fakesign(self):
        ticket = make_ticket()
        assert not ticket.is_fakesigned()
        ticket.fakesign()
        assert ticket.sig == b'\x00' * 0x100
        assert Crypto.sha1(ticket.signed_region())[0] == 0
        assert ticket.is_fakesigned()

        data = ticket.serialize()
        assert Crypto.sha1(data[0x140:0x140 + TIK_BODY_SIZE])[0] == 0
        assert readbe(data[0x140 + TIK_COUNTER_OFFSET:0x140 + TIK_COUNTER_OFFSET + 2]) == ticket.data.unknown2
        assert Ticket(data).is_fakesigned()

    def test_fakesign_keeps_title_key(self):
        ticket = make_ticket()
        ticket.fakesign()
        assert ticket.decrypted_title_key(COMMON_KEYS) == TITLEKEY

    def test_nonzero_signature_is_not_fakesigned(self):
        ticket = make_ticket()
        ticket.fakesign()
        ticket.sig = b'\x01' + ticket.sig[1:]
        assert not ticket.is_fakesigned()


def make_v1_ticket_bytes(v1_size=0x20, after=b'certificates'):
    v1 = int16tobytes(1) + int16tobytes(TIK_V1_HDR_SIZE) + int32tobytes(v1_size) + b'\x00' * 12 + b'\x56' * 12
    data = bytearray(make_ticket_bytes(extra=v1 + after))
    data[0x140 + 0x7C] = 1 # Format version
    return bytes(data)


class TestTicketV1:
    def test_signed_region(self):
        data = make_v1_ticket_bytes()
        ticket = Ticket(data)
        assert ticket.v1_size == 0x20
        assert ticket.signed_region() == data[0x140:0x140 + TIK_BODY_SIZE + 0x20]
        assert ticket.serialize() == data

    def test_v0_signs_body_only(self):
        ticket = make_ticket(extra=b'certificates')
        assert ticket.v1_size == 0
        assert ticket.signed_region() == bytes(ticket.data)

    def test_fakesign_covers_v1_section(self):
        ticket = Ticket(make_v1_ticket_bytes())
        ticket.fakesign()
        data = ticket.serialize()
        assert Crypto.sha1(data[0x140:0x140 + TIK_BODY_SIZE + 0x20])[0] == 0
        assert Ticket(data).is_fakesigned()

    def test_truncated_v1_section(self):
        with pytest.raises(FormatError):
            Ticket(make_v1_ticket_bytes(after=b'')[:-0x10])
        with pytest.raises(FormatError):
            Ticket(make_v1_ticket_bytes(v1_size=0x100, after=b''))
