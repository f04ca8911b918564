from rvlib.common import *
from rvlib.rvl_ash import decompress_ash
from rvlib.rvl_lz77 import compress_lz77, decompress_lz77
from rvlib.rvl_tik import Ticket
from rvlib.rvl_tmd import TMD
from rvlib.rvl_wad import WAD
from rvlib.rvl_title import Title

key_files = { # Common key index: file name in the key directory
    0: 'common-key',
    1: 'korean-key',
    2: 'vwii-key',
}

def load_common_keys(keys=''):
    if keys == '':
        keys = os.path.join(os.path.expanduser('~'), '.wii')

    common_keys = {}
    for index, name in key_files.items():
        path = os.path.join(keys, name)
        if os.path.isfile(path):
            with open(path, 'rb') as f:
                key = f.read(16)
            if len(key) != 16:
                raise CryptoError(f'{path} is {len(key)} bytes, expected 16')
            common_keys[index] = key
    if not common_keys:
        warnings.warn(f'No common keys found in {keys}')
    return common_keys

def read_file(path):
    with open(path, 'rb') as f:
        return f.read()

def write_file(path, data):
    with open(path, 'wb') as f:
        f.write(data)

def wad_info(path, keys=''):
    wad = WAD(read_file(path))
    title = Title.from_wad(wad)
    ticket_state, tmd_state = title.signature_states()
    print(wad)
    print(f'Signing status:    {title.signing_status()}')
    print()
    print(wad.ticket())
    print(f'Signature check:   {ticket_state}')
    print()
    print(wad.tmd())
    print(f'Signature check:   {tmd_state}')

    if keys != '':
        print('Hashes:')
        for record, ok in zip(title.tmd.contents, title.verify_contents(load_common_keys(keys))):
            print(' > {0:15} {1:4}'.format(hex(record.content_index)[2:].zfill(4) + ':', 'GOOD' if ok else 'FAIL'))

def wad_unpack(path, out='', keys='', workers=1):
    name = os.path.splitext(os.path.basename(path))[0]
    if out == '':
        out = name
    os.makedirs(out, exist_ok=True)

    wad = WAD(read_file(path))
    title = Title.from_wad(wad)
    title.decrypt_contents(load_common_keys(keys), workers)

    write_file(os.path.join(out, 'cert.bin'), wad.cert_chain)
    write_file(os.path.join(out, 'tik'), wad.ticket_data)
    write_file(os.path.join(out, 'tmd'), wad.tmd_data)
    if wad.crl:
        write_file(os.path.join(out, 'crl.bin'), wad.crl)
    if wad.meta:
        write_file(os.path.join(out, 'meta.bin'), wad.meta)
    for pos, record in enumerate(title.tmd.contents):
        content = f'{hex(record.content_index)[2:].zfill(8)}.app'
        write_file(os.path.join(out, content), title.get_content(pos))
        print(f'Extracted {content}')

def wad_pack(path, out='', keys='', workers=1):
    name = os.path.basename(os.path.normpath(path))
    if out == '':
        out = f'{name}.wad'

    def optional(i):
        return read_file(os.path.join(path, i)) if os.path.isfile(os.path.join(path, i)) else b''

    tmd = TMD(read_file(os.path.join(path, 'tmd')))
    ticket = Ticket(read_file(os.path.join(path, 'tik')))
    contents = []
    for record in tmd.contents:
        contents.append(read_file(os.path.join(path, f'{hex(record.content_index)[2:].zfill(8)}.app')))

    title = Title(ticket, tmd, contents, optional('cert.bin'), optional('crl.bin'), optional('meta.bin'), is_decrypted=True)
    for pos, data in enumerate(contents): # Refresh sizes and hashes of edited contents
        title.set_content(pos, data)
    write_file(out, title.repack(load_common_keys(keys), workers).serialize())
    print(f'Wrote to {out}')

def wad_decrypt_check(path, keys='', workers=1):
    title = Title.from_bytes(read_file(path))
    results = title.verify_contents(load_common_keys(keys), workers)
    print('Hashes:')
    for record, ok in zip(title.tmd.contents, results):
        print(' > {0:15} {1:4}'.format(hex(record.content_index)[2:].zfill(4) + ':', 'GOOD' if ok else 'FAIL'))
    return all(results)

def fakesign(path, out=''):
    name, ext = os.path.splitext(os.path.basename(path))
    data = read_file(path)
    if ext.lower() == '.wad':
        title = Title.from_bytes(data)
        title.fakesign()
        data = title.repack().serialize()
    elif ext.lower() == '.tmd' or name.lower() == 'tmd':
        tmd = TMD(data)
        tmd.fakesign()
        data = tmd.serialize()
    elif ext.lower() == '.tik' or name.lower() in ['tik', 'cetk']:
        ticket = Ticket(data)
        ticket.fakesign()
        data = ticket.serialize()
    else:
        raise FormatError(f'Cannot tell whether {path} is a WAD, TMD or ticket')

    if out == '':
        out = path
    write_file(out, data)
    print(f'Wrote to {out}')

def lz77_decompress(path, out=''):
    name = os.path.splitext(os.path.basename(path))[0]
    if out == '':
        out = f'{name}_decompressed.bin'
    write_file(out, decompress_lz77(read_file(path)))
    print(f'Wrote to {out}')

def lz77_compress(path, out=''):
    name = os.path.splitext(os.path.basename(path))[0]
    if out == '':
        out = f'{name}_lz77.bin'
    write_file(out, compress_lz77(read_file(path), magic=True))
    print(f'Wrote to {out}')

def ash_decompress(path, out=''):
    name = os.path.splitext(os.path.basename(path))[0]
    if out == '':
        out = f'{name}_decompressed.bin'
    write_file(out, decompress_ash(read_file(path)))
    print(f'Wrote to {out}')
