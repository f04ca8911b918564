from .common import *

LZ77_MAGIC = b'LZ77'
LZ77_TYPE = 0x10
LZ77_WINDOW = 0x1000
LZ77_MAX_LENGTH = 0x12

def decompress_lz77(data, expected_size=None):
    '''
    data: LZ77 (type 0x10) stream, with or without the 'LZ77' magic in front
    expected_size: if given, the size recorded in the stream must match it
    '''
    data = bytes(data)
    pos = 4 if data[:4] == LZ77_MAGIC else 0 # Streams cut out of a larger file may not carry the magic
    if len(data) < pos + 4:
        raise TruncatedInputError('LZ77 header is truncated')
    if data[pos] != LZ77_TYPE:
        raise CodecError(f'Compression type is {hex(data[pos])} but only 0x10 is supported')

    size = readle(data[pos + 1:pos + 4]) # 24-bit LE
    if expected_size is not None and size != expected_size:
        raise LengthMismatchError(expected_size, size)
    pos += 4

    out = bytearray(size)
    out_pos = 0
    while out_pos < size:
        if pos >= len(data):
            raise TruncatedInputError(f'LZ77 stream ended at {pos} with {size - out_pos} bytes still to decode')
        flags = data[pos]
        pos += 1

        for bit in range(7, -1, -1): # MSB first
            if out_pos >= size: # Final flag byte may be partially used
                break

            if flags & (1 << bit): # Back-reference
                if pos + 2 > len(data):
                    raise TruncatedInputError(f'LZ77 stream ended inside a back-reference at {pos}')
                token = readbe(data[pos:pos + 2])
                pos += 2
                length = (token >> 12) + 3
                src = out_pos - (token & 0xFFF) - 1
                if src < 0:
                    raise TruncatedInputError(f'Back-reference at output offset {out_pos} reaches {-src} bytes before the start of output')
                for _ in range(min(length, size - out_pos)): # Byte by byte so overlapping copies repeat
                    out[out_pos] = out[src]
                    out_pos += 1
                    src += 1
            else: # Literal
                if pos >= len(data):
                    raise TruncatedInputError(f'LZ77 stream ended at {pos} while reading a literal')
                out[out_pos] = data[pos]
                out_pos += 1
                pos += 1

    return bytes(out)

def compress_lz77(data, magic=False):
    data = bytes(data)
    if len(data) > 0xFFFFFF:
        raise CodecError(f'LZ77 can only store up to 0xFFFFFF bytes (got {hex(len(data))})')

    out = bytearray(LZ77_MAGIC if magic else b'')
    out.append(LZ77_TYPE)
    out += len(data).to_bytes(3, 'little')

    finder = MatchFinder(data, LZ77_WINDOW, LZ77_MAX_LENGTH)
    pos = 0
    while pos < len(data):
        flag_pos = len(out)
        out.append(0)
        for bit in range(7, -1, -1):
            if pos >= len(data):
                break
            length, dist = finder.find(pos)
            if length >= 3:
                out[flag_pos] |= 1 << bit
                out += (((length - 3) << 12) | (dist - 1)).to_bytes(2, 'big')
                for i in range(pos, pos + length):
                    finder.insert(i)
                pos += length
            else:
                out.append(data[pos])
                finder.insert(pos)
                pos += 1

    return bytes(out)
