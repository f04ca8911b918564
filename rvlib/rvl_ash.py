import heapq
from collections import Counter

from .common import *

ASH_MAGIC = b'ASH0'
ASH_HEADER_SIZE = 0xC
ASH_SYM_BITS = 9
ASH_DIST_BITS = 11

# ASH0 holds two MSB-first bit streams: symbols (literals and copy lengths) start right after the header,
# distances start at the offset stored in the header. Each stream opens with a pre-order coded Huffman
# tree: bit 1 is an internal node, bit 0 is a leaf followed by its value in 'width' bits.

class ASHBitReader:
    def __init__(self, data, offset):
        self.data = data
        self.pos = offset * 8
        self.end = len(data) * 8

    def read_bit(self):
        if self.pos >= self.end:
            raise TruncatedInputError(f'ASH bit stream ended at byte {self.pos // 8}')
        bit = (self.data[self.pos >> 3] >> (7 - (self.pos & 7))) & 1
        self.pos += 1
        return bit

    def read_bits(self, n):
        value = 0
        for _ in range(n):
            value = (value << 1) | self.read_bit()
        return value

class ASHBitWriter:
    def __init__(self):
        self.buf = bytearray()
        self.acc = 0
        self.nbits = 0

    def write_bit(self, bit):
        self.acc = (self.acc << 1) | bit
        self.nbits += 1
        if self.nbits == 8:
            self.buf.append(self.acc)
            self.acc = 0
            self.nbits = 0

    def write_bits(self, value, n):
        for i in range(n - 1, -1, -1):
            self.write_bit((value >> i) & 1)

    def getvalue(self): # Streams are consumed in 32-bit words
        out = bytes(self.buf)
        if self.nbits:
            out += bytes([self.acc << (8 - self.nbits)])
        return pad_to(out, 4)

class ASHTree:
    def __init__(self, reader, width):
        self.width = width
        self.leaf_limit = 1 << width # Values below this are leaves, internal nodes are numbered from here up
        self.left = [0] * (2 * self.leaf_limit)
        self.right = [0] * (2 * self.leaf_limit)
        self.root = None

        next_node = self.leaf_limit
        stack = [] # Internal nodes still waiting for a child: [node, left filled]
        while True:
            if reader.read_bit():
                if next_node >= 2 * self.leaf_limit:
                    raise CodecError(f'ASH tree has more internal nodes than {self.width}-bit symbols allow')
                node = next_node
                next_node += 1
                self._attach(stack, node)
                stack.append([node, False])
            else:
                self._attach(stack, reader.read_bits(width))
            if not stack:
                break

    def _attach(self, stack, value):
        if not stack:
            self.root = value
            return
        top = stack[-1]
        if not top[1]:
            self.left[top[0]] = value
            top[1] = True
        else:
            self.right[top[0]] = value
            stack.pop()

    def read_symbol(self, reader):
        node = self.root
        while node >= self.leaf_limit:
            node = self.right[node] if reader.read_bit() else self.left[node]
        return node

def decompress_ash(data, expected_size=None, sym_bits=ASH_SYM_BITS, dist_bits=ASH_DIST_BITS):
    '''
    data: ASH0 stream
    expected_size: if given, the size recorded in the stream must match it
    sym_bits, dist_bits: tree widths; 9 and 11 for every known Wii file
    '''
    data = bytes(data)
    if len(data) < ASH_HEADER_SIZE:
        raise TruncatedInputError('ASH header is truncated')
    if data[:4] != ASH_MAGIC:
        raise CodecError(f'Missing ASH0 magic (found {data[:4]!r})')

    size = readbe(data[4:8]) & 0xFFFFFF
    if expected_size is not None and size != expected_size:
        raise LengthMismatchError(expected_size, size)
    dist_offset = readbe(data[8:12])
    if not ASH_HEADER_SIZE <= dist_offset <= len(data):
        raise TruncatedInputError(f'ASH distance stream offset {hex(dist_offset)} is outside the data')

    sym_reader = ASHBitReader(data, ASH_HEADER_SIZE)
    dist_reader = ASHBitReader(data, dist_offset)
    sym_tree = ASHTree(sym_reader, sym_bits)
    dist_tree = ASHTree(dist_reader, dist_bits)

    out = bytearray(size)
    out_pos = 0
    while out_pos < size:
        sym = sym_tree.read_symbol(sym_reader)
        if sym < 0x100: # Literal
            out[out_pos] = sym
            out_pos += 1
            continue

        length = sym - 0x100 + 3
        src = out_pos - dist_tree.read_symbol(dist_reader) - 1
        if src < 0:
            raise TruncatedInputError(f'Back-reference at output offset {out_pos} reaches {-src} bytes before the start of output')
        if out_pos + length > size:
            raise LengthMismatchError(size, out_pos + length)
        for _ in range(length):
            out[out_pos] = out[src]
            out_pos += 1
            src += 1

    return bytes(out)

def build_ash_tree(freqs, width): # Huffman tree as nested (left, right) tuples with int leaves
    symbols = dict(freqs)
    filler = 0
    while len(symbols) < 2: # Keep the root an internal node
        symbols.setdefault(filler, 0)
        filler += 1

    heap = [(freq, sym, sym) for sym, freq in symbols.items()]
    heapq.heapify(heap)
    order = 1 << width # Tie-breakers for internal nodes, never equal to a leaf's
    while len(heap) > 1:
        f1, _, a = heapq.heappop(heap)
        f2, _, b = heapq.heappop(heap)
        heapq.heappush(heap, (f1 + f2, order, (a, b)))
        order += 1
    return heap[0][2]

def write_ash_tree(writer, tree, width): # Returns {symbol: (code, code length)}
    codes = {}
    stack = [(tree, 0, 0)]
    while stack:
        node, code, n = stack.pop()
        if isinstance(node, tuple):
            writer.write_bit(1)
            stack.append((node[1], (code << 1) | 1, n + 1))
            stack.append((node[0], code << 1, n + 1))
        else:
            writer.write_bit(0)
            writer.write_bits(node, width)
            codes[node] = (code, n)
    return codes

def compress_ash(data, sym_bits=ASH_SYM_BITS, dist_bits=ASH_DIST_BITS):
    data = bytes(data)
    if len(data) > 0xFFFFFF:
        raise CodecError(f'ASH can only store up to 0xFFFFFF bytes (got {hex(len(data))})')
    if sym_bits <= 8:
        raise CodecError('ASH symbol width must leave room above the 256 literals')

    finder = MatchFinder(data, 1 << dist_bits, (1 << sym_bits) - 0x100 + 2)
    tokens = [] # (symbol, distance symbol or None)
    pos = 0
    while pos < len(data):
        length, dist = finder.find(pos)
        if length >= 3:
            tokens.append((length - 3 + 0x100, dist - 1))
            for i in range(pos, pos + length):
                finder.insert(i)
            pos += length
        else:
            tokens.append((data[pos], None))
            finder.insert(pos)
            pos += 1

    sym_writer = ASHBitWriter()
    dist_writer = ASHBitWriter()
    sym_codes = write_ash_tree(sym_writer, build_ash_tree(Counter(s for s, _ in tokens), sym_bits), sym_bits)
    dist_codes = write_ash_tree(dist_writer, build_ash_tree(Counter(d for _, d in tokens if d is not None), dist_bits), dist_bits)
    for sym, dist in tokens:
        sym_writer.write_bits(*sym_codes[sym])
        if dist is not None:
            dist_writer.write_bits(*dist_codes[dist])

    sym_stream = sym_writer.getvalue()
    return ASH_MAGIC + int32tobytes(len(data)) + int32tobytes(ASH_HEADER_SIZE + len(sym_stream)) + sym_stream + dist_writer.getvalue()
