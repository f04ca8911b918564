#!/usr/bin/python3
import sys
from utils import *

def get_opt(name, default=''):
    for i in range(2, len(sys.argv) - 1):
        if sys.argv[i] == name:
            return sys.argv[i + 1]
    return default

if '--verbose' in sys.argv:
    logging.basicConfig(level=logging.DEBUG, format='%(name)s: %(message)s')

if len(sys.argv) < 3:
    print('Usage: rvltool.py <command> <path> [--out PATH] [--keys DIR] [--workers N] [--verbose]')
    sys.exit(1)

path = sys.argv[2]
out = get_opt('--out')
keys = get_opt('--keys')
workers = int(get_opt('--workers', '1'))

try:
    if sys.argv[1] == 'wad_info':
        wad_info(path, keys)

    elif sys.argv[1] in ['wad_unpack', 'wad_pack']:
        globals()[sys.argv[1]](path, out, keys, workers)

    elif sys.argv[1] == 'wad_decrypt_check':
        if not wad_decrypt_check(path, keys, workers):
            sys.exit(2)

    elif sys.argv[1] in ['fakesign', 'lz77_decompress', 'lz77_compress', 'ash_decompress']:
        globals()[sys.argv[1]](path, out)

    else:
        print(f'Unknown command: {sys.argv[1]}')
        sys.exit(1)
except RVLError as e:
    print(f'{type(e).__name__}: {e}')
    sys.exit(1)
