"""Helpers that author small EBL/GBL images for the tests."""

import struct
from typing import Optional

from gbl_parser.checksum import seal

EBL_SIGNATURE = 0xE350


# ---------------------------------------------------------------------------
# EBL
# ---------------------------------------------------------------------------

def ebl_record(tag: int, payload: bytes, length: Optional[int] = None) -> bytes:
    if length is None:
        length = len(payload)
    return struct.pack('>HH', tag, length) + payload


def ebl_header(flash_addr: int = 0x00000000, aat: bytes = b'', version: int = 0x0201,
               aat_crc: int = 0, signature: int = EBL_SIGNATURE) -> bytes:
    return struct.pack('>HHHHII', 0x0000, 12 + len(aat), version, signature,
                       flash_addr, aat_crc) + aat


def ebl_enc_header(version: int = 0x0001, enc_type: int = 0x0001) -> bytes:
    return struct.pack('>HHHHH', 0xFB05, 6, version, enc_type, EBL_SIGNATURE)


def ebl_prog(flash_addr: int, data: bytes, tag: int = 0xFE01) -> bytes:
    return ebl_record(tag, struct.pack('>I', flash_addr) + data)


def ebl_image(header: bytes, *records: bytes, padding: bytes = b'') -> bytes:
    """Header + records + END, sealed so the CRC residue holds."""
    body = header + b''.join(records) + struct.pack('>HH', 0xFC04, 4)
    return seal(body) + padding


# ---------------------------------------------------------------------------
# GBL
# ---------------------------------------------------------------------------

def gbl_record(tag: int, payload: bytes, length: Optional[int] = None) -> bytes:
    if length is None:
        length = len(payload)
    return struct.pack('<II', tag, length) + payload


def gbl_header(version: int = 0x03000000, image_type: int = 0, extra: bytes = b'') -> bytes:
    return struct.pack('<IIII', 0x03A617EB, 8 + len(extra), version, image_type) + extra


def gbl_prog(flash_start_address: int, data: bytes, tag: int = 0xFE0101FE) -> bytes:
    return gbl_record(tag, struct.pack('<I', flash_start_address) + data)


def gbl_image(*records: bytes, header: Optional[bytes] = None, padding: bytes = b'') -> bytes:
    if header is None:
        header = gbl_header()
    body = header + b''.join(records) + struct.pack('<II', 0xFC0404FC, 4)
    return seal(body) + padding


def flip(data: bytes, offset: int) -> bytes:
    corrupted = bytearray(data)
    corrupted[offset] ^= 0xFF
    return bytes(corrupted)
