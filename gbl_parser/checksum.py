"""CRC-32 over EBL/GBL images.

Both container formats protect the whole image, from the first header byte
through the end of the END record, with the standard reflected CRC-32
(polynomial 0xEDB88320, init and xor-out 0xFFFFFFFF, as used by zlib,
Ethernet and PNG).

The image author appends the CRC of everything before it in little-endian
order, so a correctly sealed region always yields the same residue,
0x2144DF1C. The decoders check that residue rather than comparing against
the value embedded in the END record.
"""

import struct

import crcmod.predefined

from .errors import ChecksumMismatchError

VALID_CRC32_RESIDUE = 0x2144DF1C

# crcmod's "crc-32" is the zlib variant
_crc32 = crcmod.predefined.mkCrcFun('crc-32')


def crc32(data) -> int:
    """Return the CRC-32 of ``data`` as an unsigned 32-bit integer."""
    return _crc32(bytes(data)) & 0xFFFFFFFF


def crc32_residue_ok(data) -> bool:
    """Check that a sealed region reduces to the fixed residue."""
    return crc32(data) == VALID_CRC32_RESIDUE


def verify_image_crc(buffer, end: int) -> int:
    """Check the residue over ``buffer[:end]`` and return the computed CRC.

    Raises:
        ChecksumMismatchError: if the region is not correctly sealed.
    """
    actual = crc32(buffer[:end])
    if actual != VALID_CRC32_RESIDUE:
        raise ChecksumMismatchError(VALID_CRC32_RESIDUE, actual, end)
    return actual


def seal(data: bytes) -> bytes:
    """Append the little-endian CRC-32 of ``data``.

    The result satisfies :func:`crc32_residue_ok`. This is how the END
    record's CRC field is produced when an image is built.
    """
    data = bytes(data)
    return data + struct.pack('<I', crc32(data))
