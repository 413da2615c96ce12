"""Identify whether a buffer holds an EBL or a GBL image."""

import enum
import struct
from typing import Optional

# Both formats need at least this much before the first record is meaningful
MIN_DETECT_LENGTH = 10

GBL_MAGIC = 0x03A617EB  # LE u32 at offset 0
EBL_HEADER_MAGICS = (
    0x0000,  # plain header tag
    0xFB05,  # encrypted header tag
)  # BE u16 at offset 0


class Format(str, enum.Enum):
    GBL = "gbl"
    EBL = "ebl"


def is_gbl(buffer) -> bool:
    if len(buffer) < MIN_DETECT_LENGTH:
        return False
    return struct.unpack_from('<I', buffer, 0)[0] == GBL_MAGIC


def is_ebl(buffer) -> bool:
    if len(buffer) < MIN_DETECT_LENGTH:
        return False
    return struct.unpack_from('>H', buffer, 0)[0] in EBL_HEADER_MAGICS


def detect_format(buffer) -> Optional[Format]:
    """Classify ``buffer`` by its leading magic.

    GBL is checked first. Its magic is a full 32-bit word, while the EBL
    plain header tag is just two zero bytes, so the weaker EBL test only
    runs once the GBL test has failed.

    Returns:
        The matching :class:`Format`, or None for short or unknown buffers.
    """
    if is_gbl(buffer):
        return Format.GBL
    if is_ebl(buffer):
        return Format.EBL
    return None
