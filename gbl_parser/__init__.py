"""Decode and validate Silicon Labs EBL and GBL bootloader images.

Typical use::

    import gbl_parser

    fmt = gbl_parser.detect_format(data)
    if fmt is gbl_parser.Format.GBL:
        image = gbl_parser.decode_gbl(data)

or let :func:`decode` detect and dispatch in one call.
"""

from typing import Optional, Union

from . import ebl, gbl
from .checksum import VALID_CRC32_RESIDUE, crc32, seal
from .config import (
    DEFAULT_REVISIONS,
    EBL_DEFAULT,
    EBL_STRICT,
    GBL_DEFAULT,
    GBL_LENIENT,
    GBL_STRICT,
    REVISIONS,
    FormatRevision,
    TrailingPolicy,
    get_revision,
)
from .detect import Format, detect_format
from .ebl import EblImage, EblTag
from .errors import (
    ChecksumMismatchError,
    DecodeError,
    MalformedHeaderError,
    MalformedRecordError,
    TrailingDataError,
    TruncatedContainerError,
    UnrecognizedFormatError,
)
from .gbl import GblImage, GblTag

__version__ = "0.1.0"


def decode_ebl(buffer, revision: FormatRevision = EBL_DEFAULT) -> EblImage:
    return ebl.decode(buffer, revision)


def decode_gbl(buffer, revision: FormatRevision = GBL_DEFAULT) -> GblImage:
    return gbl.decode(buffer, revision)


def decode(buffer, revision: Optional[FormatRevision] = None) -> Union[EblImage, GblImage]:
    """Detect the container format of ``buffer`` and decode it.

    Args:
        buffer: one bootloader image, already extracted from its OTA file.
        revision: optional revision settings; must match the detected format.

    Raises:
        UnrecognizedFormatError: neither format's magic matched.
        ValueError: ``revision`` belongs to the other format.
    """
    fmt = detect_format(buffer)
    if fmt is None:
        raise UnrecognizedFormatError(len(buffer))

    if revision is None:
        revision = DEFAULT_REVISIONS[fmt]
    elif revision.format is not fmt:
        raise ValueError(
            f"Buffer looks like {fmt.name}, but revision {revision.name!r} "
            f"is for {revision.format.name}")

    if fmt is Format.GBL:
        return gbl.decode(buffer, revision)
    return ebl.decode(buffer, revision)


__all__ = [
    "ChecksumMismatchError",
    "DEFAULT_REVISIONS",
    "DecodeError",
    "EBL_DEFAULT",
    "EBL_STRICT",
    "EblImage",
    "EblTag",
    "Format",
    "FormatRevision",
    "GBL_DEFAULT",
    "GBL_LENIENT",
    "GBL_STRICT",
    "GblImage",
    "GblTag",
    "MalformedHeaderError",
    "MalformedRecordError",
    "REVISIONS",
    "TrailingDataError",
    "TrailingPolicy",
    "TruncatedContainerError",
    "UnrecognizedFormatError",
    "VALID_CRC32_RESIDUE",
    "crc32",
    "decode",
    "decode_ebl",
    "decode_gbl",
    "detect_format",
    "ebl",
    "gbl",
    "get_revision",
    "seal",
]
