"""Decoder for EBL (Ember Bootload) firmware images.

EBL is the big-endian predecessor of GBL. An image is a header followed by
a flat list of records, each laid out as:

    [0x00] tag     u16 BE
    [0x02] length  u16 BE   (payload bytes that follow)
    [0x04] payload

The header itself uses the same tag/length framing. Two header shapes
exist: the plain header (tag 0x0000) carrying the flash address and the
application address table (AAT), and the encrypted header (tag 0xFB05)
that introduces an AES-CCM wrapped image.

The scan stops at the END record. The CRC-32 over everything up to and
including the END record must reduce to the fixed residue, and anything
after it is padding (0xFF by default).
"""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .checksum import verify_image_crc
from .config import EBL_DEFAULT, FormatRevision
from .detect import Format
from .errors import MalformedHeaderError, MalformedRecordError, TruncatedContainerError

_logger = logging.getLogger(__name__)

IMAGE_SIGNATURE = 0xE350

RECORD_HEADER_SIZE = 4
PLAIN_HEADER_SIZE = 16       # tag, len, version, signature, flash_addr, aat_crc
PLAIN_HEADER_MIN_LENGTH = 12
ENC_HEADER_SIZE = 10
ENC_HEADER_LENGTH = 6

NONCE_SIZE = 12
MAC_SIZE = 16


class EblTag(enum.IntEnum):
    HEADER = 0x0000
    ENC_HEADER = 0xFB05
    PROG = 0xFE01
    MFGPROG = 0x02FE
    ERASEPROG = 0xFD03
    METADATA = 0xF608
    ENC_INIT = 0xFA06
    ENC_EBL_DATA = 0xF907
    ENC_MAC = 0xF709
    END = 0xFC04


PROG_TAGS = (EblTag.PROG, EblTag.MFGPROG, EblTag.ERASEPROG)

# (min, max) declared payload length; None means unbounded
LENGTH_RULES: dict[EblTag, tuple[int, Optional[int]]] = {
    EblTag.PROG: (2, 65534),
    EblTag.MFGPROG: (2, 65534),
    EblTag.ERASEPROG: (2, 65534),
    EblTag.METADATA: (1, 65534),
    EblTag.ENC_INIT: (4 + NONCE_SIZE, None),
    EblTag.ENC_EBL_DATA: (0, None),
    EblTag.ENC_MAC: (MAC_SIZE, MAC_SIZE),
    EblTag.END: (4, 4),
}

# Bytes of fixed-position fields at the start of each payload
FIXED_FIELD_SIZES = {
    EblTag.PROG: 4,
    EblTag.MFGPROG: 4,
    EblTag.ERASEPROG: 4,
}


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EblHeader:
    """Plain (unencrypted) image header."""
    tag: EblTag
    length: int
    version: int
    signature: int
    flash_addr: int
    aat_crc: int
    aat: bytes  # application address table, may be empty


@dataclass(frozen=True)
class EblEncryptedHeader:
    """Header of an AES-CCM encrypted image."""
    tag: EblTag
    length: int
    version: int
    enc_type: int
    signature: int


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EblProgRecord:
    """PROG, MFGPROG and ERASEPROG: data to write at ``flash_addr``."""
    tag: EblTag
    length: int
    offset: int
    flash_addr: int
    data: bytes


@dataclass(frozen=True)
class EblMetadataRecord:
    tag: EblTag
    length: int
    offset: int
    metadata: bytes


@dataclass(frozen=True)
class EblEncInitRecord:
    """AES-CCM parameters for the encrypted records that follow."""
    tag: EblTag
    length: int
    offset: int
    msg_len: int
    nonce: bytes
    associated_data: bytes


@dataclass(frozen=True)
class EblEncDataRecord:
    tag: EblTag
    length: int
    offset: int
    data: bytes


@dataclass(frozen=True)
class EblEncMacRecord:
    tag: EblTag
    length: int
    offset: int
    mac: bytes


@dataclass(frozen=True)
class EblEndRecord:
    tag: EblTag
    length: int
    offset: int
    crc: int


EblRecord = Union[
    EblProgRecord,
    EblMetadataRecord,
    EblEncInitRecord,
    EblEncDataRecord,
    EblEncMacRecord,
    EblEndRecord,
]


@dataclass(frozen=True)
class EblImage:
    header: Union[EblHeader, EblEncryptedHeader]
    records: tuple[EblRecord, ...]

    @property
    def encrypted(self) -> bool:
        return self.header.tag is EblTag.ENC_HEADER

    @property
    def end(self) -> EblEndRecord:
        return self.records[-1]


# ---------------------------------------------------------------------------
# Header decoding
# ---------------------------------------------------------------------------

def decode_header(buffer) -> Union[EblHeader, EblEncryptedHeader]:
    """Decode the header at offset 0.

    Raises:
        MalformedHeaderError: for an unknown header tag, a bad signature
            or a header that does not fit in the buffer.
    """
    if len(buffer) < RECORD_HEADER_SIZE:
        raise MalformedHeaderError(
            f"EBL header needs at least {RECORD_HEADER_SIZE} bytes, "
            f"but buffer only has {len(buffer)}")

    tag, length = struct.unpack_from('>HH', buffer, 0)

    if tag == EblTag.HEADER:
        if len(buffer) < PLAIN_HEADER_SIZE:
            raise MalformedHeaderError(
                f"EBL header needs at least {PLAIN_HEADER_SIZE} bytes, "
                f"but buffer only has {len(buffer)}")

        version, signature, flash_addr, aat_crc = struct.unpack_from('>HHII', buffer, 4)
        if signature != IMAGE_SIGNATURE:
            raise MalformedHeaderError(
                f"Not EBL data (signature 0x{signature:04X}, "
                f"expected 0x{IMAGE_SIGNATURE:04X})", offset=6)
        if length < PLAIN_HEADER_MIN_LENGTH:
            raise MalformedHeaderError(
                f"EBL header length should be at least {PLAIN_HEADER_MIN_LENGTH}, "
                f"but was {length}", offset=2)
        if RECORD_HEADER_SIZE + length > len(buffer):
            raise MalformedHeaderError(
                f"EBL header declares {RECORD_HEADER_SIZE + length} bytes, "
                f"but buffer only has {len(buffer)}", offset=2)

        header = EblHeader(
            tag=EblTag.HEADER,
            length=length,
            version=version,
            signature=signature,
            flash_addr=flash_addr,
            aat_crc=aat_crc,
            aat=bytes(buffer[PLAIN_HEADER_SIZE:RECORD_HEADER_SIZE + length]),
        )
    elif tag == EblTag.ENC_HEADER:
        if len(buffer) < ENC_HEADER_SIZE:
            raise MalformedHeaderError(
                f"EBL encrypted header needs at least {ENC_HEADER_SIZE} bytes, "
                f"but buffer only has {len(buffer)}")
        if length != ENC_HEADER_LENGTH:
            raise MalformedHeaderError(
                f"EBL encrypted header length should be {ENC_HEADER_LENGTH}, "
                f"but was {length}", offset=2)

        version, enc_type, signature = struct.unpack_from('>HHH', buffer, 4)
        if signature != IMAGE_SIGNATURE:
            raise MalformedHeaderError(
                f"Not EBL data (signature 0x{signature:04X}, "
                f"expected 0x{IMAGE_SIGNATURE:04X})", offset=8)

        header = EblEncryptedHeader(
            tag=EblTag.ENC_HEADER,
            length=length,
            version=version,
            enc_type=enc_type,
            signature=signature,
        )
    else:
        raise MalformedHeaderError(f"Unknown EBL header tag 0x{tag:04X}")

    _logger.debug("EBL %s: length %d, version 0x%04X", header.tag.name, length, header.version)
    return header


# ---------------------------------------------------------------------------
# Record decoding
# ---------------------------------------------------------------------------

def _check_length(tag: EblTag, length: int, offset: int) -> None:
    lo, hi = LENGTH_RULES[tag]
    if lo == hi:
        ok, expected, rule = length == lo, str(lo), f"should be {lo}"
    elif hi is None:
        ok, expected, rule = length >= lo, f">={lo}", f"should be at least {lo}"
    else:
        ok, expected, rule = lo <= length <= hi, f"{lo}..{hi}", f"should be between {lo} and {hi}"
    if not ok:
        raise MalformedRecordError(
            f"{tag.name} record at offset 0x{offset:X} length {rule}, but was {length}",
            offset=offset, tag=tag, expected=expected, actual=length)

    fixed = FIXED_FIELD_SIZES.get(tag, 0)
    if length < fixed:
        raise MalformedRecordError(
            f"{tag.name} record at offset 0x{offset:X} is too short for its "
            f"{fixed} bytes of fixed fields (length {length})",
            offset=offset, tag=tag, expected=f">={fixed}", actual=length)


def _decode_prog(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return EblProgRecord(
        tag=tag,
        length=length,
        offset=offset,
        flash_addr=struct.unpack_from('>I', buffer, start)[0],
        data=bytes(buffer[start + 4:start + length]),
    )


def _decode_metadata(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return EblMetadataRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_enc_init(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return EblEncInitRecord(
        tag=tag,
        length=length,
        offset=offset,
        msg_len=struct.unpack_from('>I', buffer, start)[0],
        nonce=bytes(buffer[start + 4:start + 4 + NONCE_SIZE]),
        associated_data=bytes(buffer[start + 4 + NONCE_SIZE:start + length]),
    )


def _decode_enc_data(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return EblEncDataRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_enc_mac(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return EblEncMacRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_end(buffer, offset, tag, length):
    crc = struct.unpack_from('>I', buffer, offset + RECORD_HEADER_SIZE)[0]
    return EblEndRecord(tag, length, offset, crc)


_RECORD_DECODERS = {
    EblTag.PROG: _decode_prog,
    EblTag.MFGPROG: _decode_prog,
    EblTag.ERASEPROG: _decode_prog,
    EblTag.METADATA: _decode_metadata,
    EblTag.ENC_INIT: _decode_enc_init,
    EblTag.ENC_EBL_DATA: _decode_enc_data,
    EblTag.ENC_MAC: _decode_enc_mac,
    EblTag.END: _decode_end,
}


def decode_record(buffer, offset: int) -> tuple[EblRecord, int]:
    """Decode the record starting at ``offset``.

    Returns:
        The record and its total span (record header plus payload).
    """
    available = len(buffer) - offset
    if available < RECORD_HEADER_SIZE:
        raise TruncatedContainerError(
            f"EBL record header at offset 0x{offset:X} needs {RECORD_HEADER_SIZE} bytes, "
            f"but only {available} remain",
            offset=offset, needed=RECORD_HEADER_SIZE, available=available)

    tag_value, length = struct.unpack_from('>HH', buffer, offset)
    decoder = _RECORD_DECODERS.get(tag_value)
    if decoder is None:
        raise MalformedRecordError(
            f"Unknown tag 0x{tag_value:04X} at position {offset}",
            offset=offset, tag=tag_value)

    tag = EblTag(tag_value)
    _check_length(tag, length, offset)

    span = RECORD_HEADER_SIZE + length
    if span > available:
        raise TruncatedContainerError(
            f"{tag.name} record at offset 0x{offset:X} declares {length} bytes, "
            f"but only {available - RECORD_HEADER_SIZE} remain",
            offset=offset, needed=span, available=available)

    _logger.debug("EBL %s at 0x%X, %d bytes", tag.name, offset, length)
    return decoder(buffer, offset, tag, length), span


# ---------------------------------------------------------------------------
# Container decoding
# ---------------------------------------------------------------------------

def decode(buffer, revision: FormatRevision = EBL_DEFAULT) -> EblImage:
    """Decode and validate a complete EBL image.

    Args:
        buffer: bytes-like object holding exactly one EBL element.
        revision: trailing-bytes policy to apply after the END record.

    Returns:
        The decoded :class:`EblImage`.

    Raises:
        DecodeError: subclass describing the first problem found.
    """
    if revision.format is not Format.EBL:
        raise ValueError(f"Revision {revision.name!r} is not an EBL revision")

    header = decode_header(buffer)

    position = RECORD_HEADER_SIZE + header.length
    records = []
    while position < len(buffer):
        record, span = decode_record(buffer, position)
        records.append(record)
        position += span

        if record.tag is EblTag.END:
            break

    if not records or records[-1].tag is not EblTag.END:
        raise TruncatedContainerError(
            f"EBL image ended at offset 0x{position:X} without an END record",
            offset=position, needed=RECORD_HEADER_SIZE + 4, available=0)

    crc = verify_image_crc(buffer, position)
    _logger.debug("EBL CRC-32 over %d bytes: 0x%08X", position, crc)

    revision.check_trailing(buffer, position)

    return EblImage(header=header, records=tuple(records))
