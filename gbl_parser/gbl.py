"""Decoder for GBL (Gecko Bootload) firmware images.

GBL replaced EBL on Series 1 and later parts. Every record, including the
header, is framed as:

    [0x00] tag     u32 LE
    [0x04] length  u32 LE   (payload bytes that follow)
    [0x08] payload

Numeric payload fields are little-endian as well, matching the structures
the Gecko bootloader overlays on the image in memory. Raw byte fields
(nonce, MAC, ECDSA r/s, certificate) are returned untouched; nothing here
decrypts, decompresses or verifies signatures.

As with EBL, the scan stops at the END record, the CRC-32 over the
consumed region must reduce to the fixed residue and the remaining bytes
are checked against the revision's trailing policy (0x00 padding by
default).
"""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .checksum import verify_image_crc
from .config import GBL_DEFAULT, FormatRevision
from .detect import Format
from .errors import MalformedHeaderError, MalformedRecordError, TruncatedContainerError

_logger = logging.getLogger(__name__)

RECORD_HEADER_SIZE = 8
HEADER_SIZE = 16        # tag, len, version, type
HEADER_MIN_LENGTH = 8

# GblHeader.type bits
TYPE_ENCRYPTION_AESCCM = 0x00000001
TYPE_SIGNATURE_ECDSA_P256 = 0x00000100

NONCE_SIZE = 12
MAC_SIZE = 16
ECDSA_P256_COMPONENT_SIZE = 32


class GblTag(enum.IntEnum):
    HEADER = 0x03A617EB
    APPLICATION = 0xF40A0AF4
    BOOTLOADER = 0xF50909F5
    SE_UPGRADE = 0x5EA617EB
    METADATA = 0xF60808F6
    PROG = 0xFE0101FE
    ERASEPROG = 0xFD0303FD
    PROG_LZ4 = 0xFD0505FD
    PROG_LZMA = 0xFD0707FD
    ENC_HEADER = 0xFB0505FB
    ENC_INIT = 0xFA0606FA
    ENC_GBL_DATA = 0xF90707F9
    ENC_MAC = 0xF70909F7
    CERTIFICATE_ECDSA_P256 = 0xF30B0BF3
    SIGNATURE_ECDSA_P256 = 0xF70A0AF7
    END = 0xFC0404FC


PROG_TAGS = (GblTag.PROG, GblTag.ERASEPROG, GblTag.PROG_LZ4, GblTag.PROG_LZMA)

# (min, max) declared payload length; None means unbounded.
# METADATA is bounded per revision, see _length_rule().
LENGTH_RULES: dict[GblTag, tuple[int, Optional[int]]] = {
    GblTag.APPLICATION: (12, None),
    GblTag.BOOTLOADER: (8, None),
    GblTag.SE_UPGRADE: (8, None),
    GblTag.PROG: (4, None),
    GblTag.ERASEPROG: (4, None),
    GblTag.PROG_LZ4: (4, None),
    GblTag.PROG_LZMA: (4, None),
    GblTag.ENC_HEADER: (12, 12),
    GblTag.ENC_INIT: (4 + NONCE_SIZE, 4 + NONCE_SIZE),
    GblTag.ENC_GBL_DATA: (0, None),
    GblTag.ENC_MAC: (MAC_SIZE, MAC_SIZE),
    GblTag.CERTIFICATE_ECDSA_P256: (0, None),
    GblTag.SIGNATURE_ECDSA_P256: (2 * ECDSA_P256_COMPONENT_SIZE, 2 * ECDSA_P256_COMPONENT_SIZE),
    GblTag.END: (4, 4),
}


@dataclass(frozen=True)
class GblHeader:
    tag: GblTag
    length: int
    version: int
    type: int

    @property
    def encrypted(self) -> bool:
        return bool(self.type & TYPE_ENCRYPTION_AESCCM)

    @property
    def signed(self) -> bool:
        return bool(self.type & TYPE_SIGNATURE_ECDSA_P256)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GblApplicationRecord:
    """Application properties: type, version, capabilities, product ID."""
    tag: GblTag
    length: int
    offset: int
    type: int
    version: int
    capabilities: int
    product_id: bytes


@dataclass(frozen=True)
class GblBootloaderRecord:
    tag: GblTag
    length: int
    offset: int
    bootloader_version: int
    address: int
    data: bytes


@dataclass(frozen=True)
class GblSeUpgradeRecord:
    """Secure element firmware upgrade blob."""
    tag: GblTag
    length: int
    offset: int
    blob_size: int
    version: int
    data: bytes


@dataclass(frozen=True)
class GblMetadataRecord:
    tag: GblTag
    length: int
    offset: int
    metadata: bytes


@dataclass(frozen=True)
class GblProgRecord:
    """PROG, ERASEPROG and the compressed PROG variants.

    For PROG_LZ4 and PROG_LZMA ``data`` is still compressed.
    """
    tag: GblTag
    length: int
    offset: int
    flash_start_address: int
    data: bytes


@dataclass(frozen=True)
class GblEncHeaderRecord:
    tag: GblTag
    length: int
    offset: int
    version: int
    magic_word: int
    encryption_type: int


@dataclass(frozen=True)
class GblEncInitRecord:
    tag: GblTag
    length: int
    offset: int
    msg_len: int
    nonce: bytes


@dataclass(frozen=True)
class GblEncDataRecord:
    tag: GblTag
    length: int
    offset: int
    encrypted_data: bytes


@dataclass(frozen=True)
class GblEncMacRecord:
    tag: GblTag
    length: int
    offset: int
    mac: bytes


@dataclass(frozen=True)
class GblCertificateRecord:
    tag: GblTag
    length: int
    offset: int
    certificate: bytes


@dataclass(frozen=True)
class GblSignatureRecord:
    tag: GblTag
    length: int
    offset: int
    r: bytes
    s: bytes


@dataclass(frozen=True)
class GblEndRecord:
    """Terminates the image. ``crc`` is the CRC-32 of all preceding bytes."""
    tag: GblTag
    length: int
    offset: int
    crc: int


GblRecord = Union[
    GblApplicationRecord,
    GblBootloaderRecord,
    GblSeUpgradeRecord,
    GblMetadataRecord,
    GblProgRecord,
    GblEncHeaderRecord,
    GblEncInitRecord,
    GblEncDataRecord,
    GblEncMacRecord,
    GblCertificateRecord,
    GblSignatureRecord,
    GblEndRecord,
]


@dataclass(frozen=True)
class GblImage:
    header: GblHeader
    records: tuple[GblRecord, ...]

    @property
    def end(self) -> GblEndRecord:
        return self.records[-1]

    @property
    def application(self) -> Optional[GblApplicationRecord]:
        for record in self.records:
            if record.tag is GblTag.APPLICATION:
                return record
        return None

    @property
    def signature(self) -> Optional[GblSignatureRecord]:
        for record in self.records:
            if record.tag is GblTag.SIGNATURE_ECDSA_P256:
                return record
        return None


# ---------------------------------------------------------------------------
# Header decoding
# ---------------------------------------------------------------------------

def decode_header(buffer) -> GblHeader:
    """Decode the GBL header at offset 0."""
    if len(buffer) < HEADER_SIZE:
        raise MalformedHeaderError(
            f"GBL header needs at least {HEADER_SIZE} bytes, "
            f"but buffer only has {len(buffer)}")

    tag, length, version, image_type = struct.unpack_from('<IIII', buffer, 0)
    if tag != GblTag.HEADER:
        raise MalformedHeaderError(
            f"Unknown GBL header tag 0x{tag:08X} (expected 0x{GblTag.HEADER:08X})")
    if length < HEADER_MIN_LENGTH:
        raise MalformedHeaderError(
            f"GBL header length should be at least {HEADER_MIN_LENGTH}, "
            f"but was {length}", offset=4)
    if RECORD_HEADER_SIZE + length > len(buffer):
        raise MalformedHeaderError(
            f"GBL header declares {RECORD_HEADER_SIZE + length} bytes, "
            f"but buffer only has {len(buffer)}", offset=4)

    _logger.debug("GBL header: length %d, version 0x%08X, type 0x%08X",
                  length, version, image_type)
    return GblHeader(GblTag.HEADER, length, version, image_type)


# ---------------------------------------------------------------------------
# Record decoding
# ---------------------------------------------------------------------------

def _length_rule(tag: GblTag, revision: FormatRevision) -> tuple[int, Optional[int]]:
    if tag is GblTag.METADATA:
        return 1, revision.max_metadata_length
    return LENGTH_RULES[tag]


def _check_length(tag: GblTag, length: int, offset: int, revision: FormatRevision) -> None:
    lo, hi = _length_rule(tag, revision)
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


def _decode_application(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    app_type, version, capabilities = struct.unpack_from('<III', buffer, start)
    return GblApplicationRecord(
        tag=tag,
        length=length,
        offset=offset,
        type=app_type,
        version=version,
        capabilities=capabilities,
        product_id=bytes(buffer[start + 12:start + length]),
    )


def _decode_bootloader(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    bootloader_version, address = struct.unpack_from('<II', buffer, start)
    return GblBootloaderRecord(
        tag, length, offset, bootloader_version, address,
        bytes(buffer[start + 8:start + length]))


def _decode_se_upgrade(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    blob_size, version = struct.unpack_from('<II', buffer, start)
    return GblSeUpgradeRecord(
        tag, length, offset, blob_size, version,
        bytes(buffer[start + 8:start + length]))


def _decode_metadata(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblMetadataRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_prog(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblProgRecord(
        tag=tag,
        length=length,
        offset=offset,
        flash_start_address=struct.unpack_from('<I', buffer, start)[0],
        data=bytes(buffer[start + 4:start + length]),
    )


def _decode_enc_header(buffer, offset, tag, length):
    version, magic_word, encryption_type = struct.unpack_from(
        '<III', buffer, offset + RECORD_HEADER_SIZE)
    return GblEncHeaderRecord(tag, length, offset, version, magic_word, encryption_type)


def _decode_enc_init(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblEncInitRecord(
        tag=tag,
        length=length,
        offset=offset,
        msg_len=struct.unpack_from('<I', buffer, start)[0],
        nonce=bytes(buffer[start + 4:start + 4 + NONCE_SIZE]),
    )


def _decode_enc_data(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblEncDataRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_enc_mac(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblEncMacRecord(tag, length, offset, bytes(buffer[start:start + MAC_SIZE]))


def _decode_certificate(buffer, offset, tag, length):
    start = offset + RECORD_HEADER_SIZE
    return GblCertificateRecord(tag, length, offset, bytes(buffer[start:start + length]))


def _decode_signature(buffer, offset, tag, length):
    r_start = offset + RECORD_HEADER_SIZE
    s_start = r_start + ECDSA_P256_COMPONENT_SIZE
    return GblSignatureRecord(
        tag=tag,
        length=length,
        offset=offset,
        r=bytes(buffer[r_start:s_start]),
        s=bytes(buffer[s_start:s_start + ECDSA_P256_COMPONENT_SIZE]),
    )


def _decode_end(buffer, offset, tag, length):
    crc = struct.unpack_from('<I', buffer, offset + RECORD_HEADER_SIZE)[0]
    return GblEndRecord(tag, length, offset, crc)


_RECORD_DECODERS = {
    GblTag.APPLICATION: _decode_application,
    GblTag.BOOTLOADER: _decode_bootloader,
    GblTag.SE_UPGRADE: _decode_se_upgrade,
    GblTag.METADATA: _decode_metadata,
    GblTag.PROG: _decode_prog,
    GblTag.ERASEPROG: _decode_prog,
    GblTag.PROG_LZ4: _decode_prog,
    GblTag.PROG_LZMA: _decode_prog,
    GblTag.ENC_HEADER: _decode_enc_header,
    GblTag.ENC_INIT: _decode_enc_init,
    GblTag.ENC_GBL_DATA: _decode_enc_data,
    GblTag.ENC_MAC: _decode_enc_mac,
    GblTag.CERTIFICATE_ECDSA_P256: _decode_certificate,
    GblTag.SIGNATURE_ECDSA_P256: _decode_signature,
    GblTag.END: _decode_end,
}


def decode_record(buffer, offset: int,
                  revision: FormatRevision = GBL_DEFAULT) -> tuple[GblRecord, int]:
    """Decode the record starting at ``offset``.

    Args:
        buffer: the whole image.
        offset: byte offset of the record's tag field.
        revision: supplies the metadata length bound.

    Returns:
        The record and its total span (record header plus payload).

    Raises:
        MalformedRecordError: unknown tag or a length outside the tag's rule.
        TruncatedContainerError: the record runs past the end of the buffer.
    """
    available = len(buffer) - offset
    if available < RECORD_HEADER_SIZE:
        raise TruncatedContainerError(
            f"GBL record header at offset 0x{offset:X} needs {RECORD_HEADER_SIZE} bytes, "
            f"but only {available} remain",
            offset=offset, needed=RECORD_HEADER_SIZE, available=available)

    tag_value, length = struct.unpack_from('<II', buffer, offset)
    decoder = _RECORD_DECODERS.get(tag_value)
    if decoder is None:
        raise MalformedRecordError(
            f"Unknown tag 0x{tag_value:08X} at position {offset}",
            offset=offset, tag=tag_value)

    tag = GblTag(tag_value)
    _check_length(tag, length, offset, revision)

    span = RECORD_HEADER_SIZE + length
    if span > available:
        raise TruncatedContainerError(
            f"{tag.name} record at offset 0x{offset:X} declares {length} bytes, "
            f"but only {available - RECORD_HEADER_SIZE} remain",
            offset=offset, needed=span, available=available)

    _logger.debug("GBL %s at 0x%X, %d bytes", tag.name, offset, length)
    return decoder(buffer, offset, tag, length), span


# ---------------------------------------------------------------------------
# Container decoding
# ---------------------------------------------------------------------------

def decode(buffer, revision: FormatRevision = GBL_DEFAULT) -> GblImage:
    """Decode and validate a complete GBL image.

    Raises:
        DecodeError: subclass describing the first problem found.
    """
    if revision.format is not Format.GBL:
        raise ValueError(f"Revision {revision.name!r} is not a GBL revision")

    header = decode_header(buffer)

    position = RECORD_HEADER_SIZE + header.length
    records = []
    while position < len(buffer):
        record, span = decode_record(buffer, position, revision)
        records.append(record)
        position += span

        if record.tag is GblTag.END:
            break

    if not records or records[-1].tag is not GblTag.END:
        raise TruncatedContainerError(
            f"GBL image ended at offset 0x{position:X} without an END record",
            offset=position, needed=RECORD_HEADER_SIZE + 4, available=0)

    crc = verify_image_crc(buffer, position)
    _logger.debug("GBL CRC-32 over %d bytes: 0x%08X", position, crc)

    revision.check_trailing(buffer, position)

    return GblImage(header=header, records=tuple(records))
