import struct

import pytest

from gbl_parser.detect import Format, detect_format, is_ebl, is_gbl

from builders import ebl_enc_header, ebl_header, ebl_image, gbl_image


@pytest.mark.parametrize("size", range(10))
def test_short_buffers_are_unrecognized(size):
    assert detect_format(b"\x00" * size) is None
    assert detect_format(b"\xeb\x17\xa6\x03\x08\x00\x00\x00\x00"[:size]) is None


def test_nine_byte_gbl_prefix_is_rejected():
    # a GBL magic followed by too little data is still not a GBL image
    assert detect_format(struct.pack('<I', 0x03A617EB) + b"\x00" * 5) is None


def test_gbl():
    assert detect_format(gbl_image()) is Format.GBL


def test_ebl_plain_header():
    assert detect_format(ebl_image(ebl_header())) is Format.EBL


def test_ebl_encrypted_header():
    assert detect_format(ebl_image(ebl_enc_header())) is Format.EBL


def test_unknown_magic():
    assert detect_format(b"NGIS" + b"\x00" * 20) is None


def test_gbl_is_checked_before_ebl():
    image = gbl_image()
    assert is_gbl(image)
    assert not is_ebl(image)
    assert detect_format(image) is Format.GBL


def test_gbl_magic_with_big_endian_reading_is_not_ebl():
    # EBL detection reads a BE u16; the GBL magic's leading bytes must not
    # satisfy it
    data = struct.pack('<I', 0x03A617EB) + b"\x00" * 12
    assert struct.unpack_from('>H', data)[0] == 0xEB17
    assert detect_format(data) is Format.GBL


@pytest.mark.parametrize("wrap", [bytes, bytearray, memoryview])
def test_buffer_types(wrap):
    assert detect_format(wrap(gbl_image())) is Format.GBL
    assert detect_format(wrap(ebl_image(ebl_header()))) is Format.EBL


def test_format_values():
    assert Format.GBL.value == "gbl"
    assert Format.EBL == "ebl"
