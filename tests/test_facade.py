import pytest

import gbl_parser
from gbl_parser import (
    EBL_STRICT,
    GBL_LENIENT,
    GBL_STRICT,
    EblImage,
    EblTag,
    Format,
    GblImage,
    GblTag,
    MalformedHeaderError,
    TrailingDataError,
    UnrecognizedFormatError,
)

from builders import ebl_header, ebl_image, ebl_prog, gbl_image, gbl_prog


def test_decode_dispatches_to_gbl():
    image = gbl_parser.decode(gbl_image(gbl_prog(0x0, b"\x01")))
    assert isinstance(image, GblImage)
    assert [r.tag for r in image.records] == [GblTag.PROG, GblTag.END]


def test_decode_dispatches_to_ebl():
    image = gbl_parser.decode(ebl_image(ebl_header(), ebl_prog(0x0, b"\x01\x02")))
    assert isinstance(image, EblImage)
    assert [r.tag for r in image.records] == [EblTag.PROG, EblTag.END]


def test_nine_bytes_are_never_decoded():
    data = b"\x00" * 9
    assert gbl_parser.detect_format(data) is None
    with pytest.raises(UnrecognizedFormatError) as excinfo:
        gbl_parser.decode(data)
    assert excinfo.value.length == 9


def test_unknown_magic():
    with pytest.raises(UnrecognizedFormatError, match="24 bytes"):
        gbl_parser.decode(b"\x12\x34" * 12)


def test_errors_share_a_base_class():
    with pytest.raises(gbl_parser.DecodeError):
        gbl_parser.decode(b"")
    with pytest.raises(ValueError):
        gbl_parser.decode(b"")


def test_decoding_with_the_wrong_decoder_fails_on_header():
    with pytest.raises(MalformedHeaderError):
        gbl_parser.decode_gbl(ebl_image(ebl_header()))
    with pytest.raises(MalformedHeaderError):
        gbl_parser.decode_ebl(gbl_image())


def test_explicit_revision():
    data = gbl_image(padding=b"\x00")
    with pytest.raises(TrailingDataError):
        gbl_parser.decode(data, GBL_STRICT)
    assert gbl_parser.decode(data, GBL_LENIENT) == gbl_parser.decode(data)


def test_revision_must_match_detected_format():
    with pytest.raises(ValueError, match="looks like GBL"):
        gbl_parser.decode(gbl_image(), EBL_STRICT)


def test_facade_matches_module_decoders():
    gbl_data = gbl_image()
    ebl_data = ebl_image(ebl_header())
    assert gbl_parser.decode_gbl(gbl_data) == gbl_parser.gbl.decode(gbl_data)
    assert gbl_parser.decode_ebl(ebl_data) == gbl_parser.ebl.decode(ebl_data)


@pytest.mark.parametrize("fmt, build", [
    (Format.GBL, gbl_image),
    (Format.EBL, lambda: ebl_image(ebl_header())),
])
def test_detect_then_decode(fmt, build):
    data = build()
    assert gbl_parser.detect_format(data) is fmt
    decoder = {Format.GBL: gbl_parser.decode_gbl, Format.EBL: gbl_parser.decode_ebl}[fmt]
    assert decoder(data) == gbl_parser.decode(data)
