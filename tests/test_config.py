import pytest

from gbl_parser.config import (
    DEFAULT_REVISIONS,
    EBL_DEFAULT,
    GBL_DEFAULT,
    GBL_LENIENT,
    GBL_STRICT,
    REVISIONS,
    FormatRevision,
    TrailingPolicy,
    get_revision,
)
from gbl_parser.detect import Format
from gbl_parser.errors import TrailingDataError


def test_default_revisions():
    assert DEFAULT_REVISIONS[Format.EBL] is EBL_DEFAULT
    assert DEFAULT_REVISIONS[Format.GBL] is GBL_DEFAULT
    assert EBL_DEFAULT.trailing is TrailingPolicy.PADDING
    assert EBL_DEFAULT.padding_byte == 0xFF
    assert GBL_DEFAULT.padding_byte == 0x00
    assert GBL_DEFAULT.max_metadata_length == 65534
    assert GBL_LENIENT.max_metadata_length is None


def test_get_revision():
    assert get_revision("gbl-strict") is GBL_STRICT
    assert set(REVISIONS) == {"ebl", "ebl-strict", "gbl", "gbl-strict", "gbl-lenient"}


def test_get_unknown_revision():
    with pytest.raises(KeyError, match="known: ebl, ebl-strict"):
        get_revision("gbl-v9")


def test_padding_byte_must_fit():
    with pytest.raises(ValueError):
        FormatRevision("bad", Format.EBL, TrailingPolicy.PADDING, padding_byte=0x100)


def test_revisions_are_frozen():
    with pytest.raises(AttributeError):
        GBL_DEFAULT.trailing = TrailingPolicy.IGNORE


def test_padding_policy():
    revision = FormatRevision("custom", Format.GBL, TrailingPolicy.PADDING, padding_byte=0xA5)
    revision.check_trailing(b"data\xa5\xa5", 4)
    revision.check_trailing(b"data", 4)
    with pytest.raises(TrailingDataError, match="0x5A at offset 0x5") as excinfo:
        revision.check_trailing(b"data\xa5\x5a", 4)
    assert excinfo.value.offset == 5
    assert excinfo.value.value == 0x5A


def test_exact_policy():
    GBL_STRICT.check_trailing(b"data", 4)
    with pytest.raises(TrailingDataError, match="2 unexpected trailing bytes at offset 0x4"):
        GBL_STRICT.check_trailing(b"data\x00\x00", 4)


def test_ignore_policy():
    GBL_LENIENT.check_trailing(b"data\x01\x02\x03", 4)
