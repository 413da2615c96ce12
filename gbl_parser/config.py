"""Per-revision decoder settings.

Format revisions in the field disagree on what may follow the END record:
EBL images are padded with 0xFF to a flash-friendly size, GBL images are
padded with 0x00, some toolchains emit no trailing bytes at all and some
consumers never look. Each behaviour is a named :class:`FormatRevision`
that callers pass to the decoders explicitly.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from .detect import Format
from .errors import TrailingDataError

EBL_PADDING = 0xFF
GBL_PADDING = 0x00

# Upper bound both formats' bootloaders accept for a metadata record
METADATA_MAX_LENGTH = 65534


class TrailingPolicy(enum.Enum):
    PADDING = "padding"  # every trailing byte equals padding_byte
    EXACT = "exact"      # checksummed region must end the buffer
    IGNORE = "ignore"    # trailing bytes are not inspected


@dataclass(frozen=True)
class FormatRevision:
    """Settings for one revision of one container format."""
    name: str
    format: Format
    trailing: TrailingPolicy
    padding_byte: int = 0x00
    # Only consulted by the GBL decoder; EBL fixes its own bound
    max_metadata_length: Optional[int] = None

    def __post_init__(self):
        if not 0 <= self.padding_byte <= 0xFF:
            raise ValueError(f"padding_byte must fit in one byte, got {self.padding_byte}")

    def check_trailing(self, buffer, position: int) -> None:
        """Apply this revision's policy to ``buffer[position:]``.

        Raises:
            TrailingDataError: on the first offending byte.
        """
        if self.trailing is TrailingPolicy.IGNORE:
            return

        if self.trailing is TrailingPolicy.EXACT:
            if position != len(buffer):
                raise TrailingDataError(
                    f"{self.format.name} image has {len(buffer) - position} "
                    f"unexpected trailing bytes at offset 0x{position:X}",
                    offset=position, value=buffer[position])
            return

        for offset in range(position, len(buffer)):
            value = buffer[offset]
            if value != self.padding_byte:
                raise TrailingDataError(
                    f"{self.format.name} padding contains invalid byte 0x{value:02X} "
                    f"at offset 0x{offset:X} (expected 0x{self.padding_byte:02X})",
                    offset=offset, value=value)


EBL_DEFAULT = FormatRevision(
    "ebl", Format.EBL, TrailingPolicy.PADDING, padding_byte=EBL_PADDING)
EBL_STRICT = FormatRevision(
    "ebl-strict", Format.EBL, TrailingPolicy.EXACT)

GBL_DEFAULT = FormatRevision(
    "gbl", Format.GBL, TrailingPolicy.PADDING, padding_byte=GBL_PADDING,
    max_metadata_length=METADATA_MAX_LENGTH)
GBL_STRICT = FormatRevision(
    "gbl-strict", Format.GBL, TrailingPolicy.EXACT,
    max_metadata_length=METADATA_MAX_LENGTH)
GBL_LENIENT = FormatRevision(
    "gbl-lenient", Format.GBL, TrailingPolicy.IGNORE)

REVISIONS: dict[str, FormatRevision] = {
    r.name: r for r in (EBL_DEFAULT, EBL_STRICT, GBL_DEFAULT, GBL_STRICT, GBL_LENIENT)
}

DEFAULT_REVISIONS = {
    Format.EBL: EBL_DEFAULT,
    Format.GBL: GBL_DEFAULT,
}


def get_revision(name: str) -> FormatRevision:
    """Look up a preset revision by name."""
    try:
        return REVISIONS[name]
    except KeyError:
        known = ', '.join(sorted(REVISIONS))
        raise KeyError(f"Unknown format revision {name!r} (known: {known})") from None
