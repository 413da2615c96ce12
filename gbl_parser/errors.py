"""Decode failures raised by the EBL and GBL decoders.

Every failure is terminal for the decode call that raised it. The
exception carries the offsets and expected/actual values needed to
diagnose the image; no partially decoded container is ever returned.
"""

from typing import Optional


class DecodeError(ValueError):
    """Base class for everything that makes an image invalid."""


class UnrecognizedFormatError(DecodeError):
    """Buffer is too short or its magic matches neither format."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Unrecognized firmware container ({length} bytes)")


class MalformedHeaderError(DecodeError):
    """Header magic is wrong or the header does not fit in the buffer."""

    def __init__(self, message: str, offset: int = 0):
        self.offset = offset
        super().__init__(message)


class MalformedRecordError(DecodeError):
    """Unknown tag, or a declared length that breaks the tag's rule."""

    def __init__(
        self,
        message: str,
        offset: int,
        tag: int,
        expected: Optional[str] = None,
        actual: Optional[int] = None,
    ):
        self.offset = offset
        self.tag = tag
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class TruncatedContainerError(DecodeError):
    """Buffer ends inside a record or before the END record."""

    def __init__(self, message: str, offset: int, needed: int, available: int):
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(message)


class ChecksumMismatchError(DecodeError):
    """CRC-32 of the consumed region is not the expected residue."""

    def __init__(self, expected: int, actual: int, length: int):
        self.expected = expected
        self.actual = actual
        self.length = length
        super().__init__(
            f"Image CRC-32 is invalid: expected 0x{expected:08X}, "
            f"got 0x{actual:08X} over {length} bytes"
        )


class TrailingDataError(DecodeError):
    """Bytes after the END record violate the trailing-bytes policy."""

    def __init__(self, message: str, offset: int, value: int):
        self.offset = offset
        self.value = value
        super().__init__(message)
