"""Exceptions raised while decoding Telltale D3D asset files."""
from typing import Optional


class DecodeError(ValueError):
    """Base class for every fatal decode failure.

    Args:
        message: Human readable cause
        offset: Byte offset in the input where the failure was detected
    """

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at offset 0x{offset:X})"
        super().__init__(message)


class UnsupportedFormatError(DecodeError):
    """Unknown container magic or unsupported file version."""


class MalformedFieldError(DecodeError):
    """A field is structurally inconsistent with the rest of the file."""


class UnknownEncodingError(DecodeError):
    """A dispatched value (format code, layout pair, flag) has no decoder."""


class UnresolvedReferenceError(DecodeError):
    """A cross reference inside the file points at nothing."""


class TruncatedDataError(DecodeError):
    """A read or seek went past the bounds of the input buffer."""
