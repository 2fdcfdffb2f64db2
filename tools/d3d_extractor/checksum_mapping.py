"""Reverse lookup from CRC-64 checksums to the identifiers they were made from.

Telltale files reference textures, bones and other assets by the
CRC-64/ECMA-182 checksum of their name. Given a list of known names the
checksums can be turned back into text. The map is built once and shared
read-only between decodes.
"""
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Union

from crc import Calculator, Crc64

_CALCULATOR = Calculator(Crc64.CRC64, optimized=True)


def crc64(data: Union[bytes, str]) -> int:
    """CRC-64/ECMA-182 of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return _CALCULATOR.checksum(data)


class ChecksumMap:
    """Immutable checksum -> identifier mapping."""

    def __init__(self, mapping: Optional[Dict[int, str]] = None):
        self._mapping: Dict[int, str] = dict(mapping or {})

    @classmethod
    def from_strings(cls, strings: Iterable[str]) -> "ChecksumMap":
        """Build the map from identifiers. Blank entries are ignored."""
        mapping = {}
        for string in strings:
            if not string:
                continue
            mapping[crc64(string)] = string
        return cls(mapping)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ChecksumMap":
        """Build the map from a text file with one identifier per line."""
        text = Path(path).read_text(encoding="utf-8")
        return cls.from_strings(line.rstrip("\r") for line in text.split("\n"))

    def get_mapping(self, checksum: int) -> Optional[str]:
        return self._mapping.get(checksum)

    def __contains__(self, checksum: int) -> bool:
        return checksum in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def __iter__(self) -> Iterator[int]:
        return iter(self._mapping)
