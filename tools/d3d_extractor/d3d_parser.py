"""Container header parsing shared by .d3dmesh, .d3dtx and .skl files.

Telltale D3D container layout:
- Magic: 4 bytes read as little-endian u32 (MSV5/MSV6 for versioned files)
- Versioned files: u32 file size, 8 unknown bytes, u32 parameter count,
  then 12 opaque bytes per parameter
- Most file kinds continue with a length-prefixed name
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from byte_reader import ByteReader
from d3d_errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

SUPPORTED_MESH_VERSION = 55
PARAMETER_ENTRY_SIZE = 0x0C


class VersionHeader(IntEnum):
    """Magic tags at the start of Telltale files, read as u32."""
    MBIN = 1296189774
    MTRE = 1297371717
    MSV5 = 1297307189
    MSV6 = 1297307190

    @classmethod
    def parse(cls, reader: ByteReader) -> Union["VersionHeader", int]:
        """Read the magic. Unknown tags are returned as their raw value."""
        value = reader.read_u32()
        if value in cls._value2member_map_:
            return cls(value)
        return value


VERSIONED_HEADERS = (VersionHeader.MSV5, VersionHeader.MSV6)


@dataclass
class ContainerHeader:
    """The shared envelope in front of every supported file."""
    version: VersionHeader
    file_size: int
    param_count: int

    @classmethod
    def read(cls, reader: ByteReader) -> "ContainerHeader":
        """Read the envelope and skip its parameter table.

        Raises:
            UnsupportedFormatError: If the magic is legacy or unknown
        """
        start = reader.tell()
        version = VersionHeader.parse(reader)
        if version not in VERSIONED_HEADERS:
            name = version.name if isinstance(version, VersionHeader) else f"Unknown({version})"
            raise UnsupportedFormatError(f"unknown header format {name}", offset=start)

        file_size = reader.read_u32()
        reader.skip(0x08)
        param_count = reader.read_u32()
        reader.skip(PARAMETER_ENTRY_SIZE * param_count)
        return cls(version=version, file_size=file_size, param_count=param_count)


def read_d3d_name(reader: ByteReader) -> str:
    """Read a length-prefixed name.

    Layout is u32 header length, u32 name length, name bytes. Some files
    omit the name length; that shows up as a name length larger than the
    header length, in which case the header length is the name length and
    the name starts right after it.
    """
    header_length = reader.read_u32()
    name_length = reader.read_u32()
    if name_length > header_length:
        reader.skip(-0x04)
        name_length = header_length
    return reader.read_fixed_string(name_length)


@dataclass
class D3DMeshHeader:
    """Header of a .d3dmesh file."""
    name: str
    version: int

    @classmethod
    def read(cls, reader: ByteReader) -> "D3DMeshHeader":
        """Read the container header, the mesh name and its version byte.

        Raises:
            UnsupportedFormatError: If the container or version is unsupported
        """
        ContainerHeader.read(reader)
        name = read_d3d_name(reader)
        version_offset = reader.tell()
        version = reader.read_u8()
        logger.debug("Importing %s (Version %d)...", name, version)
        if version != SUPPORTED_MESH_VERSION:
            raise UnsupportedFormatError(
                f"unsupported version {version}", offset=version_offset
            )
        return cls(name=name, version=version)
