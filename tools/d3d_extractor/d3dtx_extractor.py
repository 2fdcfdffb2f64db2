"""Extractor for Telltale .d3dtx texture files.

D3DTX layout after the container header:
- 0x14 unknown bytes, length-prefixed name, 0x0C unknown bytes
- u8 flag; 0x31 announces an extra block (8 bytes, u32 jump, jump - 4 bytes)
- u32 mip count, u32 width, u32 height, 8 unknown bytes, u32 format
- 0x5C unknown bytes
- Per mip: 0x0C unknown bytes, u32 payload size, 8 unknown bytes
- Mip payloads, smallest first; only the last (largest) is decoded
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Union

from PIL import Image

from bcn_decoder import BCnDecoder, BCnVariant
from byte_reader import ByteReader
from d3d_errors import MalformedFieldError, UnknownEncodingError
from d3d_parser import ContainerHeader, read_d3d_name

logger = logging.getLogger(__name__)

EXTENDED_HEADER_FLAG = 0x31


class TextureFormat(IntEnum):
    """Surface formats found in .d3dtx files."""
    A8 = 16
    A8_ALT = 17
    BC1 = 64
    BC2 = 65
    BC3 = 66
    BC4 = 67
    BC5 = 68


BCN_FORMATS = {
    TextureFormat.BC1: BCnVariant.BC1,
    TextureFormat.BC2: BCnVariant.BC2,
    TextureFormat.BC3: BCnVariant.BC3,
    TextureFormat.BC4: BCnVariant.BC4,
    TextureFormat.BC5: BCnVariant.BC5,
}


@dataclass
class D3DTXHeader:
    """Header data of a .d3dtx file."""
    name: str
    width: int
    height: int
    mip_count: int
    format: Union[TextureFormat, int]

    @classmethod
    def read(cls, reader: ByteReader) -> "D3DTXHeader":
        """Read the header and leave the reader at the largest mip's payload.

        Raises:
            UnsupportedFormatError: If the container is not versioned
            MalformedFieldError: If the texture has no mips
        """
        ContainerHeader.read(reader)
        reader.skip(0x14)
        name = read_d3d_name(reader)
        logger.debug("D3DTX file %s", name)
        reader.skip(0x0C)

        if reader.read_u8() == EXTENDED_HEADER_FLAG:
            reader.skip(0x08)
            header_jump = reader.read_u32()
            reader.skip(header_jump - 4)

        mip_count = reader.read_u32()
        width = reader.read_u32()
        height = reader.read_u32()
        reader.skip(0x08)
        format_val = reader.read_u32()
        fmt = TextureFormat(format_val) if format_val in TextureFormat._value2member_map_ else format_val
        reader.skip(0x5C)

        logger.debug(
            "mip map info start = %#X, mip_map_count = %d, width = %d, height = %d, format = %s",
            reader.tell(), mip_count, width, height, fmt,
        )
        if mip_count == 0:
            raise MalformedFieldError("texture has no mip maps", offset=reader.tell())

        mip_sizes = []
        for _ in range(mip_count):
            reader.skip(0x0C)
            mip_sizes.append(reader.read_u32())
            reader.skip(0x08)

        logger.debug("data_start = %#X", reader.tell())
        reader.skip(sum(mip_sizes[:-1]))

        return cls(name=name, width=width, height=height, mip_count=mip_count, format=fmt)


def decode_texture(data: bytes) -> Tuple[str, Image.Image]:
    """Decode the largest mip of a .d3dtx file.

    Args:
        data: Complete file contents

    Returns:
        Tuple of (texture name, image)

    Raises:
        UnknownEncodingError: If the surface format has no decoder
        DecodeError: Any other subclass on malformed input
    """
    reader = ByteReader(data)
    header = D3DTXHeader.read(reader)
    logger.debug("last mip-map start = %#X", reader.tell())

    variant: Optional[BCnVariant] = BCN_FORMATS.get(header.format)
    if variant is not None:
        image = BCnDecoder(reader, header.width, header.height, variant).read_image()
    elif header.format in (TextureFormat.A8, TextureFormat.A8_ALT):
        size = header.width * header.height
        image = Image.frombytes("L", (header.width, header.height), reader.read(size))
    else:
        raise UnknownEncodingError(f"unknown TextureFormat: {header.format}")

    return header.name, image
