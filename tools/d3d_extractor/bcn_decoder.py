"""BC1-BC5 (DXT/S3TC) block decompression to Pillow images.

Every format stores 4x4 pixel blocks, row of blocks after row of blocks:
- BC1: two RGB565 colors + 2-bit indices (8 bytes), decoded as RGB
- BC2: 4-bit explicit alpha (8 bytes) + BC1 color block, decoded as RGBA
- BC3: interpolated alpha (8 bytes) + BC1 color block, decoded as RGBA
- BC4: one interpolated channel (8 bytes), decoded as L
- BC5: two interpolated channels (16 bytes), decoded as LA
"""
import struct
from enum import Enum
from typing import List, Tuple, Union

from PIL import Image

from byte_reader import ByteReader
from d3d_errors import MalformedFieldError


class BCnVariant(Enum):
    """Block compression variant: (encoded bytes, decoded bytes, Pillow mode) per block."""
    BC1 = (8, 48, "RGB")
    BC2 = (16, 64, "RGBA")
    BC3 = (16, 64, "RGBA")
    BC4 = (8, 16, "L")
    BC5 = (16, 32, "LA")

    @property
    def encoded_bytes_per_block(self) -> int:
        return self.value[0]

    @property
    def decoded_bytes_per_block(self) -> int:
        return self.value[1]

    @property
    def mode(self) -> str:
        return self.value[2]

    @property
    def bytes_per_pixel(self) -> int:
        return self.decoded_bytes_per_block // 16


def expand_565(value: int) -> Tuple[int, int, int]:
    """Expand a packed RGB565 color so 0 stays 0 and the channel max becomes 255."""
    r = (value >> 11) & 0x1F
    g = (value >> 5) & 0x3F
    b = value & 0x1F
    return (r * 255 // 31, g * 255 // 63, b * 255 // 31)


def alpha_table(alpha0: int, alpha1: int) -> List[int]:
    """Build the 8-entry interpolated channel palette.

    If alpha0 > alpha1 the six middle entries ramp from alpha0 to alpha1.
    Otherwise four entries ramp between them and the last two are 0 and 255.
    """
    table = [alpha0, alpha1, 0, 0, 0, 0, 0, 255]
    if alpha0 > alpha1:
        for i in range(2, 8):
            table[i] = ((8 - i) * alpha0 + (i - 1) * alpha1) // 7
    else:
        for i in range(2, 6):
            table[i] = ((6 - i) * alpha0 + (i - 1) * alpha1) // 5
    return table


def _decode_colors(block: bytes, dest: bytearray, pitch: int, is_bc1: bool) -> None:
    """Decode an 8-byte color block into the RGB bytes of 16 pixels.

    Args:
        block: 8 bytes of color data
        dest: 16 * pitch bytes
        pitch: 3 for RGB output, 4 for RGBA output (alpha left alone)
        is_bc1: Whether color0 <= color1 selects the 3-color mode
    """
    color0, color1, indices = struct.unpack("<HHI", block)
    c0 = expand_565(color0)
    c1 = expand_565(color1)

    if color0 > color1 or not is_bc1:
        c2 = tuple((2 * a + b + 1) // 3 for a, b in zip(c0, c1))
        c3 = tuple((a + 2 * b + 1) // 3 for a, b in zip(c0, c1))
    else:
        c2 = tuple((a + b + 1) // 2 for a, b in zip(c0, c1))
        c3 = (0, 0, 0)
    colors = (c0, c1, c2, c3)

    for i in range(16):
        offset = i * pitch
        dest[offset:offset + 3] = bytes(colors[(indices >> (i * 2)) & 3])


def _decode_interpolated(block: bytes, dest: bytearray, pitch: int, channel: int) -> None:
    """Decode an 8-byte interpolated block (BC3 alpha, BC4, BC5) into one channel."""
    palette = alpha_table(block[0], block[1])
    indices = int.from_bytes(block[2:8], "little")
    for i in range(16):
        dest[i * pitch + channel] = palette[(indices >> (i * 3)) & 7]


def decode_bc1_block(block: bytes) -> bytearray:
    dest = bytearray(48)
    _decode_colors(block, dest, 3, is_bc1=True)
    return dest


def decode_bc2_block(block: bytes) -> bytearray:
    dest = bytearray(64)
    alphas = int.from_bytes(block[0:8], "little")
    for i in range(16):
        dest[i * 4 + 3] = ((alphas >> (i * 4)) & 0xF) * 0x11
    _decode_colors(block[8:16], dest, 4, is_bc1=False)
    return dest


def decode_bc3_block(block: bytes) -> bytearray:
    dest = bytearray(64)
    _decode_interpolated(block[0:8], dest, 4, 3)
    _decode_colors(block[8:16], dest, 4, is_bc1=False)
    return dest


def decode_bc4_block(block: bytes) -> bytearray:
    dest = bytearray(16)
    _decode_interpolated(block, dest, 1, 0)
    return dest


def decode_bc5_block(block: bytes) -> bytearray:
    dest = bytearray(32)
    _decode_interpolated(block[0:8], dest, 2, 0)
    _decode_interpolated(block[8:16], dest, 2, 1)
    return dest


BLOCK_DECODERS = {
    BCnVariant.BC1: decode_bc1_block,
    BCnVariant.BC2: decode_bc2_block,
    BCnVariant.BC3: decode_bc3_block,
    BCnVariant.BC4: decode_bc4_block,
    BCnVariant.BC5: decode_bc5_block,
}


class BCnDecoder:
    """Decodes a BCn stream one row of blocks (4 pixel rows) at a time."""

    def __init__(self, stream: ByteReader, width: int, height: int, variant: BCnVariant):
        """Initialize the decoder.

        Args:
            stream: Reader positioned at the first block
            width: Image width in pixels, a multiple of 4
            height: Image height in pixels, a multiple of 4
            variant: Block compression variant

        Raises:
            MalformedFieldError: If width or height is not a multiple of 4
        """
        if width % 4 != 0 or height % 4 != 0:
            raise MalformedFieldError(
                f"{width}x{height} is not a multiple of the 4x4 block size"
            )
        self.stream = stream
        self.width = width
        self.height = height
        self.variant = variant
        self.width_blocks = width // 4
        self.height_blocks = height // 4
        self.row = 0

    @property
    def scanline_bytes(self) -> int:
        return self.variant.decoded_bytes_per_block * self.width_blocks

    def read_scanline(self) -> bytes:
        """Decode the next row of blocks into 4 consecutive pixel rows."""
        encoded = self.variant.encoded_bytes_per_block
        bpp = self.variant.bytes_per_pixel
        row_stride = self.width * bpp
        line_bytes = 4 * bpp
        decode_block = BLOCK_DECODERS[self.variant]

        source = self.stream.read(encoded * self.width_blocks)
        result = bytearray(self.scanline_bytes)
        for bx in range(self.width_blocks):
            block = decode_block(source[bx * encoded:(bx + 1) * encoded])
            for y in range(4):
                offset = y * row_stride + bx * line_bytes
                result[offset:offset + line_bytes] = block[y * line_bytes:(y + 1) * line_bytes]

        self.row += 1
        return bytes(result)

    def read_image(self) -> Image.Image:
        """Decode every remaining row and return the image."""
        rows = [self.read_scanline() for _ in range(self.row, self.height_blocks)]
        return Image.frombytes(self.variant.mode, (self.width, self.height), b"".join(rows))


def decode_bcn(data: Union[bytes, ByteReader], width: int, height: int,
               variant: BCnVariant) -> Image.Image:
    """Decode a whole BCn payload to an image."""
    stream = data if isinstance(data, ByteReader) else ByteReader(data)
    return BCnDecoder(stream, width, height, variant).read_image()
