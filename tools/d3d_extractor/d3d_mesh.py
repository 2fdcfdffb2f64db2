"""Vertex and face buffers of a .d3dmesh file.

The mesh section starts with a layout table describing which vertex
channels exist and how each is encoded, followed by face buffer
descriptors. Face indices live at an offset recorded earlier in the file,
vertex channels follow one after another in a fixed order.

Layout entry (five u32, each stored minus one):
- type, format, layer, buffer slot, offset
- (type, layer) selects the channel, format selects the encoding
"""
import logging
import math
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from byte_reader import ByteReader
from d3d_errors import MalformedFieldError, UnknownEncodingError, UnresolvedReferenceError
from d3d_types import (
    UV,
    BoneReference,
    Face,
    Mesh,
    ModelClamps,
    ModelOrientation,
    UVClamps,
    Vec3,
    Vec4,
)

logger = logging.getLogger(__name__)

UV_LAYER_COUNT = 6
MAX_FACE_BUFFERS = 2
SECONDARY_VERTEX_FLAG = 0x31
PLAIN_VERTEX_FLAGS = frozenset((0x00, 0x01, 0x03, 0x05, 0x09, 0x21))

BoneSlots = Tuple[int, int, int, int]


class VertexChannel(Enum):
    POSITION = "position"
    NORMAL = "normals"
    TANGENT = "tangents"
    BINORMAL = "binormals"
    WEIGHTS = "weights"
    BONES = "bones"
    COLOR = "colors"
    COLOR_2 = "colors2"
    UV_1 = "uv1"
    UV_2 = "uv2"
    UV_3 = "uv3"
    UV_4 = "uv4"
    UV_5 = "uv5"
    UV_6 = "uv6"


C = VertexChannel

# (type, layer) -> channel
LAYOUT_CHANNELS: Dict[Tuple[int, int], VertexChannel] = {
    (1, 1): C.POSITION,
    (2, 1): C.NORMAL,
    (3, 1): C.TANGENT,
    (2, 2): C.BINORMAL,
    (4, 1): C.WEIGHTS,
    (5, 1): C.BONES,
    (6, 1): C.COLOR,
    (6, 2): C.COLOR_2,
    (7, 1): C.UV_1,
    (7, 2): C.UV_2,
    (7, 3): C.UV_3,
    (7, 4): C.UV_4,
    (7, 5): C.UV_5,
    (7, 6): C.UV_6,
}

# Order in which channel data follows each other in the stream
STREAM_ORDER = (
    C.POSITION, C.WEIGHTS, C.BONES, C.NORMAL, C.TANGENT, C.BINORMAL,
    C.UV_5, C.UV_6, C.COLOR, C.COLOR_2, C.UV_1, C.UV_2, C.UV_3, C.UV_4,
)

UV_CHANNELS = (C.UV_1, C.UV_2, C.UV_3, C.UV_4, C.UV_5, C.UV_6)


def _normalize(x: float, y: float, z: float) -> Vec3:
    length = math.sqrt(x * x + y * y + z * z)
    if length == 0.0:
        return (x, y, z)
    return (x / length, y / length, z / length)


def _dequantize(value: float, clamps: ModelClamps, axis: int) -> float:
    return value * clamps.mesh_multiplier[axis] + clamps.mesh_min[axis]


# Position formats

def read_positions_f32(reader: ByteReader, count: int, clamps: ModelClamps) -> List[Vec3]:
    return [tuple(v) for v in reader.iter_unpack("<3f", count)]


def read_positions_u16(reader: ByteReader, count: int, clamps: ModelClamps) -> List[Vec3]:
    """Four u16 per vertex scaled into the model bounds; the 4th is unused."""
    positions = []
    for x, y, z, _ in reader.iter_unpack("<4H", count):
        positions.append((
            _dequantize(x / 65535.0, clamps, 0),
            _dequantize(y / 65535.0, clamps, 1),
            _dequantize(z / 65535.0, clamps, 2),
        ))
    return positions


def read_positions_packed(reader: ByteReader, count: int, clamps: ModelClamps) -> List[Vec3]:
    """10/10/10/2 packed positions.

    The top 2 bits extend the axis named by the model orientation: that
    axis becomes ``value / 4 + top / 4``, giving it 12 bits of precision.
    """
    extended_axis = {
        ModelOrientation.X: 0,
        ModelOrientation.Y: 1,
        ModelOrientation.Z: 2,
    }.get(clamps.orientation)

    positions = []
    for (packed,) in reader.iter_unpack("<I", count):
        axes = [
            (packed & 0x3FF) / 1023.0,
            ((packed >> 10) & 0x3FF) / 1023.0,
            ((packed >> 20) & 0x3FF) / 1023.0,
        ]
        if extended_axis is not None:
            axes[extended_axis] = axes[extended_axis] / 4.0 + (packed >> 30) / 4.0
        positions.append(tuple(_dequantize(v, clamps, i) for i, v in enumerate(axes)))
    return positions


# Weight formats

def read_weights_u16(reader: ByteReader, count: int) -> List[Vec4]:
    return [tuple(w / 65535.0 for w in v) for v in reader.iter_unpack("<4H", count)]


def read_weights_packed(reader: ByteReader, count: int) -> List[Vec4]:
    """Packed weights: 10/10/10 bits for weights 2..4, top 2 bits add to weight 2.

    Weight 2 tops out at 0.125 plus 0.125 per top-bit step, weight 3 at 1/3,
    weight 4 at 1/4. Weight 1 is whatever remains.
    """
    weights = []
    for (packed,) in reader.iter_unpack("<I", count):
        w2 = ((packed & 0x3FF) / 1023.0) / 8.0 + (packed >> 30) / 8.0
        w3 = (((packed >> 10) & 0x3FF) / 1023.0) / 3.0
        w4 = (((packed >> 20) & 0x3FF) / 1023.0) / 4.0
        weights.append((1.0 - w2 - w3 - w4, w2, w3, w4))
    return weights


# Normal formats

def read_normals_i8(reader: ByteReader, count: int) -> List[Vec3]:
    return [
        _normalize(x / 127.0, y / 127.0, z / 127.0)
        for x, y, z, _ in reader.iter_unpack("<4b", count)
    ]


def read_normals_i16(reader: ByteReader, count: int) -> List[Vec3]:
    return [
        _normalize(x / 32767.0, y / 32767.0, z / 32767.0)
        for x, y, z, _ in reader.iter_unpack("<4h", count)
    ]


# UV formats

def read_uvs_f32(reader: ByteReader, count: int, clamps: UVClamps) -> List[UV]:
    return [tuple(v) for v in reader.iter_unpack("<2f", count)]


def read_uvs_i16(reader: ByteReader, count: int, clamps: UVClamps) -> List[UV]:
    return [
        ((u / 32767.0) * clamps.multiplier[0] + clamps.start[0],
         (v / 32767.0) * clamps.multiplier[1] + clamps.start[1])
        for u, v in reader.iter_unpack("<2h", count)
    ]


def read_uvs_u16(reader: ByteReader, count: int, clamps: UVClamps) -> List[UV]:
    return [
        ((u / 65535.0) * clamps.multiplier[0] + clamps.start[0],
         (v / 65535.0) * clamps.multiplier[1] + clamps.start[1])
        for u, v in reader.iter_unpack("<2H", count)
    ]


def read_bone_slots(reader: ByteReader, count: int) -> List[BoneSlots]:
    return [tuple(v) for v in reader.iter_unpack("<4B", count)]


def skip_4x8(reader: ByteReader, count: int) -> None:
    """Tangents, binormals and colors: four bytes per vertex, not kept."""
    reader.skip(4 * count)


POSITION_FORMATS: Dict[int, Callable] = {
    4: read_positions_f32,
    27: read_positions_u16,
    42: read_positions_packed,
}
WEIGHT_FORMATS: Dict[int, Callable] = {27: read_weights_u16, 42: read_weights_packed}
BONE_FORMATS: Dict[int, Callable] = {33: read_bone_slots}
NORMAL_FORMATS: Dict[int, Callable] = {38: read_normals_i8, 26: read_normals_i16}
TANGENT_FORMATS: Dict[int, Callable] = {38: skip_4x8}
COLOR_FORMATS: Dict[int, Callable] = {33: skip_4x8, 39: skip_4x8}
UV_FORMATS: Dict[int, Callable] = {3: read_uvs_f32, 24: read_uvs_i16, 25: read_uvs_u16}

CHANNEL_FORMATS: Dict[VertexChannel, Dict[int, Callable]] = {
    C.POSITION: POSITION_FORMATS,
    C.WEIGHTS: WEIGHT_FORMATS,
    C.BONES: BONE_FORMATS,
    C.NORMAL: NORMAL_FORMATS,
    C.TANGENT: TANGENT_FORMATS,
    C.BINORMAL: TANGENT_FORMATS,
    C.COLOR: COLOR_FORMATS,
    C.COLOR_2: COLOR_FORMATS,
    **{channel: UV_FORMATS for channel in UV_CHANNELS},
}


def parse_vertex_layout(reader: ByteReader, count: int) -> Dict[VertexChannel, int]:
    """Read ``count`` layout entries and return channel -> format code.

    Raises:
        UnknownEncodingError: If a (type, layer) pair names no known channel
    """
    layout: Dict[VertexChannel, int] = {}
    for _ in range(count):
        offset = reader.tell()
        vert_type, vert_format, vert_layer, _, _ = (v + 1 for v in reader.unpack("<5I"))
        channel = LAYOUT_CHANNELS.get((vert_type, vert_layer))
        if channel is None:
            raise UnknownEncodingError(
                f"unknown vertex buffer combination type={vert_type} layer={vert_layer}",
                offset=offset,
            )
        layout[channel] = vert_format
    return layout


def read_faces(reader: ByteReader, face_point_count: int) -> List[Face]:
    """Read ``face_point_count // 3`` triangles of three u16 indices."""
    return [tuple(f) for f in reader.iter_unpack("<3H", face_point_count // 3)]


def _resolve_bones(slots: Sequence[BoneSlots], bone_ids: Sequence[int]) -> List[BoneReference]:
    bones = []
    for vertex, quad in enumerate(slots):
        try:
            bones.append(tuple(bone_ids[slot] for slot in quad))
        except IndexError:
            raise UnresolvedReferenceError(
                f"vertex {vertex} uses bone slots {quad} but the mesh has "
                f"{len(bone_ids)} bone IDs"
            ) from None
    return bones


def parse_mesh(
    reader: ByteReader,
    face_data_start: int,
    vert_start: int,
    vert_flags: int,
    vert_count: int,
    model_clamps: ModelClamps,
    uv_clamps: Sequence[Optional[UVClamps]],
    bone_ids: Sequence[int],
) -> Mesh:
    """Decode faces and vertex channels.

    Args:
        reader: Positioned at the vertex layout table
        face_data_start: Absolute offset of face buffer A
        vert_start: Absolute offset of the secondary vertex stream, used
            only when ``vert_flags`` is 0x31
        vert_flags: Mesh flags selecting the vertex stream arrangement
        vert_count: Number of vertices in every channel
        model_clamps: Position dequantization range
        uv_clamps: Per UV layer dequantization ranges, None for defaults
        bone_ids: File-level bone checksum table

    Returns:
        Mesh with bone slots already resolved to bone checksums

    Raises:
        UnknownEncodingError: On unknown layout pairs, formats or flags
        MalformedFieldError: If more than two face buffers are declared
        UnresolvedReferenceError: If a bone slot is outside ``bone_ids``
    """
    reader.skip(0x08)
    face_buffer_count = reader.read_u32()
    layout_count = reader.read_u32()
    second_table_count = reader.read_u32()
    layout = parse_vertex_layout(reader, layout_count)

    if face_buffer_count > MAX_FACE_BUFFERS:
        raise MalformedFieldError(
            f"{face_buffer_count} face buffers declared, at most {MAX_FACE_BUFFERS} supported",
            offset=reader.tell(),
        )
    face_point_counts = []
    for _ in range(face_buffer_count):
        reader.skip(12)
        face_point_counts.append(reader.read_u32())
        reader.read_u32()  # byte length
    reader.skip(0x14 * second_table_count)

    reader.seek(face_data_start)
    faces: List[Face] = []
    if face_point_counts:
        logger.debug("Facepoint Buffer A start = %#X", reader.tell())
        faces = read_faces(reader, face_point_counts[0])
    if len(face_point_counts) == 2:
        # buffer B is read over but not used
        logger.debug("Facepoint Buffer B start = %#X", reader.tell())
        read_faces(reader, face_point_counts[1])

    positions: List[Vec3] = []
    bone_slots: List[BoneSlots] = []
    if vert_flags == SECONDARY_VERTEX_FLAG:
        resume = reader.tell()
        reader.seek(vert_start)
        logger.debug("Vertex buffer A start = %#X", reader.tell())
        for x, y, z, b1, b2, b3, b4 in reader.iter_unpack("<3f4B8x", vert_count):
            positions.append((x, y, z))
            bone_slots.append((b1, b2, b3, b4))
        reader.seek(resume)
    elif vert_flags not in PLAIN_VERTEX_FLAGS:
        raise UnknownEncodingError(f"unknown MeshFlags combination: {vert_flags}")

    mesh = Mesh(faces=faces)
    uv_by_channel: Dict[VertexChannel, List[UV]] = {}
    for channel in STREAM_ORDER:
        if channel not in layout:
            continue
        fmt = layout[channel]
        logger.debug(
            "%s start = %#X, format = %d", channel.value, reader.tell(), fmt
        )
        decoder = CHANNEL_FORMATS[channel].get(fmt)
        if decoder is None:
            raise UnknownEncodingError(
                f"unknown {channel.value} format {fmt}", offset=reader.tell()
            )

        if channel is C.POSITION:
            positions = decoder(reader, vert_count, model_clamps)
        elif channel is C.WEIGHTS:
            mesh.weights = decoder(reader, vert_count)
        elif channel is C.BONES:
            bone_slots = decoder(reader, vert_count)
        elif channel is C.NORMAL:
            mesh.normals = decoder(reader, vert_count)
        elif channel in UV_CHANNELS:
            layer = UV_CHANNELS.index(channel)
            clamps = uv_clamps[layer] if layer < len(uv_clamps) else None
            uv_by_channel[channel] = decoder(reader, vert_count, clamps or UVClamps())
        else:
            decoder(reader, vert_count)

    logger.debug("End of vertex data = %#X", reader.tell())

    mesh.positions = positions
    mesh.uv_layers = [uv_by_channel[c] for c in UV_CHANNELS if uv_by_channel.get(c)]
    mesh.bones = _resolve_bones(bone_slots, bone_ids)
    return mesh
