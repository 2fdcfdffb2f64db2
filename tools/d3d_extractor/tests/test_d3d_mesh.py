"""Tests for vertex channel decoding and face buffers."""
import struct
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from byte_reader import ByteReader
from checksum_mapping import ChecksumMap
from d3d_asset import decode_mesh
from d3d_errors import MalformedFieldError, UnknownEncodingError, UnresolvedReferenceError
from d3d_mesh import (
    VertexChannel,
    parse_vertex_layout,
    read_normals_i16,
    read_normals_i8,
    read_positions_f32,
    read_positions_packed,
    read_positions_u16,
    read_uvs_i16,
    read_uvs_u16,
    read_weights_packed,
    read_weights_u16,
)
from d3d_types import ModelClamps, ModelOrientation, UVClamps

from d3d_builders import build_d3dmesh, layout_entry, material, polygon_record

UNIT = ModelClamps(mesh_min=(0.0, 0.0, 0.0), mesh_multiplier=(1.0, 1.0, 1.0))
EMPTY_MAP = ChecksumMap.from_strings([])

TRIANGLE = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]


def f32_positions(points):
    return b"".join(struct.pack("<3f", *p) for p in points)


def simple_mesh(**kwargs):
    """A one-material, one-group mesh; keyword arguments override the defaults."""
    params = dict(
        materials=[material(0x10)],
        material_groups=[0x10],
        vert_count=3,
        faces=[(0, 1, 2)],
        layout=[layout_entry(1, 4)],
        vertex_data=f32_positions(TRIANGLE),
    )
    params.update(kwargs)
    return build_d3dmesh(**params)


def test_positions_f32():
    reader = ByteReader(f32_positions(TRIANGLE))
    assert read_positions_f32(reader, 3, UNIT) == TRIANGLE


def test_positions_u16_dequantized():
    clamps = ModelClamps(mesh_min=(-1.0, 0.0, 2.0), mesh_multiplier=(2.0, 4.0, 1.0))
    reader = ByteReader(struct.pack("<4H", 65535, 0, 65535, 123))
    assert read_positions_u16(reader, 1, clamps) == [pytest.approx((1.0, 0.0, 3.0))]


def test_positions_packed_extends_orientation_axis():
    """The top two bits widen the axis named by the orientation."""
    packed = 1023 | (0 << 10) | (511 << 20) | (3 << 30)
    clamps = ModelClamps(
        mesh_min=(0.0, 0.0, 0.0),
        mesh_multiplier=(1.0, 1.0, 1.0),
        orientation=ModelOrientation.Y,
    )
    (position,) = read_positions_packed(ByteReader(struct.pack("<I", packed)), 1, clamps)
    assert position == pytest.approx((1.0, 0.75, 511 / 1023))


def test_positions_packed_without_orientation():
    packed = 1023 | (1023 << 10) | (1023 << 20) | (3 << 30)
    (position,) = read_positions_packed(ByteReader(struct.pack("<I", packed)), 1, UNIT)
    assert position == pytest.approx((1.0, 1.0, 1.0))


def test_weights_u16():
    reader = ByteReader(struct.pack("<4H", 65535, 0, 0, 0))
    assert read_weights_u16(reader, 1) == [(1.0, 0.0, 0.0, 0.0)]


def test_weights_packed_sum_to_one():
    packed = 1023 | (0 << 10) | (1023 << 20)
    (weights,) = read_weights_packed(ByteReader(struct.pack("<I", packed)), 1)
    assert weights == pytest.approx((0.625, 0.125, 0.0, 0.25))
    assert sum(weights) == pytest.approx(1.0)


def test_weights_packed_zero_is_single_bone():
    (weights,) = read_weights_packed(ByteReader(struct.pack("<I", 0)), 1)
    assert weights == (1.0, 0.0, 0.0, 0.0)


def test_normals_i8_normalized():
    reader = ByteReader(struct.pack("<4b4b4b", 127, 0, 0, 0, 3, 4, 0, 0, 0, 0, 0, 0))
    normals = read_normals_i8(reader, 3)
    assert normals[0] == pytest.approx((1.0, 0.0, 0.0))
    assert normals[1] == pytest.approx((0.6, 0.8, 0.0))
    # a zero vector stays zero
    assert normals[2] == (0.0, 0.0, 0.0)


def test_normals_i16_normalized():
    reader = ByteReader(struct.pack("<4h", 0, -100, 0, 0))
    assert read_normals_i16(reader, 1) == [pytest.approx((0.0, -1.0, 0.0))]


def test_uvs_i16_with_clamps():
    clamps = UVClamps(multiplier=(2.0, 2.0), start=(1.0, 0.0))
    reader = ByteReader(struct.pack("<2h", 32767, -32767))
    assert read_uvs_i16(reader, 1, clamps) == [pytest.approx((3.0, -2.0))]


def test_uvs_u16_default_clamps():
    reader = ByteReader(struct.pack("<2H", 65535, 0))
    assert read_uvs_u16(reader, 1, UVClamps()) == [pytest.approx((1.0, 0.0))]


def test_layout_maps_type_and_layer():
    data = layout_entry(1, 42) + layout_entry(7, 24, layer=2) + layout_entry(2, 38, layer=2)
    layout = parse_vertex_layout(ByteReader(data), 3)
    assert layout == {
        VertexChannel.POSITION: 42,
        VertexChannel.UV_2: 24,
        VertexChannel.BINORMAL: 38,
    }


def test_layout_unknown_combination():
    with pytest.raises(UnknownEncodingError, match="type=9 layer=1"):
        parse_vertex_layout(ByteReader(layout_entry(9, 4)), 1)


def test_mesh_channels_in_stream_order():
    """Channels are read in stream order, not layout order."""
    layout = [
        layout_entry(7, 3),     # uv1
        layout_entry(2, 38),    # normals
        layout_entry(5, 33),    # bones
        layout_entry(4, 27),    # weights
        layout_entry(3, 38),    # tangents
        layout_entry(6, 33),    # colors
        layout_entry(1, 4),     # positions
    ]
    vertex_data = f32_positions(TRIANGLE)
    vertex_data += struct.pack("<4H", 65535, 0, 0, 0) * 3
    vertex_data += struct.pack("<4B", 0, 1, 0, 0) + struct.pack("<4B", 1, 1, 1, 1) * 2
    vertex_data += struct.pack("<4b", 0, 0, 127, 0) * 3
    vertex_data += b"\x7f" * 12  # tangents
    vertex_data += b"\xff" * 12  # colors
    vertex_data += struct.pack("<6f", 0.0, 0.0, 1.0, 0.0, 0.0, 1.0)

    asset = decode_mesh(simple_mesh(
        layout=layout, vertex_data=vertex_data, bone_ids=[0xA1, 0xB2],
    ), EMPTY_MAP)
    mesh = asset.mesh

    assert mesh.positions == TRIANGLE
    assert mesh.weights == [(1.0, 0.0, 0.0, 0.0)] * 3
    assert mesh.bones == [(0xA1, 0xB2, 0xA1, 0xA1), (0xB2,) * 4, (0xB2,) * 4]
    assert mesh.normals == [pytest.approx((0.0, 0.0, 1.0))] * 3
    assert mesh.uv_layers == [[(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)]]
    assert mesh.faces == [(0, 1, 2)]


def test_uv_clamps_apply_per_layer():
    layout = [layout_entry(1, 4), layout_entry(7, 24, layer=1), layout_entry(7, 25, layer=2)]
    vertex_data = f32_positions(TRIANGLE)
    vertex_data += struct.pack("<2h", 32767, 0) * 3
    vertex_data += struct.pack("<2H", 65535, 65535) * 3
    asset = decode_mesh(simple_mesh(
        layout=layout,
        vertex_data=vertex_data,
        uv_clamps=[(1, 0.5, 0.5, 0.25, 0.25)],
    ), EMPTY_MAP)

    uv1, uv2 = asset.mesh.uv_layers
    assert uv1 == [pytest.approx((1.0, 0.0))] * 3
    assert uv2 == [pytest.approx((0.75, 0.75))] * 3


def test_bone_slot_outside_table():
    layout = [layout_entry(1, 4), layout_entry(5, 33)]
    vertex_data = f32_positions(TRIANGLE) + struct.pack("<4B", 0, 0, 5, 0) * 3
    with pytest.raises(UnresolvedReferenceError, match="vertex 0"):
        decode_mesh(simple_mesh(layout=layout, vertex_data=vertex_data, bone_ids=[1]), EMPTY_MAP)


def test_unknown_position_format():
    with pytest.raises(UnknownEncodingError, match="position format 5"):
        decode_mesh(simple_mesh(layout=[layout_entry(1, 5)]), EMPTY_MAP)


def test_unknown_mesh_flags():
    with pytest.raises(UnknownEncodingError, match="MeshFlags"):
        decode_mesh(simple_mesh(vert_flags=0x02), EMPTY_MAP)


@pytest.mark.parametrize("flags", [0x00, 0x01, 0x03, 0x05, 0x09, 0x21])
def test_plain_mesh_flags(flags):
    asset = decode_mesh(simple_mesh(vert_flags=flags), EMPTY_MAP)
    assert asset.mesh.positions == TRIANGLE


def test_secondary_vertex_stream():
    """Flag 0x31 takes positions and bone slots from the secondary stream."""
    secondary = b"".join(
        struct.pack("<3f4B", *p, 1, 0, 0, 0) + b"\x00" * 8 for p in TRIANGLE
    )
    layout = [layout_entry(2, 38)]
    normals = struct.pack("<4b", 127, 0, 0, 0) * 3
    asset = decode_mesh(simple_mesh(
        vert_flags=0x31,
        layout=layout,
        vertex_data=normals,
        secondary_vertex_data=secondary,
        bone_ids=[0x55, 0x66],
    ), EMPTY_MAP)

    assert asset.mesh.positions == TRIANGLE
    assert asset.mesh.bones == [(0x66, 0x55, 0x55, 0x55)] * 3
    assert asset.mesh.normals == [pytest.approx((1.0, 0.0, 0.0))] * 3


def test_secondary_stream_replaced_by_main_positions():
    secondary = b"".join(struct.pack("<3f4B", 9.0, 9.0, 9.0, 0, 0, 0, 0) + b"\x00" * 8
                         for _ in TRIANGLE)
    asset = decode_mesh(simple_mesh(
        vert_flags=0x31, secondary_vertex_data=secondary, bone_ids=[0x1],
    ), EMPTY_MAP)
    assert asset.mesh.positions == TRIANGLE


def test_face_buffer_b_is_discarded():
    """Buffer B sits between buffer A and the vertex data but is not kept."""
    asset = decode_mesh(simple_mesh(faces_b=[(2, 1, 0), (0, 0, 0)]), EMPTY_MAP)
    assert asset.mesh.faces == [(0, 1, 2)]
    assert asset.mesh.positions == TRIANGLE


def test_too_many_face_buffers():
    data = bytearray(simple_mesh())
    # patch the face buffer count in the section 12 header
    marker = struct.pack("<III", 1, 1, 0) + layout_entry(1, 4)
    offset = bytes(data).index(marker)
    data[offset:offset + 4] = struct.pack("<I", 3)
    with pytest.raises(MalformedFieldError, match="3 face buffers"):
        decode_mesh(bytes(data), EMPTY_MAP)


def test_polygon_faces_slice():
    polygons = [
        polygon_record(polygon_count=1, material_group=0),
        polygon_record(face_point_start=3, polygon_count=1, material_group=0),
    ]
    asset = decode_mesh(simple_mesh(
        polygons=polygons,
        faces=[(0, 1, 2), (2, 1, 0)],
    ), EMPTY_MAP)
    assert [asset.faces_for(p) for p in asset.polygons] == [[(0, 1, 2)], [(2, 1, 0)]]


def test_position_only_mesh():
    asset = decode_mesh(simple_mesh(), EMPTY_MAP)
    mesh = asset.mesh
    assert len(mesh.positions) == 3
    assert mesh.normals == []
    assert mesh.uv_layers == []
    assert mesh.bones == []
    assert mesh.weights == []
