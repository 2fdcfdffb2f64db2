"""Tests for polygon group (submesh) parsing."""
import struct
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from byte_reader import ByteReader
from d3d_polygons import parse_polygon_groups

from d3d_builders import lod, polygon_record, polygon_section


def test_single_polygon():
    data = polygon_section([lod([
        polygon_record(vertex_start=0, vertex_min=0, vertex_max=3, face_point_start=0,
                       polygon_count=2, face_point_count=6, material_group=1),
    ])]) + b"\xFE"
    reader = ByteReader(data)
    groups = parse_polygon_groups(reader)

    assert len(groups) == 1
    group = groups[0]
    assert group.vertex_max == 3
    assert group.polygon_start == 0
    assert group.polygon_count == 2
    assert group.face_point_count == 6
    assert group.material_index == 1
    assert group.lod_level == 0
    assert reader.read_u8() == 0xFE


def test_polygon_start_is_face_index():
    """The stored face-point start is converted to a triangle index."""
    data = polygon_section([lod([polygon_record(face_point_start=30, polygon_count=4)])])
    groups = parse_polygon_groups(ByteReader(data))
    assert groups[0].polygon_start == 10


def test_extended_header_record():
    data = polygon_section([lod([
        polygon_record(polygon_count=1, material_group=0, extended=True),
        polygon_record(face_point_start=3, polygon_count=5, material_group=2),
    ])])
    groups = parse_polygon_groups(ByteReader(data))
    assert [g.polygon_count for g in groups] == [1, 5]
    assert [g.material_index for g in groups] == [0, 2]


def test_only_lod0_is_kept():
    lods = [
        lod([polygon_record(polygon_count=1), polygon_record(polygon_count=2)]),
        lod([polygon_record(polygon_count=3)], section_3b=[True, False], bone_count=2),
        lod([polygon_record(polygon_count=4)]),
    ]
    data = polygon_section(lods) + struct.pack("<I", 0xDEADBEEF)
    reader = ByteReader(data)
    groups = parse_polygon_groups(reader)

    assert [g.polygon_count for g in groups] == [1, 2]
    assert reader.read_u32() == 0xDEADBEEF


def test_no_lods():
    data = polygon_section([])
    reader = ByteReader(data)
    assert parse_polygon_groups(reader) == []
    assert reader.remaining() == 0
