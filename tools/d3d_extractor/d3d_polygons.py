"""Polygon (submesh) groups of a .d3dmesh file.

Section 3 layout, repeated per LOD:
- u32 LOD section size, u32 polygon count, polygon records
- Section 3B: u32 size, u32 count, records of unknown meaning
- Section 3C: 0x5C opaque bytes
- Section 3D: u32 header length, u32 count, u64 bone checksums

Only LOD 0 polygons are kept; lower detail levels are read over.
"""
import logging
from typing import List

from byte_reader import ByteReader
from d3d_types import PolygonGroup

logger = logging.getLogger(__name__)

EXTENDED_HEADER_LENGTH = 0x10


def _skip_extended_header(reader: ByteReader) -> None:
    """Some records carry 8 extra bytes, announced by a 0x10 header length."""
    if reader.read_u32() == EXTENDED_HEADER_LENGTH:
        reader.skip(0x08)


def parse_polygon(reader: ByteReader, lod_level: int) -> PolygonGroup:
    """Read one polygon record.

    Args:
        reader: Positioned at the record's bounding box
        lod_level: LOD the record belongs to

    Returns:
        PolygonGroup whose material_index is still a material-group index
    """
    reader.read_vec3()  # bounding box min
    reader.read_vec3()  # bounding box max
    reader.skip(0x04 + 20)
    vertex_min = reader.read_u32()
    vertex_max = reader.read_u32()
    vertex_start = reader.read_u32()
    face_point_start = reader.read_u32()
    polygon_count = reader.read_u32()
    face_point_count = reader.read_u32()
    _skip_extended_header(reader)
    reader.skip(0x04)
    material_group = reader.read_u32()
    reader.skip(0x04)
    return PolygonGroup(
        vertex_start=vertex_start,
        vertex_min=vertex_min,
        vertex_max=vertex_max,
        polygon_start=face_point_start // 3,
        polygon_count=polygon_count,
        face_point_count=face_point_count,
        material_index=material_group,
        lod_level=lod_level,
    )


def parse_polygon_groups(reader: ByteReader) -> List[PolygonGroup]:
    """Parse section 3 and return the LOD 0 polygon groups in file order.

    The reader is left at the end of section 3.
    """
    groups: List[PolygonGroup] = []

    section_end = reader.read_section_end()
    lod_count = reader.read_u32()
    for lod_level in range(lod_count):
        logger.debug(
            "LOD %d/%d information start = %#X", lod_level + 1, lod_count, reader.tell()
        )
        lod_end = reader.read_section_end()
        polygon_total = reader.read_u32()
        for index in range(polygon_total):
            logger.debug(
                "polygon information %d/%d, start = %#X",
                index + 1, polygon_total, reader.tell(),
            )
            polygon = parse_polygon(reader, lod_level)
            if lod_level == 0:
                groups.append(polygon)
        reader.seek(lod_end)

        logger.debug("Section 3B start = %#X", reader.tell())
        section_3b_end = reader.read_section_end()
        for _ in range(reader.read_u32()):
            reader.skip(0x48)
            _skip_extended_header(reader)
            reader.skip(0x0C)
        reader.seek(section_3b_end)

        logger.debug("Section 3C start = %#X", reader.tell())
        reader.skip(0x5C)

        logger.debug("Section 3D (Bone IDs) start = %#X", reader.tell())
        reader.skip(0x04)
        reader.skip(0x08 * reader.read_u32())

    reader.seek(section_end)
    return groups
