"""Decode a complete .d3dmesh file into a MeshAsset.

Section order after the mesh header:
1. model info (0x14 bytes)
2. materials
3. polygon groups per LOD
4. unknown, skipped via its size
5. material groups
6. unknown, skipped via its size
7. bone IDs
8, 9. unknown, skipped via their size
10. model clamps (position dequantization range and packed-axis orientation)
11. vertex count and flags, UV clamps, optional secondary vertex stream
12. vertex layout, face buffers and vertex channels
"""
import logging
from typing import List, Optional, Sequence

from byte_reader import ByteReader
from checksum_mapping import ChecksumMap
from d3d_errors import MalformedFieldError, UnresolvedReferenceError
from d3d_materials import parse_material, parse_material_group
from d3d_mesh import SECONDARY_VERTEX_FLAG, UV_LAYER_COUNT, parse_mesh
from d3d_parser import D3DMeshHeader
from d3d_polygons import parse_polygon_groups
from d3d_types import (
    Material,
    MaterialGroup,
    MeshAsset,
    ModelClamps,
    ModelOrientation,
    PolygonGroup,
    UVClamps,
)

logger = logging.getLogger(__name__)


def _skip_section(reader: ByteReader, label: str) -> None:
    logger.debug("Section %s start = %#X", label, reader.tell())
    reader.seek(reader.read_section_end())


def read_model_clamps(reader: ByteReader) -> ModelClamps:
    """Read section 10.

    The orientation is the last of X, Y, Z whose axis float is non-zero.
    """
    logger.debug("Section 10 (Model Clamps) start = %#X", reader.tell())
    reader.skip(0x08)
    mesh_min = reader.read_vec3()
    mesh_max = reader.read_vec3()
    reader.skip(0x24)
    axis_floats = reader.read_vec3()
    reader.skip(0x18)

    orientation = ModelOrientation.NONE
    for axis, value in zip((ModelOrientation.X, ModelOrientation.Y, ModelOrientation.Z), axis_floats):
        if value != 0.0:
            orientation = axis

    multiplier = tuple(hi - lo for lo, hi in zip(mesh_min, mesh_max))
    return ModelClamps(mesh_min=mesh_min, mesh_multiplier=multiplier, orientation=orientation)


def read_uv_clamps(reader: ByteReader) -> List[Optional[UVClamps]]:
    """Read section 11B: per UV layer multiplier and start.

    Raises:
        MalformedFieldError: If a layer index is 6 or higher
    """
    logger.debug("Section 11B (UV Clamps) start = %#X", reader.tell())
    clamps: List[Optional[UVClamps]] = [None] * UV_LAYER_COUNT
    for _ in range(reader.read_u32()):
        offset = reader.tell()
        layer, u_mult, v_mult, u_start, v_start = reader.unpack("<I4f")
        if layer >= UV_LAYER_COUNT:
            raise MalformedFieldError(f"UV clamp for layer {layer}", offset=offset)
        clamps[layer] = UVClamps(multiplier=(u_mult, v_mult), start=(u_start, v_start))
    return clamps


def fix_material_indices(
    polygons: Sequence[PolygonGroup],
    material_groups: Sequence[MaterialGroup],
    materials: Sequence[Material],
) -> None:
    """Rewrite each polygon's material-group index into a material index.

    Polygons reference a material group, the group references a material
    id. When several materials share an id the first one wins.

    Raises:
        UnresolvedReferenceError: If a group index or material id is missing
    """
    index_by_id = {}
    for index, material in enumerate(materials):
        index_by_id.setdefault(material.material_id, index)

    for polygon in polygons:
        group_index = polygon.material_index
        if not 0 <= group_index < len(material_groups):
            raise UnresolvedReferenceError(
                f"polygon references material group {group_index} "
                f"but only {len(material_groups)} exist"
            )
        material_id = material_groups[group_index].material_id
        if material_id not in index_by_id:
            raise UnresolvedReferenceError(
                f"material group {group_index} references unknown material {material_id:016x}"
            )
        polygon.material_index = index_by_id[material_id]


def decode_mesh(data: bytes, checksum_map: ChecksumMap) -> MeshAsset:
    """Decode a .d3dmesh file.

    Args:
        data: Complete file contents
        checksum_map: Resolves texture name checksums

    Returns:
        MeshAsset with LOD 0 polygon groups pointing at material indices

    Raises:
        DecodeError: Any subclass, on the first fatal problem
    """
    reader = ByteReader(data)
    header = D3DMeshHeader.read(reader)

    logger.debug("Section 1 (Model info) start = %#X", reader.tell())
    reader.skip(0x14)

    logger.debug("Section 2 (Material info) start = %#X", reader.tell())
    material_count = reader.read_u32()
    logger.debug("Material Count = %d", material_count)
    materials = []
    for index in range(material_count):
        logger.debug("Material #%d start = %#X", index, reader.tell())
        materials.append(parse_material(reader, index, checksum_map))
    reader.skip(0x05)

    face_data_start = reader.read_section_end()

    logger.debug("Section 3 (LOD info) start = %#X", reader.tell())
    polygons = parse_polygon_groups(reader)

    _skip_section(reader, "4")

    logger.debug("Section 5 (Material Groups) start = %#X", reader.tell())
    section_end = reader.read_section_end()
    material_groups = [parse_material_group(reader) for _ in range(reader.read_u32())]
    reader.seek(section_end)

    _skip_section(reader, "6")

    logger.debug("Section 7 (Bone IDs) start = %#X", reader.tell())
    section_end = reader.read_section_end()
    bone_ids = []
    for _ in range(reader.read_u32()):
        bone_ids.append(reader.read_u64())
        reader.skip(0x30)
    reader.seek(section_end)

    _skip_section(reader, "8")
    _skip_section(reader, "9")

    model_clamps = read_model_clamps(reader)

    logger.debug("Section 11 start = %#X", reader.tell())
    vert_count = reader.read_u32()
    vert_flags = reader.read_u32()
    reader.seek(reader.read_section_end())
    uv_clamps = read_uv_clamps(reader)

    vert_start = 0
    if vert_flags == SECONDARY_VERTEX_FLAG:
        logger.debug("Section 11C start = %#X", reader.tell())
        reader.skip(0x24)
        parameter_start = reader.read_section_end()
        reader.read_u32()  # vertex buffer size
        vert_start = reader.tell()
        reader.seek(parameter_start)

    logger.debug(
        "Section 12 (Vertex/Face Buffer Info) start = %#X vert_count = %d",
        reader.tell(), vert_count,
    )
    mesh = parse_mesh(
        reader,
        face_data_start=face_data_start,
        vert_start=vert_start,
        vert_flags=vert_flags,
        vert_count=vert_count,
        model_clamps=model_clamps,
        uv_clamps=uv_clamps,
        bone_ids=bone_ids,
    )

    fix_material_indices(polygons, material_groups, materials)
    return MeshAsset(name=header.name, materials=materials, mesh=mesh, polygons=polygons)
