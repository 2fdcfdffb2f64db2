"""Material parsing for .d3dmesh files.

Material layout:
- u64 material id, two u32 hash halves
- u32 size of the material, counted from the size field; used to seek to
  the end of the material regardless of what its sections contain
- three u32 unknowns, u32 count of 8-byte hashes to skip
- u32 parameter count, then per parameter a u64 section hash and a u32
  repeat count selecting one of the shapes in MATERIAL_SECTIONS
"""
import logging
from typing import Dict, NamedTuple, Optional

from byte_reader import ByteReader
from checksum_mapping import ChecksumMap
from d3d_textures import parse_texture_usage
from d3d_types import Material, MaterialGroup

logger = logging.getLogger(__name__)

TEXTURE_SECTION_HASH = 0x52A09151F1C3F2C7
MATERIAL_GROUP_PADDING = 0x40


class SectionShape(NamedTuple):
    """How to step over one material section.

    record: struct format read ``count`` times, or None for no payload
    seek: fixed cursor correction applied once before the payload
    """
    record: Optional[str] = None
    seek: int = 0


# Each record starts with one hash stored as two u32 halves
MATERIAL_SECTIONS: Dict[int, SectionShape] = {
    0x0000000000000000: SectionShape(),
    0xA98F0652295DE685: SectionShape(),
    0xFA21E4C88AE64D31: SectionShape(),
    0x254EDC517B59BB47: SectionShape(),
    0x7CACEEBCD26D075C: SectionShape(),
    0xDED5E1937B1689EF: SectionShape(),
    0x264AC2F2544E517C: SectionShape(seek=-0x04),
    0x873C2F1835428297: SectionShape(seek=0x08),
    0x4E7D91F16F97A3C2: SectionShape(seek=-0x04),
    0x181AFB3EBB8F90AE: SectionShape(),
    0xFEC9FFDF25B43917: SectionShape(seek=-0x04),
    0x8C44858F42CD32D5: SectionShape(),
    0xB76E07D6BB899BFE: SectionShape(record="<II4f"),
    0x004F023463D89FB0: SectionShape(record="<IIII"),
    0xBAE4CBD77F139A91: SectionShape(record="<IIf"),
    0x9004C5587575D6C0: SectionShape(record="<IIB"),
    0x394C43AF4FF52C94: SectionShape(record="<II3f"),
    0x7BBCA244E61F1A07: SectionShape(record="<II2f"),
    0xC16762F7763D62AB: SectionShape(record="<II4f"),
    0xE2BA743E952F9338: SectionShape(record="<IIIIII"),
}


def parse_material(reader: ByteReader, index: int, checksum_map: ChecksumMap) -> Material:
    """Parse one material and leave the reader at the material's end.

    An unknown section hash stops the section scan for this material only;
    the sections read before it are kept.
    """
    material_id = reader.read_u64()
    reader.skip(0x08)
    material_end = reader.read_section_end()
    logger.debug("should end = %#X", material_end)

    reader.skip(0x0C)
    hash_count = reader.read_u32()
    reader.skip(0x08 * hash_count)

    material = Material(material_id=material_id)
    param_count = reader.read_u32()
    logger.debug("Material parameter count = %d", param_count)
    for _ in range(param_count):
        section_hash = reader.read_u64()
        section_count = reader.read_u32()
        logger.debug(
            "Material hash: %016x, Count = %d, Offset = %#X",
            section_hash, section_count, reader.tell(),
        )

        if section_hash == TEXTURE_SECTION_HASH:
            logger.debug("Material #%d, uses the following textures:", index)
            for _ in range(section_count):
                material.textures.append(parse_texture_usage(reader, checksum_map))
            continue

        shape = MATERIAL_SECTIONS.get(section_hash)
        if shape is None:
            logger.warning("Warning: unknown material hash %016x", section_hash)
            break
        if shape.seek:
            reader.skip(shape.seek)
        if shape.record is not None:
            # values are not used, only stepped over
            for _ in reader.iter_unpack(shape.record, section_count):
                pass

    reader.seek(material_end)
    return material


def parse_material_group(reader: ByteReader) -> MaterialGroup:
    """Parse one material group entry (u32 unknown, u64 material id, padding)."""
    reader.skip(0x04)
    material_id = reader.read_u64()
    reader.skip(MATERIAL_GROUP_PADDING)
    return MaterialGroup(material_id=material_id)
