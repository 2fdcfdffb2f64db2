"""Texture usage records inside .d3dmesh materials.

Each record is two u64 checksums: the first names the shader slot the
texture is bound to (diffuse, normal, ...), the second is the checksum of
the texture file name.
"""
import logging
from typing import Dict, Tuple

from byte_reader import ByteReader
from checksum_mapping import ChecksumMap
from d3d_types import Texture, TextureMap, TextureType

logger = logging.getLogger(__name__)

T = TextureType
M = TextureMap

# usage checksum -> (type, map slot)
TEXTURE_USAGES: Dict[int, Tuple[TextureType, TextureMap]] = {
    0x9836970882A34F02: (T.ANISOTROPY, M.MAP),
    0x714D23445936B35D: (T.ANISOTROPY_MASK, M.MAP),
    0x7501E041AC72A988: (T.ANISOTROPY_TANGENT, M.MAP),
    0xB8B04DDF1796F446: (T.BUMP, M.MAP),
    0x72507EEA6EF21AEE: (T.COLOR_MASK, M.MAP),
    0x2B6C47845F607734: (T.DAMAGE_MASK, M.MAP_A),
    0xEC7D65B8A55E2C81: (T.DAMAGE_MASK, M.MAP_B),
    0x36170F97445B6E2E: (T.DECAL_DIFFUSE, M.MAP),
    0xA1F1257A331854C4: (T.DECAL_MASK, M.MAP),
    0x9CF676C6403C9784: (T.DECAL_NORMAL, M.MAP),
    0x4930B970A7FD511F: (T.DETAIL, M.MAP),
    0xDF7E412256E87E74: (T.DETAIL, M.MAP_B),
    0xCB433436EDCA9EFB: (T.DETAIL_GLOSS, M.MAP),
    0xBF468EF480AEEB89: (T.DETAIL_MASK, M.MAP),
    0x963EE638083014F1: (T.DETAIL_NORMAL, M.MAP),
    0x706CF2AA57A7A206: (T.DETAIL_NORMAL, M.MAP),
    0xD49D30F64A580C6F: (T.DETAIL_NORMAL, M.MAP_A),
    0x138C12CAB06657DA: (T.DETAIL_NORMAL, M.MAP_B),
    0x517CF321198C6149: (T.DETAIL_NORMAL, M.MAP_C),
    0xBDCD25F20F4199E3: (T.PACKED_DETAIL, M.MAP),
    0x8648FA82D1DBEE1A: (T.DIFFUSE, M.MAP),
    0x94A590DE74B1F5C1: (T.DIFFUSE, M.MAP_B),
    0xDC6E83A0253F163A: (T.DIFFUSE_LOD, M.MAP),
    0xB3022EA7FD418B40: (T.EMISSION, M.MAP),
    0xBDB4C92A546FB889: (T.EMISSION, M.MAP_B),
    0x13EEE65865DFC90F: (T.ENVIRONMENT, M.MAP),
    0x257C2A45683F7D2F: (T.ENVIRONMENT, M.MAP),
    0x8CADB26098DF1108: (T.FLOW, M.MAP),
    0x64FBA83E34DD3959: (T.GLOSS, M.MAP),
    0x2642D6B4C8ECCAA9: (T.GRADIENT, M.MAP),
    0xA334F76C317A0C02: (T.GRADIENT, M.MAP),
    0x2AA89260D8661F89: (T.GRIME, M.MAP),
    0x66CD6E57FA58A246: (T.HEIGHT, M.MAP),
    0xFF787A61EAC8A5B5: (T.INK, M.MAP),
    0x817AFD5302445B8B: (T.MICRODETAIL_DIFFUSE, M.MAP),
    0xCB5B9A7F52168A41: (T.MICRODETAIL_NORMAL, M.MAP),
    0x1E3F6B9F2550389D: (T.NORMAL, M.MAP),
    0x3F380050AFD9F81F: (T.NORMAL, M.MAP_B),
    0x436206E68A9E7CCA: (T.NORMAL, M.MAP_B),
    0x7498A5F1B80AD419: (T.NORMAL_ALTERNATE, M.MAP),
    0xCAAAE6432AF348C0: (T.OCCLUSION, M.MAP),
    0x62C4957578189F07: (T.OCCLUSION, M.MAP),
    0x533F479D08BF0E5E: (T.RAIN_FALL, M.MAP),
    0x2EBA1F4BBA7A1543: (T.RAIN_WET, M.MAP),
    0xC8C94155FB7C634B: (T.SPECULAR, M.MAP),
    0xD5B57775DB361670: (T.SPECULAR, M.MAP),
    0x120621D5FAD4C090: (T.SPECULAR, M.MAP_B),
    0x37571B60B1F61180: (T.TANGENT, M.MAP_B),
    0xA45200A222DC2D80: (T.THICKNESS, M.MAP),
    0x8CF38A5266AAA7A4: (T.TRANSITION_NORMAL, M.MAP),
    0x87B579EC018FBD4D: (T.VISIBILITY_MASK, M.MAP),
    0xD7EA35534DBC457D: (T.WRINKLE_MASK, M.MAP_A),
    0x10FB176FB7821EC8: (T.WRINKLE_MASK, M.MAP_B),
    0xF340C5690CE9E059: (T.WRINKLE_NORMAL, M.MAP),
    0xA13D14FBB436F23B: (T.WRINKLE_NORMAL, M.MAP),
}

UNKNOWN_USAGE = (TextureType.UNKNOWN, TextureMap.UNKNOWN)


def classify_texture_usage(usage_hash: int) -> Tuple[TextureType, TextureMap]:
    """Map a usage checksum to its texture type and map slot."""
    return TEXTURE_USAGES.get(usage_hash, UNKNOWN_USAGE)


def parse_texture_usage(reader: ByteReader, checksum_map: ChecksumMap) -> Texture:
    """Read one texture usage record.

    A texture whose name checksum cannot be resolved is returned as an
    unknown, nameless usage. A zero checksum means "no texture" and is not
    worth a warning.
    """
    usage_hash = reader.read_u64()
    kind, texture_map = classify_texture_usage(usage_hash)

    texture_hash = reader.read_u64()
    name = checksum_map.get_mapping(texture_hash)
    if name is None:
        if texture_hash != 0:
            logger.warning(
                "Warning: could not resolve texture ID to name: %016x", texture_hash
            )
        return Texture(kind=TextureType.UNKNOWN, map=TextureMap.UNKNOWN, name="")

    logger.debug(
        "Texture: %016x: %r - %s %s", texture_hash, name, kind.value, texture_map.value
    )
    return Texture(kind=kind, map=texture_map, name=name)
