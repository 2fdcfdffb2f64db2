"""Type definitions for decoded D3D mesh assets."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

Vec3 = Tuple[float, float, float]
Vec4 = Tuple[float, float, float, float]
UV = Tuple[float, float]
Face = Tuple[int, int, int]
# Four resolved 64-bit bone identities per vertex
BoneReference = Tuple[int, int, int, int]


class ModelOrientation(Enum):
    """Axis that carries the extra 2 bits of a packed 10/10/10/2 position."""
    NONE = "Q"
    X = "X"
    Y = "Y"
    Z = "Z"


class TextureType(Enum):
    """What a material uses a texture for."""
    ANISOTROPY = "Anisotropy"
    ANISOTROPY_MASK = "AnisotropyMask"
    ANISOTROPY_TANGENT = "AnisotropyTangent"
    BUMP = "Bump"
    COLOR_MASK = "ColorMask"
    DAMAGE_MASK = "DamageMask"
    DECAL_DIFFUSE = "DecalDiffuse"
    DECAL_MASK = "DecalMask"
    DECAL_NORMAL = "DecalNormal"
    DETAIL = "Detail"
    DETAIL_GLOSS = "DetailGloss"
    DETAIL_MASK = "DetailMask"
    DETAIL_NORMAL = "DetailNormal"
    PACKED_DETAIL = "PackedDetail"
    DIFFUSE = "Diffuse"
    DIFFUSE_LOD = "DiffuseLOD"
    EMISSION = "Emission"
    ENVIRONMENT = "Environment"
    FLOW = "Flow"
    GLOSS = "Gloss"
    GRADIENT = "Gradient"
    GRIME = "Grime"
    HEIGHT = "Height"
    INK = "Ink"
    MICRODETAIL_DIFFUSE = "MicrodetailDiffuse"
    MICRODETAIL_NORMAL = "MicrodetailNormal"
    NORMAL = "Normal"
    NORMAL_ALTERNATE = "NormalAlternate"
    OCCLUSION = "Occlusion"
    RAIN_FALL = "RainFall"
    RAIN_WET = "RainWet"
    SPECULAR = "Specular"
    TANGENT = "Tangent"
    THICKNESS = "Thickness"
    TRANSITION_NORMAL = "TransitionNormal"
    VISIBILITY_MASK = "VisibilityMask"
    WRINKLE_MASK = "WrinkleMask"
    WRINKLE_NORMAL = "WrinkleNormal"
    UNKNOWN = "Unknown"


class TextureMap(Enum):
    """Which slot of a texture type a usage occupies."""
    MAP = "Map"
    MAP_A = "MapA"
    MAP_B = "MapB"
    MAP_C = "MapC"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ModelClamps:
    """Dequantization range for positions of one model."""
    mesh_min: Vec3
    mesh_multiplier: Vec3
    orientation: ModelOrientation = ModelOrientation.NONE


@dataclass(frozen=True)
class UVClamps:
    """Dequantization range for one UV layer."""
    multiplier: UV = (1.0, 1.0)
    start: UV = (0.0, 0.0)


@dataclass
class Texture:
    """One texture usage of a material."""
    kind: TextureType
    map: TextureMap
    name: str


@dataclass
class Material:
    """Material identity plus the textures it uses, in file order."""
    material_id: int
    textures: List[Texture] = field(default_factory=list)


@dataclass
class MaterialGroup:
    """Indirection between a polygon group and a material id."""
    material_id: int


@dataclass
class PolygonGroup:
    """A LOD-0 submesh: a range of the shared face array plus its material.

    ``material_index`` holds a material-group index while decoding and the
    index into ``MeshAsset.materials`` once the asset is assembled.
    """
    vertex_start: int
    vertex_min: int
    vertex_max: int
    polygon_start: int
    polygon_count: int
    face_point_count: int
    material_index: int
    lod_level: int = 0


@dataclass
class Mesh:
    """Parallel per-vertex attribute arrays plus the triangle list."""
    positions: List[Vec3] = field(default_factory=list)
    normals: List[Vec3] = field(default_factory=list)
    uv_layers: List[List[UV]] = field(default_factory=list)
    bones: List[BoneReference] = field(default_factory=list)
    weights: List[Vec4] = field(default_factory=list)
    faces: List[Face] = field(default_factory=list)

    @property
    def vert_count(self) -> int:
        return len(self.positions)


@dataclass
class MeshAsset:
    """Everything decoded from one .d3dmesh file."""
    name: str
    materials: List[Material]
    mesh: Mesh
    polygons: List[PolygonGroup]

    def faces_for(self, polygon: PolygonGroup) -> List[Face]:
        """Faces belonging to one polygon group."""
        start = polygon.polygon_start
        return self.mesh.faces[start:start + polygon.polygon_count]

    def material_for(self, polygon: PolygonGroup) -> Optional[Material]:
        if 0 <= polygon.material_index < len(self.materials):
            return self.materials[polygon.material_index]
        return None
