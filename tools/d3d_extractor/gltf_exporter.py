"""glTF exporter for decoded D3D mesh assets and skeletons."""
import struct
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pygltflib import (
    GLTF2,
    Accessor,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Image,
    Material,
    Mesh,
    Node,
    NormalMaterialTexture,
    PbrMetallicRoughness,
    Primitive,
    Scene,
    Skin,
    Texture,
    TextureInfo,
)

from d3d_errors import UnresolvedReferenceError
from d3d_skeleton import Skeleton
from d3d_types import BoneReference, MeshAsset, TextureMap, TextureType

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

UNSIGNED_BYTE = 5121
UNSIGNED_SHORT = 5123
FLOAT = 5126

TRIANGLES = 4

EXPORTED_MAPS = (TextureMap.MAP, TextureMap.MAP_A)


def texture_uri(texture_folder: str, texture_name: str) -> str:
    """URI of the PNG a texture is exported to, always with forward slashes."""
    return f"{texture_folder}/{PurePosixPath(texture_name).with_suffix('.png')}"


def bone_ids_to_indices(skeleton: Skeleton, bones: Sequence[BoneReference]) -> List[Tuple[int, ...]]:
    """Translate per-vertex bone checksums into joint indices of ``skeleton``.

    Raises:
        UnresolvedReferenceError: If a checksum names no joint
    """
    index_by_id: Dict[int, int] = {}
    for index, joint in enumerate(skeleton.joints):
        index_by_id.setdefault(joint.joint_id, index)

    joints = []
    for reference in bones:
        try:
            joints.append(tuple(index_by_id[bone_id] for bone_id in reference))
        except KeyError as e:
            raise UnresolvedReferenceError(
                f"could not find index of bone referencing {e.args[0]:016x}"
            ) from None
    return joints


class GLTFExporter:
    """Collects meshes (and optionally one skeleton) into a single .glb file."""

    def __init__(self, texture_folder: Optional[str] = "textures", root_name: Optional[str] = None):
        """Initialize an empty export.

        Args:
            texture_folder: Folder, relative to the .glb, holding exported PNGs.
                None leaves materials without texture references.
            root_name: Optional name for the glTF scene
        """
        self.texture_folder = texture_folder
        self.gltf = GLTF2()
        self.gltf.asset = Asset(version="2.0", generator="D3D Extractor")
        self.root_name = root_name
        self._buffer = bytearray()
        self._scene_nodes: List[int] = []
        self._image_by_uri: Dict[str, int] = {}
        self._skin_by_skeleton: Dict[int, int] = {}

    def _add_buffer_view(self, data: bytes, target: Optional[int] = None) -> int:
        """Append ``data`` to the binary blob, 4-byte aligned."""
        if len(self._buffer) % 4:
            self._buffer += b"\x00" * (4 - len(self._buffer) % 4)
        offset = len(self._buffer)
        self._buffer += data
        self.gltf.bufferViews.append(
            BufferView(buffer=0, byteOffset=offset, byteLength=len(data), target=target)
        )
        return len(self.gltf.bufferViews) - 1

    def _add_accessor(self, data: bytes, component_type: int, count: int, accessor_type: str,
                      target: Optional[int] = None, min_values=None, max_values=None) -> int:
        view = self._add_buffer_view(data, target)
        self.gltf.accessors.append(
            Accessor(
                bufferView=view,
                componentType=component_type,
                count=count,
                type=accessor_type,
                min=min_values,
                max=max_values,
            )
        )
        return len(self.gltf.accessors) - 1

    def _add_node(self, node: Node) -> int:
        self.gltf.nodes.append(node)
        return len(self.gltf.nodes) - 1

    def _compute_bounds(self, vertices) -> Tuple[List[float], List[float]]:
        """Compute min/max bounds for vertices."""
        if not vertices:
            return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
        min_bounds = [min(v[i] for v in vertices) for i in range(3)]
        max_bounds = [max(v[i] for v in vertices) for i in range(3)]
        return min_bounds, max_bounds

    def _add_texture(self, texture_name: str) -> int:
        uri = texture_uri(self.texture_folder, texture_name)
        if uri not in self._image_by_uri:
            self.gltf.images.append(Image(uri=uri))
            self.gltf.textures.append(Texture(source=len(self.gltf.images) - 1))
            self._image_by_uri[uri] = len(self.gltf.textures) - 1
        return self._image_by_uri[uri]

    def _add_materials(self, asset: MeshAsset) -> int:
        """Add one glTF material per asset material and return the first index.

        Diffuse becomes the base color, normal the normal texture and
        specular the metallic-roughness texture. Only Map and MapA slots
        are exported.
        """
        first = len(self.gltf.materials)
        for index, material in enumerate(asset.materials):
            pbr = PbrMetallicRoughness()
            gltf_material = Material(name=f"{asset.name}_material_{index}", pbrMetallicRoughness=pbr)
            for texture in material.textures:
                if self.texture_folder is None or texture.map not in EXPORTED_MAPS:
                    continue
                if texture.kind is TextureType.DIFFUSE:
                    pbr.baseColorTexture = TextureInfo(index=self._add_texture(texture.name))
                elif texture.kind is TextureType.NORMAL:
                    gltf_material.normalTexture = NormalMaterialTexture(
                        index=self._add_texture(texture.name)
                    )
                elif texture.kind is TextureType.SPECULAR:
                    pbr.metallicRoughnessTexture = TextureInfo(index=self._add_texture(texture.name))
            self.gltf.materials.append(gltf_material)
        return first

    def add_skeleton(self, skeleton: Skeleton) -> int:
        """Add joint nodes and a skin for ``skeleton`` once; return the skin index."""
        key = id(skeleton)
        if key in self._skin_by_skeleton:
            return self._skin_by_skeleton[key]

        first_node = len(self.gltf.nodes)
        for index, joint in enumerate(skeleton.joints):
            self._add_node(Node(
                name=joint.name,
                translation=list(joint.translation),
                rotation=list(joint.rotation),
                children=[first_node + c for c in skeleton.get_children(index)],
            ))

        ibm_data = b"".join(
            struct.pack("<16f", *matrix)
            for matrix in skeleton.inverse_bind_matrices_column_major()
        )
        ibm_accessor = self._add_accessor(ibm_data, FLOAT, skeleton.joint_count, "MAT4")

        roots = [first_node + i for i, j in enumerate(skeleton.joints) if j.is_root]
        self.gltf.skins.append(Skin(
            joints=[first_node + i for i in range(skeleton.joint_count)],
            skeleton=roots[0] if roots else None,
            inverseBindMatrices=ibm_accessor,
        ))
        self._scene_nodes.extend(roots)

        skin_index = len(self.gltf.skins) - 1
        self._skin_by_skeleton[key] = skin_index
        return skin_index

    def add_mesh_asset(self, name: str, asset: MeshAsset, skeleton: Optional[Skeleton] = None):
        """Add a decoded mesh: one node and glTF mesh per polygon group.

        Args:
            name: Node and mesh name prefix
            asset: Decoded .d3dmesh
            skeleton: Skin the mesh with this skeleton when given

        Raises:
            ValueError: If the asset has no faces
            UnresolvedReferenceError: If a vertex references a bone the
                skeleton does not have
        """
        mesh = asset.mesh
        if not mesh.positions or not mesh.faces:
            raise ValueError(f"No mesh data found in {name}")

        min_bounds, max_bounds = self._compute_bounds(mesh.positions)
        attributes = {
            "POSITION": self._add_accessor(
                b"".join(struct.pack("<3f", *p) for p in mesh.positions),
                FLOAT, mesh.vert_count, "VEC3", ARRAY_BUFFER, min_bounds, max_bounds,
            )
        }
        if len(mesh.normals) == mesh.vert_count:
            attributes["NORMAL"] = self._add_accessor(
                b"".join(struct.pack("<3f", *n) for n in mesh.normals),
                FLOAT, mesh.vert_count, "VEC3", ARRAY_BUFFER,
            )
        if mesh.uv_layers and len(mesh.uv_layers[0]) == mesh.vert_count:
            attributes["TEXCOORD_0"] = self._add_accessor(
                b"".join(struct.pack("<2f", *uv) for uv in mesh.uv_layers[0]),
                FLOAT, mesh.vert_count, "VEC2", ARRAY_BUFFER,
            )

        skin_index = None
        if skeleton is not None:
            skin_index = self.add_skeleton(skeleton)
            if mesh.bones and len(mesh.weights) == mesh.vert_count:
                joints = bone_ids_to_indices(skeleton, mesh.bones)
                joint_format, joint_type = ("<4B", UNSIGNED_BYTE)
                if skeleton.joint_count > 256:
                    joint_format, joint_type = ("<4H", UNSIGNED_SHORT)
                attributes["JOINTS_0"] = self._add_accessor(
                    b"".join(struct.pack(joint_format, *j) for j in joints),
                    joint_type, len(joints), "VEC4", ARRAY_BUFFER,
                )
                attributes["WEIGHTS_0"] = self._add_accessor(
                    b"".join(struct.pack("<4f", *w) for w in mesh.weights),
                    FLOAT, mesh.vert_count, "VEC4", ARRAY_BUFFER,
                )

        first_material = self._add_materials(asset)

        for index, polygon in enumerate(asset.polygons):
            faces = asset.faces_for(polygon)
            if not faces:
                continue
            indices = self._add_accessor(
                b"".join(struct.pack("<3H", *f) for f in faces),
                UNSIGNED_SHORT, len(faces) * 3, "SCALAR", ELEMENT_ARRAY_BUFFER,
            )
            material = None
            if asset.material_for(polygon) is not None:
                material = first_material + polygon.material_index
            self.gltf.meshes.append(Mesh(
                name=f"{name}_{index}",
                primitives=[Primitive(
                    attributes=Attributes(**attributes),
                    indices=indices,
                    material=material,
                    mode=TRIANGLES,
                )],
            ))
            node = self._add_node(Node(
                name=f"{name}_{index}",
                mesh=len(self.gltf.meshes) - 1,
                skin=skin_index,
            ))
            self._scene_nodes.append(node)

    def save(self, output_path: Union[str, Path]):
        """Write everything added so far as a binary .glb file.

        Raises:
            ValueError: If neither a mesh nor a skeleton was added
        """
        if not self.gltf.nodes:
            raise ValueError("No mesh or skeleton data to export")

        self.gltf.buffers = [Buffer(byteLength=len(self._buffer))]
        self.gltf.scenes = [Scene(name=self.root_name, nodes=list(self._scene_nodes))]
        self.gltf.scene = 0
        self.gltf.set_binary_blob(bytes(self._buffer))
        self.gltf.save(str(output_path))
