"""Skeleton extraction from Telltale .skl files.

SKL layout after the container header:
- u32 size, u32 joint count
- Per joint:
  - u64 bone checksum, u64 parent checksum, u32 parent index
    (values above 1000000 mean "no parent")
  - 0x0C unknown bytes, vec3 translation, vec4 rotation quaternion (x, y, z, w)
  - 0x48 unknown bytes, u32 n + 12 * n bytes, 4 bytes, u32 m + 12 * m bytes,
    0x20 unknown bytes
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from byte_reader import ByteReader
from checksum_mapping import ChecksumMap
from d3d_errors import MalformedFieldError
from d3d_parser import ContainerHeader
from d3d_types import Vec3, Vec4

logger = logging.getLogger(__name__)

NO_PARENT_THRESHOLD = 1000000
UNIT_SNAP_TOLERANCE = 1e-4


@dataclass
class Joint:
    """A bone of the skeleton in its bind pose, relative to its parent."""
    joint_id: int
    name: str
    parent: Optional[int]
    translation: Vec3
    rotation: Vec4  # quaternion x, y, z, w

    @property
    def is_root(self) -> bool:
        return self.parent is None


@dataclass
class Skeleton:
    """Decoded skeleton with one inverse bind matrix per joint."""
    joints: List[Joint] = field(default_factory=list)
    inverse_bind_matrices: List[np.ndarray] = field(default_factory=list)

    @property
    def joint_count(self) -> int:
        return len(self.joints)

    @property
    def root_joints(self) -> List[Joint]:
        return [j for j in self.joints if j.is_root]

    def get_children(self, index: int) -> List[int]:
        """Indices of the direct children of joint ``index``."""
        return [i for i, j in enumerate(self.joints) if j.parent == index]

    def find_joint_index(self, joint_id: int) -> Optional[int]:
        """Index of the joint with checksum ``joint_id``, or None."""
        for index, joint in enumerate(self.joints):
            if joint.joint_id == joint_id:
                return index
        return None

    def inverse_bind_matrices_column_major(self) -> List[List[float]]:
        """Inverse bind matrices flattened column by column, as glTF stores them."""
        return [m.flatten(order="F").tolist() for m in self.inverse_bind_matrices]


def quaternion_to_matrix(rotation: Vec4) -> np.ndarray:
    """3x3 rotation matrix of a unit quaternion given as (x, y, z, w)."""
    x, y, z, w = rotation
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ], dtype=np.float64)


def local_inverse_bind_matrix(joint: Joint) -> np.ndarray:
    """Inverse of the joint's local transform T * R."""
    matrix = np.identity(4)
    matrix[:3, :3] = quaternion_to_matrix(joint.rotation)
    matrix[:3, 3] = joint.translation
    inverse = np.linalg.inv(matrix)
    # inversion can leave the homogeneous element slightly off 1.0
    if abs(inverse[3, 3] - 1.0) < UNIT_SNAP_TOLERANCE:
        inverse[3, 3] = 1.0
    return inverse


def _check_hierarchy(joints: List[Joint]) -> None:
    acyclic = set()
    for index, joint in enumerate(joints):
        if joint.parent is not None and joint.parent >= len(joints):
            raise MalformedFieldError(
                f"joint {joint.name} references parent {joint.parent} "
                f"but the skeleton has {len(joints)} joints"
            )

        chain = []
        current = index
        while current is not None and current not in acyclic:
            if current in chain:
                raise MalformedFieldError(f"joint {joint.name} is part of a parent cycle")
            chain.append(current)
            current = joints[current].parent
        acyclic.update(chain)


def compute_inverse_bind_matrices(joints: List[Joint]) -> List[np.ndarray]:
    """Compute one 4x4 inverse bind matrix per joint.

    Each matrix is the joint's local inverse multiplied by its parent's
    inverse bind matrix. Parent chains are walked iteratively.

    Raises:
        MalformedFieldError: If a parent index is out of range or cyclic
    """
    _check_hierarchy(joints)

    matrices: List[Optional[np.ndarray]] = [None] * len(joints)
    for index in range(len(joints)):
        pending = []
        current = index
        while current is not None and matrices[current] is None:
            pending.append(current)
            current = joints[current].parent
        # pending runs child to ancestor; fill ancestors first
        for joint_index in reversed(pending):
            joint = joints[joint_index]
            matrix = local_inverse_bind_matrix(joint)
            if joint.parent is not None:
                matrix = matrix @ matrices[joint.parent]
            matrices[joint_index] = matrix
    return matrices


def parse_joint(reader: ByteReader, checksum_map: ChecksumMap) -> Joint:
    joint_id = reader.read_u64()
    name = checksum_map.get_mapping(joint_id) or f"{joint_id:016x}"
    reader.skip(0x08)  # parent checksum
    parent_index = reader.read_u32()
    parent = None if parent_index > NO_PARENT_THRESHOLD else parent_index
    reader.skip(0x0C)

    translation = reader.read_vec3()
    rotation = reader.read_vec4()

    reader.skip(0x48)
    reader.skip(0x0C * reader.read_u32())
    reader.skip(0x04)
    reader.skip(0x0C * reader.read_u32())
    reader.skip(0x20)

    return Joint(
        joint_id=joint_id,
        name=name,
        parent=parent,
        translation=translation,
        rotation=rotation,
    )


def decode_skeleton(data: bytes, checksum_map: ChecksumMap) -> Skeleton:
    """Decode a .skl file.

    Args:
        data: Complete file contents
        checksum_map: Resolves bone name checksums

    Returns:
        Skeleton with joints in file order

    Raises:
        DecodeError: Any subclass, on the first fatal problem
    """
    reader = ByteReader(data)
    ContainerHeader.read(reader)
    reader.skip(0x04)  # size
    joint_count = reader.read_u32()
    logger.debug("Skeleton joint count = %d", joint_count)

    joints = [parse_joint(reader, checksum_map) for _ in range(joint_count)]
    return Skeleton(joints=joints, inverse_bind_matrices=compute_inverse_bind_matrices(joints))
