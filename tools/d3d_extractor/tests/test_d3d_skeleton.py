"""Tests for .skl skeleton decoding and bind matrices."""
import math
import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from checksum_mapping import ChecksumMap, crc64
from d3d_errors import MalformedFieldError
from d3d_skeleton import Joint, decode_skeleton, quaternion_to_matrix

from d3d_builders import build_skl, joint_record

ROOT_ID = crc64("root")
SPINE_ID = crc64("spine")
HEAD_ID = crc64("head")
CHECKSUMS = ChecksumMap.from_strings(["root", "spine", "head"])

Z_90 = (0.0, 0.0, math.sin(math.pi / 4), math.cos(math.pi / 4))


def translation(x, y, z):
    matrix = np.identity(4)
    matrix[:3, 3] = (x, y, z)
    return matrix


def test_decode_hierarchy():
    data = build_skl([
        joint_record(ROOT_ID),
        joint_record(SPINE_ID, parent=0, translation=(0.0, 1.0, 0.0), extra_n=2),
        joint_record(HEAD_ID, parent=1, translation=(0.0, 0.5, 0.0), extra_m=3),
    ])
    skeleton = decode_skeleton(data, CHECKSUMS)

    assert skeleton.joint_count == 3
    assert [j.name for j in skeleton.joints] == ["root", "spine", "head"]
    assert [j.parent for j in skeleton.joints] == [None, 0, 1]
    assert [j.name for j in skeleton.root_joints] == ["root"]
    assert skeleton.get_children(0) == [1]
    assert skeleton.get_children(2) == []
    assert skeleton.find_joint_index(HEAD_ID) == 2
    assert skeleton.find_joint_index(12345) is None


def test_unnamed_joint_uses_checksum():
    skeleton = decode_skeleton(build_skl([joint_record(0xBEEF)]), CHECKSUMS)
    assert skeleton.joints[0].name == "000000000000beef"


def test_root_identity_bind_matrix():
    skeleton = decode_skeleton(build_skl([joint_record(ROOT_ID)]), CHECKSUMS)
    np.testing.assert_allclose(skeleton.inverse_bind_matrices[0], np.identity(4))


def test_child_bind_matrix_accumulates_translation():
    data = build_skl([
        joint_record(ROOT_ID, translation=(0.0, 0.0, 1.0)),
        joint_record(SPINE_ID, parent=0, translation=(0.0, 1.0, 0.0)),
    ])
    skeleton = decode_skeleton(data, CHECKSUMS)
    np.testing.assert_allclose(skeleton.inverse_bind_matrices[0], translation(0, 0, -1))
    np.testing.assert_allclose(skeleton.inverse_bind_matrices[1], translation(0, -1, -1))


def test_child_of_rotated_parent():
    """A child offset along X under a 90 degree Z rotation sits on +Y."""
    data = build_skl([
        joint_record(ROOT_ID, rotation=Z_90),
        joint_record(SPINE_ID, parent=0, translation=(1.0, 0.0, 0.0)),
    ])
    skeleton = decode_skeleton(data, CHECKSUMS)
    world = np.linalg.inv(skeleton.inverse_bind_matrices[1])
    np.testing.assert_allclose(world[:3, 3], (0.0, 1.0, 0.0), atol=1e-6)


def test_quaternion_to_matrix():
    np.testing.assert_allclose(
        quaternion_to_matrix(Z_90),
        [[0, -1, 0], [1, 0, 0], [0, 0, 1]],
        atol=1e-6,
    )
    np.testing.assert_allclose(quaternion_to_matrix((0.0, 0.0, 0.0, 1.0)), np.identity(3))


def test_column_major_matrices():
    data = build_skl([
        joint_record(ROOT_ID),
        joint_record(SPINE_ID, parent=0, translation=(0.0, 1.0, 0.0)),
    ])
    flat = decode_skeleton(data, CHECKSUMS).inverse_bind_matrices_column_major()
    assert len(flat) == 2
    assert flat[1] == pytest.approx([1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, -1, 0, 1])


def test_parent_out_of_range():
    data = build_skl([joint_record(ROOT_ID), joint_record(SPINE_ID, parent=5)])
    with pytest.raises(MalformedFieldError, match="parent 5"):
        decode_skeleton(data, CHECKSUMS)


def test_parent_cycle():
    data = build_skl([joint_record(ROOT_ID, parent=1), joint_record(SPINE_ID, parent=0)])
    with pytest.raises(MalformedFieldError, match="cycle"):
        decode_skeleton(data, CHECKSUMS)


def test_long_parent_chain():
    """Each joint parented to the previous one, deeper than the recursion limit."""
    count = 3000
    data = build_skl(
        [joint_record(1)]
        + [joint_record(i + 1, parent=i - 1, translation=(0.0, 1.0, 0.0)) for i in range(1, count)]
    )
    skeleton = decode_skeleton(data, CHECKSUMS)
    assert skeleton.joint_count == count
    np.testing.assert_allclose(skeleton.inverse_bind_matrices[-1], translation(0, -(count - 1), 0))


def test_self_parent_is_cycle():
    data = build_skl([joint_record(ROOT_ID, parent=0)])
    with pytest.raises(MalformedFieldError, match="cycle"):
        decode_skeleton(data, CHECKSUMS)


def test_joint_is_root():
    joint = Joint(joint_id=1, name="a", parent=None,
                  translation=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0, 1.0))
    assert joint.is_root
