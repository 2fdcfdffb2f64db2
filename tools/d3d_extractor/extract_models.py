#!/usr/bin/env python3
"""Extract Telltale .d3dmesh/.skl models and their .d3dtx textures to glTF.

Usage:
    python extract_models.py -i <input> [-o <output>] [--strings <file>]
                             [--no-textures] [--no-skeletons] [-v]

Examples:
    # Convert every mesh and skeleton in a folder of extracted game files
    python extract_models.py -i ./extracted -o ./output

    # Meshes only, without decoding textures
    python extract_models.py -i ./extracted -o ./output --no-skeletons --no-textures
"""
import argparse
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Set, Tuple

from PIL import Image

from checksum_mapping import ChecksumMap
from d3d_asset import decode_mesh
from d3d_skeleton import decode_skeleton
from d3d_types import MeshAsset, TextureType
from d3dtx_extractor import decode_texture
from gltf_exporter import EXPORTED_MAPS, GLTFExporter, texture_uri

logger = logging.getLogger(__name__)

DEFAULT_STRINGS = Path(__file__).resolve().parent / "checksum_strings.txt"
TEXTURE_FOLDER = "textures"

EXPORTED_TEXTURES = (
    TextureType.DIFFUSE,
    TextureType.DETAIL,
    TextureType.INK,
    TextureType.HEIGHT,
    TextureType.NORMAL,
    TextureType.SPECULAR,
)


def load_checksum_map(path: Path) -> ChecksumMap:
    """Load the known-strings list, or an empty map if it does not exist."""
    if not path.is_file():
        logger.warning("Checksum string list %s not found, names will not be resolved", path)
        return ChecksumMap()
    checksum_map = ChecksumMap.from_file(path)
    logger.info("Loaded %d checksum strings from %s", len(checksum_map), path)
    return checksum_map


def decode_textures(asset: MeshAsset, input_dir: Path, done: Set[str]) -> Dict[str, Image.Image]:
    """Decode the textures a mesh's materials reference.

    Args:
        asset: Decoded mesh
        input_dir: Folder the referenced .d3dtx files are read from
        done: Names already written in this run, skipped here

    Returns:
        Texture name -> decoded image, written only once the whole job succeeded
    """
    images: Dict[str, Image.Image] = {}
    for material in asset.materials:
        for texture in material.textures:
            if texture.map not in EXPORTED_MAPS or texture.kind not in EXPORTED_TEXTURES:
                continue
            if texture.name in done or texture.name in images:
                continue
            _, images[texture.name] = decode_texture((input_dir / texture.name).read_bytes())
    return images


def save_outputs(exporter: GLTFExporter, output_file: Path, images: Dict[str, Image.Image],
                 done: Set[str]):
    """Write a job's PNGs, then its .glb; on failure remove whatever was written.

    PNG paths follow the URIs the exporter writes into the .glb.
    """
    written: List[Path] = []
    try:
        for name, image in images.items():
            target = output_file.parent / texture_uri(TEXTURE_FOLDER, name)
            target.parent.mkdir(parents=True, exist_ok=True)
            written.append(target)
            image.save(target, "PNG")
            logger.debug("Texture %s -> %s", name, target)
        exporter.save(output_file)
    except Exception:
        for path in written + [output_file]:
            if path.exists():
                path.unlink()
        raise
    done.update(images)


def new_exporter(path: Path, args) -> GLTFExporter:
    texture_folder = None if args.no_textures else TEXTURE_FOLDER
    return GLTFExporter(texture_folder=texture_folder, root_name=path.stem)


def extract_mesh(path: Path, args, checksum_map: ChecksumMap, textures_done: Set[str]) -> Path:
    output_file = Path(args.output) / f"{path.stem}.glb"
    asset = decode_mesh(path.read_bytes(), checksum_map)
    images = {} if args.no_textures else decode_textures(asset, Path(args.input), textures_done)

    exporter = new_exporter(path, args)
    exporter.add_mesh_asset(path.stem, asset)
    save_outputs(exporter, output_file, images, textures_done)
    return output_file


def extract_skeleton(path: Path, meshes: List[Path], args, checksum_map: ChecksumMap,
                     textures_done: Set[str]) -> Path:
    """Export a skeleton rigged with every mesh whose name starts with its own."""
    output_file = Path(args.output) / f"{path.stem}.glb"
    skeleton = decode_skeleton(path.read_bytes(), checksum_map)

    exporter = new_exporter(path, args)
    exporter.add_skeleton(skeleton)
    images: Dict[str, Image.Image] = {}
    for mesh_path in meshes:
        if not mesh_path.stem.startswith(path.stem):
            continue
        asset = decode_mesh(mesh_path.read_bytes(), checksum_map)
        if not args.no_textures:
            images.update(decode_textures(asset, Path(args.input), textures_done))
        exporter.add_mesh_asset(mesh_path.stem, asset, skeleton)
    save_outputs(exporter, output_file, images, textures_done)
    return output_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract Telltale D3D models and textures to glTF format"
    )
    parser.add_argument(
        "-i", "--input",
        required=True,
        help="Folder with .d3dmesh, .skl and .d3dtx files extracted from game archives",
    )
    parser.add_argument(
        "-o", "--output",
        default="./output",
        help="Output directory for glTF files (default: ./output)",
    )
    parser.add_argument(
        "--strings",
        default=str(DEFAULT_STRINGS),
        help="Text file of known names used to resolve checksums "
             "(default: checksum_strings.txt beside this script)",
    )
    parser.add_argument(
        "--no-textures",
        action="store_true",
        help="Skip texture conversion",
    )
    parser.add_argument(
        "--no-skeletons",
        action="store_true",
        help="Skip skeleton export",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    if not input_path.is_dir():
        print(f"Input not found: {args.input}", file=sys.stderr)
        return 1

    meshes = sorted(input_path.glob("*.d3dmesh"))
    skeletons = [] if args.no_skeletons else sorted(input_path.glob("*.skl"))
    if not meshes and not skeletons:
        print(f"No D3D files found in {input_path}", file=sys.stderr)
        return 1

    output_path = Path(args.output)
    output_path.mkdir(parents=True, exist_ok=True)
    if not args.no_textures:
        (output_path / TEXTURE_FOLDER).mkdir(exist_ok=True)

    checksum_map = load_checksum_map(Path(args.strings))
    textures_done: Set[str] = set()

    jobs: List[Tuple[Path, Callable[[], Path]]] = []
    for mesh in meshes:
        jobs.append((mesh, partial(extract_mesh, mesh, args, checksum_map, textures_done)))
    for skl in skeletons:
        jobs.append((skl, partial(extract_skeleton, skl, meshes, args, checksum_map, textures_done)))

    success_count = 0
    fail_count = 0

    for path, extract in jobs:
        try:
            output_file = extract()
            if args.verbose:
                print(f"Exported: {path} -> {output_file}")
            success_count += 1
        except Exception as e:
            print(f"Failed: {path} - {e}", file=sys.stderr)
            fail_count += 1

    # Summary
    total = success_count + fail_count
    print(f"\nExtracted {success_count}/{total} files to {args.output}")

    return 0 if fail_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
