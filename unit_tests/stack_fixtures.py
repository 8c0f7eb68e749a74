"""
Helpers for building tiny Raveler stacks on disk, for testing.
"""
import os

import numpy as np
from PIL import Image

from RavelerTools.io_util.tiles import tile_filename


def write_metadata(stack_dir, width, height, zmin, zmax, superpixel_format="I"):
    os.makedirs(f"{stack_dir}/tiles", exist_ok=True)
    with open(f"{stack_dir}/tiles/metadata.txt", 'w') as f:
        f.write(f"width={width}\n")
        f.write(f"height={height}\n")
        f.write(f"zmin={zmin}\n")
        f.write(f"zmax={zmax}\n")
        if superpixel_format:
            f.write(f"superpixel-format={superpixel_format}\n")


def write_tile(stack_dir, row, col, z, labels, superpixel_format="I"):
    """
    Write a superpixel tile.

    Args:
        labels:
            2D array of superpixel labels, in STACK orientation,
            i.e. labels[y, x] is the label of the pixel at tile offset (x, y).
            (The raster is flipped vertically before it is written.)
    """
    labels = np.asarray(labels, dtype=np.uint32)
    raster = labels[::-1, :]

    if superpixel_format == "RGBA":
        rgb = np.zeros(raster.shape + (3,), dtype=np.uint8)
        rgb[..., 0] = raster & 0xFF
        rgb[..., 1] = (raster >> 8) & 0xFF
        rgb[..., 2] = (raster >> 16) & 0xFF
        img = Image.fromarray(rgb)
    else:
        img = Image.fromarray(raster.astype(np.uint16))

    path = os.path.join(stack_dir, tile_filename(row, col, z))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    img.save(path)
    return path


def write_maps(stack_dir, sp_to_segment, segment_to_body):
    """
    Args:
        sp_to_segment: list of (slice, label, segment)
        segment_to_body: list of (segment, body)
    """
    os.makedirs(stack_dir, exist_ok=True)
    with open(f"{stack_dir}/superpixel_to_segment_map.txt", 'w') as f:
        f.write("# slice label segment\n")
        for row in sp_to_segment:
            f.write("{} {} {}\n".format(*row))
    with open(f"{stack_dir}/segment_to_body_map.txt", 'w') as f:
        f.write("# segment body\n")
        for row in segment_to_body:
            f.write("{} {}\n".format(*row))


def write_superpixel_bounds(stack_dir, rows):
    """
    Args:
        rows: list of (slice, label, min_x, min_y, width, height, volume)
    """
    os.makedirs(stack_dir, exist_ok=True)
    with open(f"{stack_dir}/superpixel_bounds.txt", 'w') as f:
        for row in rows:
            f.write(" ".join(map(str, row)) + "\n")


def write_identity_maps(stack_dir, sp_to_body):
    """
    Write maps in which each superpixel has its own segment.

    Args:
        sp_to_body: dict of { (slice, label): body }
    """
    sp_to_segment = []
    segment_to_body = []
    for segment, ((z, label), body) in enumerate(sorted(sp_to_body.items()), start=1):
        sp_to_segment.append((z, label, segment))
        segment_to_body.append((segment, body))
    write_maps(stack_dir, sp_to_segment, segment_to_body)
