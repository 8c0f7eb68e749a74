import os

from ..geometry import Point3d, Bounds3d
from .tiles import SuperpixelFormat

import logging
logger = logging.getLogger(__name__)

TILES_METADATA_FILENAME = os.path.join("tiles", "metadata.txt")

SUPERPIXEL_FORMATS = { "RGBA": SuperpixelFormat.BITS24,
                       "I": SuperpixelFormat.BITS16 }


class StackMetadataError(RuntimeError):
    pass


def read_tiles_metadata(filename):
    """
    Read the 3d bounding box and superpixel format of a stack
    from its tiles/metadata.txt file, which looks like this:

        width=2000
        height=1500
        zmin=1000
        zmax=1499
        superpixel-format=RGBA

    Returns:
        (Bounds3d, SuperpixelFormat)
        The returned bounds are inclusive, i.e. max x is width-1.
    """
    if not os.path.exists(filename):
        raise StackMetadataError(f"Could not open tiles/metadata.txt file: {filename}")

    max_x = max_y = 0
    zmin = zmax = None
    superpixel_format = SuperpixelFormat.NONE

    with open(filename, 'r') as f:
        for linenum, line in enumerate(f, start=1):
            if not line.strip():
                continue
            if '=' not in line:
                raise StackMetadataError(f"Cannot parse line {linenum} in {filename}: {line!r}")

            keyword, value = map(str.strip, line.split('=', 1))
            try:
                if keyword == "width":
                    max_x = int(value) - 1
                elif keyword == "height":
                    max_y = int(value) - 1
                elif keyword == "zmin":
                    zmin = int(value)
                elif keyword == "zmax":
                    zmax = int(value)
                elif keyword == "superpixel-format":
                    if value not in SUPERPIXEL_FORMATS:
                        raise StackMetadataError(f"Illegal superpixel format ({value}): {filename}")
                    superpixel_format = SUPERPIXEL_FORMATS[value]
            except ValueError:
                raise StackMetadataError(f"Bad value for '{keyword}' on line {linenum} in {filename}: {value!r}")

    errors = []
    if zmin is None:
        errors.append("zmin not provided")
    if zmax is None:
        errors.append("zmax not provided")
    if errors:
        raise StackMetadataError(f"Error in reading {filename}: {', '.join(errors)}")

    bounds = Bounds3d(Point3d(0, 0, zmin), Point3d(max_x, max_y, zmax))
    return bounds, superpixel_format
