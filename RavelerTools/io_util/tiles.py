"""
Routines for reading Raveler superpixel tiles.

A Raveler stack stores its superpixel labels as a pyramid of PNG tiles
(we only ever read level 0).  Each tile covers TILE_SIZE x TILE_SIZE pixels
of a single Z-slice, and each pixel encodes a superpixel label that is
unique within its slice, either as a 16-bit grayscale value or as a 24-bit
value packed into the R,G,B channels.

Note: Tile rasters are stored upside-down relative to stack coordinates,
      so the in-tile row must be flipped before indexing the raster.
      See raster_row().
"""
import os
from enum import Enum

import numpy as np
from PIL import Image

import logging
logger = logging.getLogger(__name__)

TILE_SIZE = 1024


class SuperpixelFormat(Enum):
    """
    How superpixel labels are encoded within tile pixels.
    (NONE is treated like 16-bit grayscale.)
    """
    NONE = 0
    BITS16 = 1
    BITS24 = 2


class TileNotFoundError(RuntimeError):
    pass


def tile_filename(row, col, slice):
    """
    Return the path to a given tile, relative to the stack root.

    Example:

        >>> tile_filename(1, 2, 42)
        'tiles/1024/0/1/2/s/042.png'
        >>> tile_filename(1, 2, 1042)
        'tiles/1024/0/1/2/s/1000/1042.png'
    """
    if slice >= 1000:
        slice_dir = (slice // 1000) * 1000
        return f"tiles/{TILE_SIZE}/0/{row}/{col}/s/{slice_dir}/{slice}.png"
    return f"tiles/{TILE_SIZE}/0/{row}/{col}/s/{slice:03d}.png"


def tile_coordinates(x, y):
    """
    For the given stack coordinate, return the containing tile's (row, col),
    and the point's (x,y) offset within that tile (before any vertical flip).
    """
    col = x // TILE_SIZE
    row = y // TILE_SIZE
    return (row, col), (x - col*TILE_SIZE, y - row*TILE_SIZE)


def raster_row(tile_height, y_in_tile):
    """
    Convert a Y-offset within a tile (in stack coordinates)
    into the corresponding row of the decoded raster.
    """
    return tile_height - y_in_tile - 1


def find_superpixel_tile(stack, rel_tile_path):
    """
    Locate a superpixel tile, either within the given stack directory
    or (if necessary) within the stack's base stack.

    Raises:
        TileNotFoundError if the tile can't be found in either location.
    """
    filename = os.path.join(stack.directory, rel_tile_path)
    if os.path.exists(filename):
        return filename

    if stack.base is None:
        raise TileNotFoundError(f"Could not find superpixel tile ({rel_tile_path}) "
                                f"in stack ({stack.directory})!")

    filename = os.path.join(stack.base.directory, rel_tile_path)
    if not os.path.exists(filename):
        raise TileNotFoundError(f"Could not find superpixel tile ({rel_tile_path}) "
                                f"in stack ({stack.directory}) or its base ({stack.base.directory})!")
    return filename


def read_superpixel_tile(stack, rel_tile_path, superpixel_format=None):
    """
    Read and decode a superpixel tile, either from the stack directory
    or from its base stack if necessary.

    Paletted and gray+alpha files are expanded to RGBA for 24-bit stacks,
    and to plain grayscale ('L') otherwise.

    Returns:
        (raster, mode)
        where raster is an ndarray (2D for grayscale, 3D for color)
        and mode is the PIL image mode of the file (e.g. 'I;16', 'RGB')
    """
    filename = find_superpixel_tile(stack, rel_tile_path)
    logger.debug(f"Reading superpixel tile: {filename}")
    with Image.open(filename) as img:
        mode = img.mode
        if superpixel_format == SuperpixelFormat.BITS24:
            if mode in ('P', 'LA', 'CMYK', 'YCbCr'):
                img = img.convert('RGBA')
        elif mode in ('P', 'LA'):
            img = img.convert('L')
        raster = np.array(img)
    return raster, mode


def superpixel_labels(raster, superpixel_format, mode=None):
    """
    Decode every pixel of a tile raster into its superpixel label.

    For 24-bit superpixels, the label is packed little-endian across the
    color channels: R | G<<8 | B<<16.  (This is an ID, not a color,
    so the channel order matters.)

    If given, mode is the PIL mode of the original file, for error messages.

    Returns:
        2D uint32 ndarray of labels, in raster orientation.
    """
    if superpixel_format == SuperpixelFormat.BITS24:
        if raster.ndim != 3 or raster.shape[2] < 3:
            raise RuntimeError(f"Expected RGB(A) tiles for 24-bit superpixels, "
                               f"but got a raster of shape {raster.shape}{_mode_note(mode)}")
        rgb = raster[..., :3].astype(np.uint32)
        return rgb[..., 0] | (rgb[..., 1] << 8) | (rgb[..., 2] << 16)

    if raster.ndim != 2:
        raise RuntimeError(f"Expected grayscale tiles for 16-bit superpixels, "
                           f"but got a raster of shape {raster.shape}{_mode_note(mode)}")
    return raster.astype(np.uint32)


def _mode_note(mode):
    if mode is None:
        return ""
    return f" (file mode: '{mode}')"


def get_superpixel_id(labels, x, y):
    """
    Return the label of the pixel at the given (x,y) offset within a tile,
    where y is measured in stack orientation (i.e. before the vertical flip).
    """
    return int(labels[raster_row(labels.shape[0], y), x])
