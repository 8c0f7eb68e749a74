"""
Defines the Stack class, a handle to a Raveler stack directory.

A stack directory contains (at least some of):

    tiles/metadata.txt              (bounds and superpixel format)
    tiles/1024/0/...                (superpixel tiles)
    superpixel_to_segment_map.txt
    segment_to_body_map.txt
    superpixel_bounds.txt

An exported (or session) stack usually contains only its own maps,
and relies on a 'base' stack for its tiles and metadata.
"""
import os

import numpy as np
import pandas as pd

from .geometry import NO_BODY, as_body_set
from .util import relpath_to_abspath
from .io_util.tiles import read_superpixel_tile, superpixel_labels
from .io_util.tile_cache import TileCache
from .io_util.stack_metadata import read_tiles_metadata, TILES_METADATA_FILENAME
from .io_util.superpixel_maps import ( Superpixel, superpixel_key, read_txt_maps,
                                       read_superpixel_bounds, SUPERPIXEL_BOUNDS_FILENAME )

import logging
logger = logging.getLogger(__name__)


StackSchema = \
{
    "description": "A Raveler stack directory, with an optional base stack for tiles and metadata.",
    "type": "object",
    "required": ["directory"],
    "additionalProperties": False,
    "properties": {
        "directory": {
            "description": "Path to the stack directory (relative paths are relative to the config file).",
            "type": "string",
            "minLength": 1
        },
        "base-directory": {
            "description": "Path to a base stack, from which tiles and metadata are read\n"
                           "if they are not present in this stack.",
            "type": "string",
            "default": ""
        },
        "tile-cache-size": {
            "description": "How many decoded tiles to keep in memory.  If 0, no cache is used.",
            "type": "integer",
            "minimum": 0,
            "default": 0
        }
    }
}


class Stack(object):
    """
    Handle to a Raveler stack directory.

    The superpixel->body map is loaded lazily (on first use) and kept
    for the lifetime of this object.  Body->superpixel lookups are
    computed fresh for each requested subset of bodies, since inverting
    the whole map would be prohibitively large.
    """

    def __init__(self, directory, base=None, tile_cache=None):
        """
        Args:
            directory:
                Path to the stack directory
            base:
                Optional Stack, consulted for tiles and metadata.
            tile_cache:
                Optional TileCache (may be shared between stacks).
        """
        self.directory = directory
        self.base = base
        self.tile_cache = tile_cache

        self.load_count = 0
        self._sp_to_body = None
        self._metadata = None

    @classmethod
    def from_config(cls, stack_config, config_dir):
        """
        Construct a Stack from a config that has already been validated against StackSchema.
        """
        directory = relpath_to_abspath(stack_config["directory"], config_dir)
        base_directory = relpath_to_abspath(stack_config["base-directory"], config_dir)

        tile_cache = None
        if stack_config["tile-cache-size"] > 0:
            tile_cache = TileCache(stack_config["tile-cache-size"])

        base = None
        if base_directory:
            base = Stack(base_directory, tile_cache=tile_cache)
        return Stack(directory, base, tile_cache)

    def __str__(self):
        return self.directory

    def __repr__(self):
        if self.base is None:
            return f"Stack({self.directory!r})"
        return f"Stack({self.directory!r}, base={self.base!r})"

    ##
    ## Metadata
    ##

    def tiles_metadata(self):
        """
        Returns:
            (Bounds3d, SuperpixelFormat)
            Stacks with a base stack always use the base's metadata.
        """
        if self._metadata is None:
            if self.base is not None:
                self._metadata = self.base.tiles_metadata()
            else:
                self._metadata = read_tiles_metadata(os.path.join(self.directory, TILES_METADATA_FILENAME))
        return self._metadata

    @property
    def bounds(self):
        return self.tiles_metadata()[0]

    @property
    def superpixel_format(self):
        return self.tiles_metadata()[1]

    ##
    ## Tiles
    ##

    def read_tile(self, rel_tile_path):
        """
        Return the decoded superpixel labels (uint32, raster orientation) for the given tile,
        from this stack or its base.
        """
        cache_key = os.path.join(self.directory, rel_tile_path)
        if self.tile_cache is not None:
            labels, found = self.tile_cache.retrieve(cache_key)
            if found:
                return labels

        fmt = self.superpixel_format
        raster, mode = read_superpixel_tile(self, rel_tile_path, fmt)
        labels = superpixel_labels(raster, fmt, mode)

        if self.tile_cache is not None:
            self.tile_cache.store(cache_key, labels)
        return labels

    ##
    ## Superpixel maps
    ##

    @property
    def map_loaded(self):
        return self._sp_to_body is not None

    def ensure_loaded(self):
        """
        Load the superpixel->body map from disk, unless it's already loaded.
        """
        if self._sp_to_body is None:
            self._sp_to_body = read_txt_maps(self.directory)
            self.load_count += 1

    def clear_txt_maps(self):
        """
        Release the superpixel->body map.  It will be re-read on next use.
        """
        self._sp_to_body = None

    def superpixel_to_body_map(self):
        """
        Returns:
            pd.Series of body IDs, indexed by superpixel key.
        """
        self.ensure_loaded()
        return self._sp_to_body

    def superpixel_to_body(self, superpixel):
        """
        Return the body for the given Superpixel.

        Note: Returns 0 both for superpixels that belong to no body
              and for superpixels that aren't listed in the map at all.
        """
        self.ensure_loaded()
        key = superpixel_key(*superpixel)
        try:
            return int(self._sp_to_body.at[key])
        except KeyError:
            return NO_BODY

    def body_superpixel_table(self, body_set):
        """
        Return the rows of the superpixel->body map whose body is in body_set.

        Returns:
            pd.DataFrame with columns ['sp', 'body'],
            in the same order as the superpixel->body map.
        """
        if body_set is None:
            raise ValueError("Refusing to invert the superpixel->body map for all bodies. "
                             "Please provide an explicit set of bodies.")
        self.ensure_loaded()
        bodies = np.fromiter(as_body_set(body_set), np.int64)

        sp_to_body = self._sp_to_body
        selected = sp_to_body[sp_to_body.isin(bodies)]
        return pd.DataFrame({ 'sp': selected.index.values.astype(np.uint64),
                              'body': selected.values })

    def body_to_superpixels_map(self, body_set):
        """
        Return a body->superpixels mapping, restricted to the given set of bodies.
        Bodies with no superpixels in this stack are absent from the result.

        Returns:
            dict of { body: [Superpixel, Superpixel, ...] }
        """
        table = self.body_superpixel_table(body_set)
        body_to_sps = {}
        for sp, body in zip(table['sp'].values, table['body'].values):
            body_to_sps.setdefault(int(body), []).append(Superpixel.from_key(sp))
        return body_to_sps

    ##
    ## Superpixel bounds
    ##

    def superpixel_bounds_filename(self):
        return os.path.join(self.directory, SUPERPIXEL_BOUNDS_FILENAME)

    def superpixel_bounds(self, superpixel_set=None):
        """
        Read this stack's superpixel bounds, optionally restricted to a set of superpixel keys.
        See read_superpixel_bounds()
        """
        return read_superpixel_bounds(self.superpixel_bounds_filename(), superpixel_set)
