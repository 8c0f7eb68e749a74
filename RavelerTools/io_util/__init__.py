from .tiles import TILE_SIZE, SuperpixelFormat, TileNotFoundError, tile_filename, read_superpixel_tile, superpixel_labels
from .tile_cache import TileCache
from .stack_metadata import StackMetadataError, read_tiles_metadata
from .superpixel_maps import ( Superpixel, MapFileError, superpixel_key, split_superpixel_keys,
                               read_txt_maps, write_txt_maps, read_superpixel_bounds )
