"""
Readers and writers for Raveler's superpixel mapping text files.

A Raveler stack maps its superpixels to bodies in two stages:

    superpixel_to_segment_map.txt:  <slice> <label> <segment>
    segment_to_body_map.txt:        <segment> <body>

Segments are unique per slice, and each body owns one segment in every
slice it touches.  Blank lines, and lines starting with a space or '#',
are ignored.

In memory, a superpixel is identified by a single uint64 key
(see superpixel_key()), and the composed superpixel->body mapping
is stored as a pandas.Series (index 'sp', values 'body').
"""
import os
from collections import namedtuple

import numpy as np
import pandas as pd

from ..util import Timer, MemoryWatcher, run_in_parallel

import logging
logger = logging.getLogger(__name__)

SUPERPIXEL_TO_SEGMENT_FILENAME = "superpixel_to_segment_map.txt"
SEGMENT_TO_BODY_FILENAME = "segment_to_body_map.txt"
SUPERPIXEL_BOUNDS_FILENAME = "superpixel_bounds.txt"

SUPERPIXEL_BOUNDS_COLUMNS = ['slice', 'label', 'min_x', 'min_y', 'width', 'height', 'volume']

UINT32_MAX = np.iinfo(np.uint32).max


class MapFileError(RuntimeError):
    pass


class Superpixel(namedtuple('Superpixel', 'slice label')):
    """
    A superpixel is identified by its slice and a label that is unique within that slice.
    Label 0 is background, never a real superpixel.
    """
    __slots__ = ()

    @property
    def key(self):
        return superpixel_key(self.slice, self.label)

    @classmethod
    def from_key(cls, key):
        key = int(key)
        return cls(key >> 32, key & 0xFFFFFFFF)


def superpixel_key(slice, label):
    """
    Pack a (slice, label) pair into a single uint64 key.
    Works on python ints or on numpy arrays.
    """
    if isinstance(slice, np.ndarray) or isinstance(label, np.ndarray):
        slice = np.asarray(slice, dtype=np.uint64)
        label = np.asarray(label, dtype=np.uint64)
        return (slice << np.uint64(32)) | label
    return (int(slice) << 32) | int(label)


def split_superpixel_keys(keys):
    """
    Inverse of superpixel_key(), for an array of keys.

    Returns:
        (slices, labels), both uint32 arrays
    """
    keys = np.asarray(keys, dtype=np.uint64)
    slices = (keys >> np.uint64(32)).astype(np.uint32)
    labels = (keys & np.uint64(0xFFFFFFFF)).astype(np.uint32)
    return slices, labels


def _read_int_columns(filename, num_columns, description):
    """
    Parse a whitespace-delimited text table of integers, line by line.
    Lines that are blank or start with a space or '#' are skipped.
    Extra columns beyond num_columns are ignored.

    Returns:
        A list of num_columns int64 arrays.
    """
    if not os.path.exists(filename):
        raise MapFileError(f"Could not open {description} file: {filename}")

    columns = [[] for _ in range(num_columns)]
    with open(filename, 'r') as f:
        for linenum, line in enumerate(f, start=1):
            if not line.strip() or line[0] in (' ', '#'):
                continue
            fields = line.split()
            if len(fields) < num_columns:
                raise MapFileError(f"Error line {linenum} in {filename}: "
                                   f"expected {num_columns} columns, found {len(fields)}")
            try:
                values = [int(v) for v in fields[:num_columns]]
            except ValueError:
                raise MapFileError(f"Error line {linenum} in {filename}: {line.rstrip()!r}")

            for column, value in zip(columns, values):
                column.append(value)

    try:
        return [np.array(column, dtype=np.int64) for column in columns]
    except OverflowError:
        raise MapFileError(f"Value out of range in {filename}")


def _check_superpixel_columns(slices, labels, filename):
    for name, values in (('slice', slices), ('label', labels)):
        if len(values) and (values.min() < 0 or values.max() > UINT32_MAX):
            raise MapFileError(f"Superpixel {name} out of range (0..{UINT32_MAX}) in {filename}")


def read_superpixel_to_segment_map(filename):
    """
    Returns:
        pd.Series of segment IDs, indexed by superpixel key.
        (If a superpixel is listed more than once, the last line wins.)
    """
    logger.info(f"Loading superpixel->segment map: {filename}")
    slices, labels, segments = _read_int_columns(filename, 3, "superpixel->segment map")
    _check_superpixel_columns(slices, labels, filename)

    index = pd.Index(superpixel_key(slices, labels), name='sp')
    sp_to_segment = pd.Series(segments, index=index, name='segment')
    return sp_to_segment[~sp_to_segment.index.duplicated(keep='last')]


def read_segment_to_body_map(filename):
    """
    Returns:
        pd.Series of body IDs, indexed by segment ID.
        (If a segment is listed more than once, the last line wins.)
    """
    logger.info(f"Loading segment->body map: {filename}")
    segments, bodies = _read_int_columns(filename, 2, "segment->body map")

    segment_to_body = pd.Series(bodies, index=pd.Index(segments, name='segment'), name='body')
    return segment_to_body[~segment_to_body.index.duplicated(keep='last')]


def compose_maps(sp_to_segment, segment_to_body):
    """
    Substitute each superpixel's segment with that segment's body.
    Segments that aren't listed in segment_to_body map to body 0.
    """
    bodies = np.zeros(len(sp_to_segment), dtype=np.int64)
    if len(segment_to_body) > 0:
        positions = segment_to_body.index.get_indexer(sp_to_segment.values)
        found = (positions != -1)
        bodies[found] = segment_to_body.values[positions[found]]

        num_missing = (~found).sum()
        if num_missing:
            logger.warning(f"{num_missing} superpixels refer to segments with no body (mapped to body 0)")

    sp_to_body = pd.Series(bodies, index=sp_to_segment.index.copy(), name='body')
    sp_to_body.index.name = 'sp'
    return sp_to_body


def read_txt_maps(stack_dir):
    """
    Read the superpixel->segment and segment->body maps from a stack directory
    and return the composed superpixel->body map.

    The two files are read concurrently.
    """
    sp_path = os.path.join(stack_dir, SUPERPIXEL_TO_SEGMENT_FILENAME)
    seg_path = os.path.join(stack_dir, SEGMENT_TO_BODY_FILENAME)

    with Timer(f"Loading maps for stack: {stack_dir}", logger), MemoryWatcher() as memory_watcher:
        sp_to_segment, segment_to_body = run_in_parallel( lambda: read_superpixel_to_segment_map(sp_path),
                                                          lambda: read_segment_to_body_map(seg_path) )
        memory_watcher.log_increase(logger, note="after reading txt maps")

        logger.info("Calculating superpixel->body map...")
        sp_to_body = compose_maps(sp_to_segment, segment_to_body)

    logger.info(f"Maps loaded and computed ({len(sp_to_body)} superpixels).")
    return sp_to_body


def make_segment_table(sp_to_body):
    """
    Assign a Raveler segment ID to every superpixel in the given superpixel->body map.
    Each distinct (body, slice) pair receives a unique segment ID, starting at 1.
    Background superpixels (label 0) are assigned to segment 0.

    Returns:
        pd.DataFrame with columns ['slice', 'label', 'segment', 'body']
    """
    slices, labels = split_superpixel_keys(sp_to_body.index.values)
    df = pd.DataFrame({ 'slice': slices.astype(np.int64),
                        'label': labels.astype(np.int64),
                        'segment': np.zeros(len(sp_to_body), dtype=np.int64),
                        'body': sp_to_body.values.astype(np.int64) })

    labeled = (df['label'] != 0)
    if labeled.any():
        df.loc[labeled, 'segment'] = df.loc[labeled].groupby(['body', 'slice'], sort=True).ngroup() + 1
    return df


def write_txt_maps(sp_to_body, output_dir):
    """
    Write superpixel->segment and segment->body map .txt files
    from a superpixel->body map.  (The inverse of read_txt_maps().)

    The two files are written concurrently.
    """
    os.makedirs(output_dir, exist_ok=True)
    segment_table = make_segment_table(sp_to_body)

    segment_bodies = segment_table.loc[segment_table['label'] != 0, ['segment', 'body']].drop_duplicates()
    if (segment_table['label'] == 0).any():
        segment_bodies = pd.concat((pd.DataFrame({'segment': [0], 'body': [0]}), segment_bodies))

    def write_sp_to_segment():
        filename = os.path.join(output_dir, SUPERPIXEL_TO_SEGMENT_FILENAME)
        logger.info(f"Writing superpixel->segment map: {filename}")
        np.savetxt(filename, segment_table[['slice', 'label', 'segment']].values, fmt='%d')

    def write_segment_to_body():
        filename = os.path.join(output_dir, SEGMENT_TO_BODY_FILENAME)
        logger.info(f"Writing segment->body map: {filename}")
        np.savetxt(filename, segment_bodies[['segment', 'body']].values, fmt='%d')

    with Timer(f"Writing maps to {output_dir}", logger):
        run_in_parallel(write_sp_to_segment, write_segment_to_body)


def read_superpixel_bounds(filename, superpixel_set=None):
    """
    Load a superpixel bounds file, in which each line lists:

        <slice> <label> <min_x> <min_y> <width> <height> <volume>

    Args:
        filename:
            Path to superpixel_bounds.txt
        superpixel_set:
            Optional iterable of superpixel keys.  If given, only those
            superpixels are returned.  Otherwise, all superpixels are returned.

    Returns:
        pd.DataFrame with columns SUPERPIXEL_BOUNDS_COLUMNS, indexed by superpixel key.
    """
    logger.info(f"Loading superpixel bounds: {filename}")
    columns = _read_int_columns(filename, len(SUPERPIXEL_BOUNDS_COLUMNS), "superpixel bounds")
    _check_superpixel_columns(columns[0], columns[1], filename)

    df = pd.DataFrame(dict(zip(SUPERPIXEL_BOUNDS_COLUMNS, columns)))
    df.index = pd.Index(superpixel_key(columns[0], columns[1]), name='sp')
    df = df[~df.index.duplicated(keep='last')]

    if superpixel_set is not None:
        keys = np.fromiter(superpixel_set, np.uint64)
        df = df[df.index.isin(keys)]
    return df
