"""Body-to-body correspondence between two stacks, via superpixel overlap.

The two stacks are assumed to share the same superpixels, i.e. a given
(slice, label) pair refers to the same region in both stacks.  Each
superpixel of a source body casts one vote for the target body that owns
the same superpixel in the target stack.  The target body with the most
votes wins.

(The assumption can be checked with the superpixel bounds files.
See check_superpixel_drift().)
"""
from collections import namedtuple

import numpy as np

from ..geometry import NO_BODY, as_body_set
from ..io_util.superpixel_maps import MapFileError

import logging
logger = logging.getLogger(__name__)

# Maximum fraction of superpixel voxels that may differ between two stacks
# before an overlap analysis between them is considered unreliable.
MAX_SUPERPIXEL_DRIFT = 0.10


class SuperpixelDriftError(RuntimeError):
    pass


class BestOverlap(namedtuple('BestOverlap', 'matched_body overlap_size max_overlap')):
    """
    The best match for one source body.

    overlap_size: How many of the source body's superpixels belong to matched_body.
    max_overlap: How many superpixels the source body has (i.e. the size of a 100% overlap).
    """
    __slots__ = ()

    def fraction(self):
        if self.max_overlap == 0:
            return 0.0
        return self.overlap_size / self.max_overlap


class OverlapTable(object):
    """Stores overlap counts between two sets of labels.

    overlap_map is a dict-of-dicts: { body1: { body2: count } }
    Both levels remember insertion order, which is used to break ties.
    """
    def __init__(self, overlaps=()):
        """Init.

        Args:
            overlaps (iterable): (body1, body2, count) triples
        """
        self.overlap_map = {}
        for body1, body2, count in overlaps:
            self.add(body1, body2, count)

    def add(self, body1, body2, count=1):
        row = self.overlap_map.setdefault(body1, {})
        row[body2] = row.get(body2, 0) + int(count)

    def combine_tables(self, overlap2):
        """Merge the counts of another OverlapTable into this one.
        """
        for body1, row in overlap2.overlap_map.items():
            for body2, count in row.items():
                self.add(body1, body2, count)

    def best_match(self, body1):
        """Return (body2, count) for the largest overlap of body1.

        Ties go to whichever body2 was added first.
        If body1 has no overlaps at all, returns (0, 0).
        """
        largest = 0
        matched_body = NO_BODY
        for body2, count in self.overlap_map.get(body1, {}).items():
            if count > largest:
                largest = count
                matched_body = body2
        return matched_body, largest


def superpixel_drift(source, target, superpixel_keys):
    """
    Compare the superpixel bounds of two stacks for the given superpixels,
    and return the fraction of voxels that differ:

        sum(|volume1 - volume2|) / sum(volume1)

    (A superpixel that is missing from the target counts with its entire volume.)

    Returns:
        The fraction, or None if either stack has no superpixel bounds file.
    """
    try:
        bounds1 = source.superpixel_bounds(superpixel_keys)
        bounds2 = target.superpixel_bounds(superpixel_keys)
    except MapFileError as ex:
        logger.warning(f"** Not able to check if superpixels changed using superpixel bounds: {ex}")
        return None

    volume1 = bounds1['volume'].values
    volume2 = bounds2['volume'].reindex(bounds1.index).values

    missing = np.isnan(volume2)
    voxels_diff = np.where(missing, volume1, np.abs(volume1 - np.nan_to_num(volume2))).sum()
    voxels_total = volume1.sum()

    if voxels_total == 0:
        return 0.0

    drift = float(voxels_diff) / float(voxels_total)
    logger.info(f"{drift*100.0:.2f}% voxel difference in superpixels used "
                f"to compute overlap analysis between stacks")
    return drift


def check_superpixel_drift(source, target, superpixel_keys, max_drift=MAX_SUPERPIXEL_DRIFT):
    """
    Quality control: make sure the given superpixels have not changed
    a lot between the two stacks, else superpixel overlap is meaningless.

    Raises:
        SuperpixelDriftError if the drift exceeds max_drift.
    """
    drift = superpixel_drift(source, target, superpixel_keys)
    if drift is not None and drift > max_drift:
        raise SuperpixelDriftError(f"More than {max_drift*100.0:.0f}% voxel difference in superpixels "
                                   f"between stacks: {drift*100.0:.2f}%\n  {source}\n  {target}")
    return drift


def overlap_tally(source, target, body_set):
    """
    For each body in body_set, count how many of its (source) superpixels
    belong to each body of the target stack.

    Returns:
        (overlaps, superpixel_table, superpixels_found, superpixels_not_found)
        where overlaps is an OverlapTable, and superpixel_table is the
        source stack's (sp, body) table for the requested bodies.
    """
    superpixel_table = source.body_superpixel_table(body_set)
    sp_to_body2 = target.superpixel_to_body_map()

    positions = sp_to_body2.index.get_indexer(superpixel_table['sp'].values)
    found = (positions != -1)

    bodies1 = superpixel_table['body'].values[found]
    bodies2 = sp_to_body2.values[positions[found]]

    overlaps = OverlapTable()
    for body1, body2 in zip(bodies1.tolist(), bodies2.tolist()):
        overlaps.add(body1, body2)

    superpixels_found = int(found.sum())
    superpixels_not_found = len(found) - superpixels_found
    return overlaps, superpixel_table, superpixels_found, superpixels_not_found


def overlap_analysis(source, target, body_set, check_drift=False, max_drift=MAX_SUPERPIXEL_DRIFT):
    """
    Return a body->body mapping between two stacks determined by maximal superpixel overlap.

    Every body in body_set appears in the result.  Bodies that are absent from
    the source stack, or none of whose superpixels can be found in the target,
    are matched to body 0 (and a warning is logged).

    Args:
        source, target:
            Stack objects
        body_set:
            The source bodies to match
        check_drift:
            If True, abort (SuperpixelDriftError) if the superpixels of these bodies
            differ by more than max_drift between the two stacks.

    Returns:
        dict of { body: BestOverlap }
    """
    body_set = as_body_set(body_set)
    overlaps, superpixel_table, superpixels_found, superpixels_not_found = overlap_tally(source, target, body_set)

    max_overlaps = superpixel_table.groupby('body').size().to_dict()
    for body in sorted(body_set - set(max_overlaps.keys())):
        logger.warning(f"** Warning: Body {body} is not present in stack: {source}")

    if check_drift:
        check_superpixel_drift(source, target, superpixel_table['sp'].values, max_drift)

    if superpixels_not_found > 0:
        total = superpixels_found + superpixels_not_found
        logger.warning(f"Overlap analysis: {superpixels_found} of {total} superpixels found in target stack ({target})")

    matching_map = {}
    for body in sorted(body_set):
        matched_body, largest = overlaps.best_match(body)
        if matched_body == NO_BODY:
            logger.warning(f"** Warning: Could not find overlapping body for body {body}")
        matching_map[body] = BestOverlap(matched_body, largest, int(max_overlaps.get(body, 0)))
    return matching_map


def body_mapping(matching_map):
    """
    Convert the result of overlap_analysis() into a plain { body: matched_body } dict.
    """
    return { body: best.matched_body for body, best in matching_map.items() }
