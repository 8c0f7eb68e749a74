import os
import tempfile
import unittest

import pytest

from RavelerTools.stack import Stack
from RavelerTools.io_util.superpixel_maps import superpixel_key
from RavelerTools.reconutils.overlap import ( BestOverlap, OverlapTable, SuperpixelDriftError, overlap_analysis,
                                              overlap_tally, superpixel_drift, check_superpixel_drift, body_mapping )

from stack_fixtures import write_identity_maps, write_superpixel_bounds


def test_overlap_table_tie_break():
    table = OverlapTable([(1, 5, 2), (1, 6, 2), (2, 7, 1)])
    assert table.best_match(1) == (5, 2)
    assert table.best_match(2) == (7, 1)
    assert table.best_match(99) == (0, 0)


def test_overlap_table_combine():
    table = OverlapTable([(1, 5, 2), (1, 6, 2)])
    table.combine_tables(OverlapTable([(1, 6, 1), (3, 8, 4)]))
    assert table.overlap_map == { 1: {5: 2, 6: 3}, 3: {8: 4} }
    assert table.best_match(1) == (6, 3)


def test_best_overlap_fraction():
    assert BestOverlap(500, 8, 10).fraction() == 0.8
    assert BestOverlap(0, 0, 0).fraction() == 0.0


class TestOverlapAnalysis(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.source_dir = f"{self._tmpdir.name}/source"
        self.target_dir = f"{self._tmpdir.name}/target"

        # Source: body 100 has 10 superpixels, body 200 has 3.
        source_map = { (1, label): 100 for label in range(1, 11) }
        source_map.update({ (1, label): 200 for label in range(11, 14) })
        write_identity_maps(self.source_dir, source_map)

        # Target: body 100's superpixels are split 8/2 between bodies 500 and 600,
        # and body 200's superpixels don't exist at all.
        target_map = { (1, label): 500 for label in range(1, 9) }
        target_map.update({ (1, 9): 600, (1, 10): 600, (2, 1): 700 })
        write_identity_maps(self.target_dir, target_map)

        self.source = Stack(self.source_dir)
        self.target = Stack(self.target_dir)

    def tearDown(self):
        self._tmpdir.cleanup()

    def _write_bounds(self, stack_dir, labels, volumes=None):
        volumes = volumes or {}
        rows = [ (1, label, 0, 0, 4, 4, volumes.get(label, 10)) for label in labels ]
        write_superpixel_bounds(stack_dir, rows)

    def test_majority_vote(self):
        matching = overlap_analysis(self.source, self.target, [100])
        assert matching == { 100: BestOverlap(500, 8, 10) }

    def test_every_body_reported(self):
        matching = overlap_analysis(self.source, self.target, {100, 200, 300})
        assert matching == { 100: BestOverlap(500, 8, 10),
                             200: BestOverlap(0, 0, 3),
                             300: BestOverlap(0, 0, 0) }
        assert body_mapping(matching) == { 100: 500, 200: 0, 300: 0 }

    def test_tally(self):
        overlaps, sp_table, found, not_found = overlap_tally(self.source, self.target, {100, 200})
        assert overlaps.overlap_map == { 100: {500: 8, 600: 2} }
        assert len(sp_table) == 13
        assert (found, not_found) == (10, 3)

    def test_drift_within_limit(self):
        self._write_bounds(self.source_dir, range(1, 14))
        self._write_bounds(self.target_dir, range(1, 14), {1: 20})

        keys = [superpixel_key(1, label) for label in range(1, 14)]
        assert superpixel_drift(self.source, self.target, keys) == pytest.approx(10/130)

        matching = overlap_analysis(self.source, self.target, {100, 200}, check_drift=True)
        assert matching[100] == BestOverlap(500, 8, 10)

    def test_drift_too_large(self):
        self._write_bounds(self.source_dir, range(1, 14))

        # Body 200's superpixels are missing from the target bounds,
        # so their entire volume counts as drift.
        self._write_bounds(self.target_dir, range(1, 11))

        with self.assertRaises(SuperpixelDriftError):
            overlap_analysis(self.source, self.target, {100, 200}, check_drift=True)

        # Not checked unless requested
        overlap_analysis(self.source, self.target, {100, 200})

        # Or tolerated with a looser threshold
        overlap_analysis(self.source, self.target, {100, 200}, check_drift=True, max_drift=0.5)

    def test_drift_without_bounds_file(self):
        self._write_bounds(self.source_dir, range(1, 14))
        assert not os.path.exists(self.target.superpixel_bounds_filename())

        keys = [superpixel_key(1, label) for label in range(1, 14)]
        assert check_superpixel_drift(self.source, self.target, keys) is None

        matching = overlap_analysis(self.source, self.target, {100}, check_drift=True)
        assert matching[100].matched_body == 500


if __name__ == "__main__":
    unittest.main()
