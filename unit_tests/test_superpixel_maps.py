import os
import tempfile
import unittest

import numpy as np
import pandas as pd

from RavelerTools.io_util.superpixel_maps import ( Superpixel, MapFileError, superpixel_key, split_superpixel_keys,
                                                   read_superpixel_to_segment_map, read_segment_to_body_map,
                                                   compose_maps, read_txt_maps, write_txt_maps, make_segment_table,
                                                   read_superpixel_bounds, SUPERPIXEL_TO_SEGMENT_FILENAME,
                                                   SEGMENT_TO_BODY_FILENAME )

from stack_fixtures import write_maps, write_superpixel_bounds


def test_superpixel_key():
    assert superpixel_key(0, 1) == 1
    assert superpixel_key(1, 0) == 1 << 32
    assert superpixel_key(3, 0xFFFFFFFF) == (3 << 32) | 0xFFFFFFFF

    sp = Superpixel(1500, 42)
    assert Superpixel.from_key(sp.key) == sp

    keys = superpixel_key(np.array([1, 2]), np.array([10, 20]))
    assert keys.dtype == np.uint64
    slices, labels = split_superpixel_keys(keys)
    assert slices.tolist() == [1, 2]
    assert labels.tolist() == [10, 20]


def test_compose_maps():
    sp_to_segment = pd.Series([100, 200, 300], index=pd.Index(superpixel_key(np.array([0,0,1]), np.array([1,2,1])), name='sp'))
    segment_to_body = pd.Series([7, 8], index=pd.Index([100, 200], name='segment'))

    sp_to_body = compose_maps(sp_to_segment, segment_to_body)
    assert sp_to_body.name == 'body'
    assert sp_to_body.index.name == 'sp'
    assert sp_to_body.tolist() == [7, 8, 0]


def test_compose_large_ids():
    # Body IDs beyond float64 precision must survive composition.
    big_body = (1 << 60) + 1
    sp_to_segment = pd.Series([100, 101], index=pd.Index(superpixel_key(np.array([0,0]), np.array([1,2])), name='sp'))
    segment_to_body = pd.Series([big_body], index=pd.Index([100], name='segment'))

    sp_to_body = compose_maps(sp_to_segment, segment_to_body)
    assert sp_to_body.tolist() == [big_body, 0]


class TestReadMaps(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.stack_dir = self._tmpdir.name

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_simple(self):
        write_maps(self.stack_dir, [(0, 1, 100)], [(100, 7)])
        sp_to_body = read_txt_maps(self.stack_dir)
        assert len(sp_to_body) == 1
        assert sp_to_body.at[superpixel_key(0, 1)] == 7
        assert superpixel_key(0, 2) not in sp_to_body.index

    def test_skipped_lines(self):
        with open(f"{self.stack_dir}/{SUPERPIXEL_TO_SEGMENT_FILENAME}", 'w') as f:
            f.write("# comment\n")
            f.write("\n")
            f.write(" 0 5 999\n")
            f.write("0 1 100\n")
            f.write("0 2 100 extra-column\n")
        with open(f"{self.stack_dir}/{SEGMENT_TO_BODY_FILENAME}", 'w') as f:
            f.write("100 7\n")

        sp_to_body = read_txt_maps(self.stack_dir)
        assert sorted(sp_to_body.index.tolist()) == [superpixel_key(0, 1), superpixel_key(0, 2)]
        assert (sp_to_body == 7).all()

    def test_duplicates_last_wins(self):
        write_maps(self.stack_dir, [(0, 1, 100), (0, 1, 200)], [(100, 7), (200, 8), (200, 9)])
        sp_to_body = read_txt_maps(self.stack_dir)
        assert len(sp_to_body) == 1
        assert sp_to_body.at[superpixel_key(0, 1)] == 9

    def test_missing_segment(self):
        write_maps(self.stack_dir, [(0, 1, 100), (0, 2, 101)], [(100, 7)])
        sp_to_body = read_txt_maps(self.stack_dir)
        assert sp_to_body.at[superpixel_key(0, 2)] == 0

    def test_malformed_line(self):
        write_maps(self.stack_dir, [(0, 1, 100), (0, 'x', 101)], [(100, 7)])
        with self.assertRaises(MapFileError) as cm:
            read_superpixel_to_segment_map(f"{self.stack_dir}/{SUPERPIXEL_TO_SEGMENT_FILENAME}")
        assert "line 3" in str(cm.exception)

    def test_too_few_columns(self):
        with open(f"{self.stack_dir}/{SEGMENT_TO_BODY_FILENAME}", 'w') as f:
            f.write("100\n")
        with self.assertRaises(MapFileError):
            read_segment_to_body_map(f"{self.stack_dir}/{SEGMENT_TO_BODY_FILENAME}")

    def test_label_out_of_range(self):
        write_maps(self.stack_dir, [(0, 1 << 33, 100)], [(100, 7)])
        with self.assertRaises(MapFileError):
            read_superpixel_to_segment_map(f"{self.stack_dir}/{SUPERPIXEL_TO_SEGMENT_FILENAME}")

    def test_missing_file(self):
        write_maps(self.stack_dir, [(0, 1, 100)], [(100, 7)])
        os.unlink(f"{self.stack_dir}/{SEGMENT_TO_BODY_FILENAME}")
        with self.assertRaises(MapFileError):
            read_txt_maps(self.stack_dir)


class TestWriteMaps(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.output_dir = f"{self._tmpdir.name}/exported"

        keys = superpixel_key(np.array([0, 0, 0, 1, 1, 1]),
                              np.array([0, 1, 2, 1, 2, 3]))
        self.sp_to_body = pd.Series([0, 7, 7, 7, 8, 8], index=pd.Index(keys, name='sp'), name='body')

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_segment_table(self):
        table = make_segment_table(self.sp_to_body)
        assert table.loc[table['label'] == 0, 'segment'].tolist() == [0]

        labeled = table[table['label'] != 0]

        # One segment per (body, slice)
        assert labeled.groupby(['body', 'slice'])['segment'].nunique().eq(1).all()
        assert labeled['segment'].nunique() == 3
        assert labeled['segment'].min() == 1

    def test_roundtrip(self):
        write_txt_maps(self.sp_to_body, self.output_dir)
        sp_to_body = read_txt_maps(self.output_dir)
        assert sp_to_body.sort_index().equals(self.sp_to_body.sort_index())

    def test_background_segment_written_once(self):
        write_txt_maps(self.sp_to_body, self.output_dir)
        segment_to_body = read_segment_to_body_map(f"{self.output_dir}/{SEGMENT_TO_BODY_FILENAME}")
        assert segment_to_body.index.tolist().count(0) == 1
        assert segment_to_body.at[0] == 0


class TestSuperpixelBounds(unittest.TestCase):

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.stack_dir = self._tmpdir.name
        write_superpixel_bounds(self.stack_dir, [ (0, 1, 0, 0, 10, 10, 80),
                                                  (0, 2, 10, 0, 5, 5, 20),
                                                  (1, 1, 0, 0, 10, 10, 90) ])
        self.path = f"{self.stack_dir}/superpixel_bounds.txt"

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_all(self):
        df = read_superpixel_bounds(self.path)
        assert len(df) == 3
        assert df.loc[superpixel_key(1, 1), 'volume'] == 90
        assert df.loc[superpixel_key(0, 2), 'min_x'] == 10

    def test_subset(self):
        df = read_superpixel_bounds(self.path, { superpixel_key(0, 1), superpixel_key(1, 1), superpixel_key(5, 5) })
        assert sorted(df.index.tolist()) == [superpixel_key(0, 1), superpixel_key(1, 1)]

    def test_missing(self):
        with self.assertRaises(MapFileError):
            read_superpixel_bounds(f"{self.stack_dir}/nonexistent.txt")


if __name__ == "__main__":
    unittest.main()
