"""
Tests for NeXus file reading, templating and write-back.
"""

import h5py
import numpy as np
import pytest
from pulseflow import EventStore
from pulseflow.core.histogram import DetectorHistograms
from pulseflow.io.nexus import NeXusFile, DETECTOR_COUNTS, GOOD_FRAMES
from pulseflow.utils.exceptions import LoadError, WriteError


class TestNeXusLoad:
    """Test loading run files."""

    def test_basic_load(self, make_run, run_epoch):
        store = NeXusFile(make_run()).load()
        np.testing.assert_array_equal(store.spectrum_ids, [1, 2])
        assert store.raw_frames == 6
        assert store.good_frames == 6
        assert store.start_epoch == run_epoch
        assert store.end_epoch == run_epoch + 60
        assert not store.has_events

    def test_advanced_load(self, make_run):
        store = NeXusFile(make_run()).load(advanced=True)
        assert store.n_frames == 6
        assert store.n_events == 6
        assert store.bin_edges.n_bins == 3
        np.testing.assert_allclose(store.frame_offsets, [0, 10, 20, 30, 40, 50])
        np.testing.assert_array_equal(store.event_indices, [1, 2, 1, 2, 1, 2])
        assert sorted(store.monitor_counts) == [1, 2]
        np.testing.assert_array_equal(store.monitor_counts[1], [4, 8, 12])

    def test_event_store_load(self, make_run):
        store = EventStore.load(make_run(), advanced=True)
        assert store.full_histogram().total_counts() == 6

    def test_missing_event_table(self, make_run):
        path = make_run(omit=("raw_data_1/detector_1_events/event_id",))
        NeXusFile(path).load()
        with pytest.raises(LoadError, match="event_id") as excinfo:
            NeXusFile(path).load(advanced=True)
        assert excinfo.value.path == path
        assert excinfo.value.table == "raw_data_1/detector_1_events/event_id"

    def test_missing_start_time(self, make_run):
        path = make_run(omit=("raw_data_1/start_time",))
        with pytest.raises(LoadError, match="start_time"):
            NeXusFile(path).load()

    def test_malformed_timestamp(self, make_run):
        path = make_run(start_time="yesterday")
        with pytest.raises(LoadError, match="Malformed"):
            NeXusFile(path).load()

    def test_end_before_start(self, make_run):
        path = make_run(start_time="2023-05-04T10:01:00", end_time="2023-05-04T10:00:00")
        with pytest.raises(LoadError, match="precedes"):
            NeXusFile(path).load()

    def test_missing_file(self, tmp_path):
        with pytest.raises(LoadError, match="Cannot open"):
            NeXusFile(str(tmp_path / "missing.nxs")).load()

    def test_monitors_stop_at_gap(self, make_run):
        """Monitors are read until the first missing number."""
        path = make_run(monitors=((4, 8, 12),))
        with h5py.File(path, "a") as f:
            f.create_dataset("raw_data_1/monitor_3/data", data=np.ones((1, 1, 3), dtype=np.int32))
        store = NeXusFile(path).load(advanced=True)
        assert list(store.monitor_counts) == [1]

    def test_bad_bin_edges(self, make_run):
        path = make_run(edges=(0.0, 2.0, 1.0, 3.0))
        with pytest.raises(LoadError, match="strictly increasing"):
            NeXusFile(path).load(advanced=True)

    def test_template_layout(self, make_run):
        layout = NeXusFile(make_run()).load_template_layout()
        np.testing.assert_array_equal(layout.spectrum_ids, [1, 2])
        assert layout.bin_edges.n_bins == 3
        assert layout.monitor_layout == {1: 3, 2: 3}


class TestNeXusTemplate:
    """Test output file replication."""

    def test_create_destination(self, make_run, tmp_path):
        out = str(tmp_path / "out.nxs")
        dest = NeXusFile(make_run()).create_destination(out)
        assert dest.is_destination
        assert dest.path == out
        with h5py.File(out, "r") as f:
            assert "raw_data_1/detector_1/spectrum_index" in f
            assert "raw_data_1/monitor_2/data" in f
            assert "raw_data_1/detector_1_events" not in f
            assert f["raw_data_1"].attrs["NX_class"] == "NXentry"

    def test_extra_paths(self, make_run, tmp_path, caplog):
        out = str(tmp_path / "out.nxs")
        NeXusFile(make_run()).create_destination(
            out, extra_paths=["raw_data_1/framelog", "raw_data_1/sample"]
        )
        with h5py.File(out, "r") as f:
            assert "raw_data_1/framelog/events_log/value" in f
            assert "raw_data_1/sample" not in f
        assert "raw_data_1/sample" in caplog.text

    def test_missing_required_group(self, make_run, tmp_path):
        path = make_run(omit=("raw_data_1/raw_frames",))
        with pytest.raises(LoadError, match="raw_frames"):
            NeXusFile(path).create_destination(str(tmp_path / "out.nxs"))

    def test_unwritable_destination(self, make_run, tmp_path):
        with pytest.raises(WriteError):
            NeXusFile(make_run()).create_destination(str(tmp_path / "no" / "such" / "out.nxs"))


class TestNeXusWrite:
    """Test writing results back."""

    def test_write_destination(self, make_run, tmp_path):
        run = make_run()
        out = str(tmp_path / "out.nxs")
        dest = NeXusFile(run).create_destination(out)
        source = NeXusFile(run).load(advanced=True)
        source.bin_interval((0.0, 30.0), dest)
        source.add_monitors(0.5, dest)
        NeXusFile(out).write_destination(dest)

        with h5py.File(out, "r") as f:
            counts = f[DETECTOR_COUNTS][()]
            assert counts.shape == (1, 2, 3)
            assert counts.dtype == np.int32
            np.testing.assert_array_equal(counts[0], [[1, 0, 1], [0, 1, 0]])
            assert f[GOOD_FRAMES][0] == 3
            np.testing.assert_array_equal(f["raw_data_1/monitor_1/data"][()], [[[2, 4, 6]]])

    def test_write_requires_destination(self, make_run, tmp_path):
        store = NeXusFile(make_run()).load()
        with pytest.raises(WriteError, match="no histograms"):
            NeXusFile(str(tmp_path / "out.nxs")).write_destination(store)

    def test_write_missing_file(self, tmp_path, scenario_store):
        dest = EventStore.from_layout(scenario_store.layout)
        with pytest.raises(WriteError):
            NeXusFile(str(tmp_path / "absent.nxs")).write_destination(dest)

    def test_write_parts_separately(self, make_run):
        run = make_run()
        bank = DetectorHistograms([1, 2], [0.0, 1.0, 2.0, 3.0])
        bank.increment(2, 0.5)
        nxs = NeXusFile(run)
        nxs.write_counts([1, 2], bank)
        nxs.write_monitors({2: [5, 6, 7]})
        nxs.write_good_frames(7)

        with h5py.File(run, "r") as f:
            np.testing.assert_array_equal(f[DETECTOR_COUNTS][0], [[0, 0, 0], [1, 0, 0]])
            np.testing.assert_array_equal(f["raw_data_1/monitor_2/data"][()], [[[5, 6, 7]]])
            np.testing.assert_array_equal(f["raw_data_1/monitor_1/data"][()], [[[4, 8, 12]]])
            assert f[GOOD_FRAMES].shape == (1,)
            assert f[GOOD_FRAMES][0] == 7

    def test_write_good_frames_missing_file(self, tmp_path):
        with pytest.raises(WriteError, match="Cannot open"):
            NeXusFile(str(tmp_path / "absent.nxs")).write_good_frames(3)

    def test_write_sequence(self, tmp_path):
        path = str(tmp_path / "seq.nxs")
        nxs = NeXusFile(path)
        nxs.write_sequence("1", [0.5, 1.5])
        nxs.write_sequence("1", [2.5])
        nxs.write_sequence("2", [])
        with h5py.File(path, "r") as f:
            np.testing.assert_allclose(f["1"][()], [2.5])
            assert f["2"].shape == (0,)

    def test_write_partitions(self, tmp_path):
        path = str(tmp_path / "parts.nxs")
        NeXusFile(path).write_partitions({1: np.array([0.1, 0.2]), 4: np.array([0.3])})
        with h5py.File(path, "r") as f:
            assert sorted(f.keys()) == ["1", "4"]
            np.testing.assert_allclose(f["1"][()], [0.1, 0.2])
