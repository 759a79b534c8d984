"""
Pytest configuration and fixtures for PulseFlow tests.
"""

import h5py
import numpy as np
import pytest

from pulseflow import EventStore, ProcessingConfig
from pulseflow.core.binning import BinEdges


# 2023-05-04T10:00:00 UTC
RUN_EPOCH = 1683194400


# ============================================
# Fixtures for BinEdges / histograms
# ============================================

@pytest.fixture
def simple_edges():
    """Fixture for three unit-width bins."""
    return np.array([0.0, 1.0, 2.0, 3.0])


@pytest.fixture
def bin_edges(simple_edges):
    """Fixture for a BinEdges object."""
    return BinEdges(simple_edges)


# ============================================
# Fixtures for EventStore
# ============================================

@pytest.fixture
def scenario_store():
    """
    Two frames, three events, two detectors.

    Frame 0 (t=0) holds events on detectors 1 and 2; frame 1 (t=10) holds
    one event on detector 1.
    """
    return EventStore(
        spectrum_ids=[1, 2],
        start_epoch=0,
        end_epoch=20,
        frame_offsets=[0.0, 10.0],
        events_per_frame=[2, 1],
        event_indices=[1, 2, 1],
        event_times=[1.5, 2.5, 0.5],
        bin_edges=[0.0, 1.0, 2.0, 3.0],
        monitor_counts={1: [4, 8, 12]},
    )


@pytest.fixture
def random_store():
    """Fixture for a larger store with Poisson-distributed frame sizes."""
    np.random.seed(42)
    n_frames = 200
    events_per_frame = np.random.poisson(lam=20, size=n_frames)
    n_events = int(events_per_frame.sum())
    return EventStore(
        spectrum_ids=np.arange(1, 9),
        start_epoch=RUN_EPOCH,
        end_epoch=RUN_EPOCH + 20,
        frame_offsets=np.arange(n_frames) * 0.1,
        events_per_frame=events_per_frame,
        # id 0 marks events without a detector
        event_indices=np.random.randint(0, 9, size=n_events),
        event_times=np.random.uniform(-100.0, 20100.0, size=n_events),
        bin_edges=BinEdges.from_width(0.0, 20000.0, 500.0),
    )


@pytest.fixture
def run_epoch():
    """Unix time of 2023-05-04T10:00:00 UTC."""
    return RUN_EPOCH


# ============================================
# Synthetic NeXus run files
# ============================================

def write_run(
    path,
    start_time="2023-05-04T10:00:00",
    end_time="2023-05-04T10:01:00",
    spectrum_ids=(1, 2),
    frame_offsets=(0.0, 10.0, 20.0, 30.0, 40.0, 50.0),
    events_per_frame=(1, 1, 1, 1, 1, 1),
    event_ids=(1, 2, 1, 2, 1, 2),
    event_times=(0.5, 1.5, 2.5, 0.5, 1.5, 2.5),
    edges=(0.0, 1.0, 2.0, 3.0),
    monitors=((4, 8, 12), (1, 2, 3)),
    omit=(),
):
    """Write a minimal ISIS-style ``raw_data_1`` event file."""
    n_bins = len(edges) - 1
    with h5py.File(path, "w") as f:
        root = f.create_group("raw_data_1")
        root.attrs["NX_class"] = "NXentry"
        detector = root.create_group("detector_1")
        detector.create_dataset("spectrum_index", data=np.asarray(spectrum_ids, dtype=np.int32))
        detector.create_dataset(
            "counts", data=np.zeros((1, len(spectrum_ids), n_bins), dtype=np.int32)
        )
        root.create_dataset("raw_frames", data=np.array([len(frame_offsets)], dtype=np.int32))
        root.create_dataset("good_frames", data=np.array([len(frame_offsets)], dtype=np.int32))
        root.create_dataset("start_time", data=np.array([start_time.encode()]))
        root.create_dataset("end_time", data=np.array([end_time.encode()]))

        events = root.create_group("detector_1_events")
        events.create_dataset("event_id", data=np.asarray(event_ids, dtype=np.uint32))
        events.create_dataset("event_time_offset", data=np.asarray(event_times, dtype=np.float32))
        events.create_dataset("event_time_zero", data=np.asarray(frame_offsets, dtype=np.float64))
        root.create_group("framelog/events_log").create_dataset(
            "value", data=np.asarray(events_per_frame, dtype=np.int32)
        )

        for number, counts in enumerate(monitors, start=1):
            monitor = root.create_group(f"monitor_{number}")
            monitor.create_dataset("data", data=np.asarray(counts, dtype=np.int32).reshape(1, 1, -1))
            if number == 1:
                monitor.create_dataset("time_of_flight", data=np.asarray(edges, dtype=np.float32))

        for name in omit:
            del f[name]
    return str(path)


@pytest.fixture
def make_run(tmp_path):
    """Factory fixture writing synthetic run files into ``tmp_path``."""
    def _make(name="run.nxs", **kwargs):
        return write_run(tmp_path / name, **kwargs)
    return _make


@pytest.fixture
def two_runs(make_run):
    """
    Two consecutive one-minute runs with a frame every 10 s.

    Both runs alternate detectors 1 and 2 with events in bins 0, 1, 2 (per
    detector: frames 0, 2, 4 on detector 1 and 1, 3, 5 on detector 2).
    """
    first = make_run("run_0001.nxs")
    second = make_run(
        "run_0002.nxs",
        start_time="2023-05-04T10:01:00",
        end_time="2023-05-04T10:02:00",
    )
    return [first, second]


@pytest.fixture
def summed_config(run_epoch):
    """Three 10 s slices, propagated every 30 s."""
    return ProcessingConfig(
        window_id="cycle",
        window_start=run_epoch,
        window_duration=30.0,
        n_slices=3,
        window_delta=30.0,
    )
