"""
Example: Slicing Runs With the Processor

This example writes two synthetic NeXus runs, folds them into ten slices
of a one-minute cycle and plots the frames per slice.
"""

import tempfile
from pathlib import Path

import h5py
import numpy as np
import matplotlib.pyplot as plt

from pulseflow import Processor, ProcessingConfig, Pulse
from pulseflow.visualization import plot_detector_map, plot_slice_frames


def write_run(path, start_time, end_time, n_frames=3000, seed=0):
    """Write a small ISIS-style event run (50 Hz, 8 detectors)."""
    rng = np.random.default_rng(seed)
    events_per_frame = rng.poisson(3, size=n_frames)
    n_events = int(events_per_frame.sum())
    edges = np.arange(0.0, 20001.0, 200.0)
    with h5py.File(path, "w") as f:
        root = f.create_group("raw_data_1")
        det = root.create_group("detector_1")
        det.create_dataset("spectrum_index", data=np.arange(1, 9, dtype=np.int32))
        det.create_dataset("counts", data=np.zeros((1, 8, len(edges) - 1), dtype=np.int32))
        root.create_dataset("raw_frames", data=[n_frames])
        root.create_dataset("good_frames", data=[n_frames])
        root.create_dataset("start_time", data=[start_time.encode()])
        root.create_dataset("end_time", data=[end_time.encode()])
        events = root.create_group("detector_1_events")
        events.create_dataset("event_id", data=rng.integers(1, 9, size=n_events))
        events.create_dataset("event_time_offset", data=rng.gamma(4, 2500, size=n_events))
        events.create_dataset("event_time_zero", data=np.arange(n_frames) * 0.02)
        root.create_dataset("framelog/events_log/value", data=events_per_frame)
        monitor = root.create_group("monitor_1")
        monitor.create_dataset("data", data=rng.poisson(500, size=(1, 1, len(edges) - 1)))
        monitor.create_dataset("time_of_flight", data=edges)
    return str(path)


workdir = Path(tempfile.mkdtemp())
runs = [
    write_run(workdir / "run_0001.nxs", "2023-05-04T10:00:00", "2023-05-04T10:01:00", seed=1),
    write_run(workdir / "run_0002.nxs", "2023-05-04T10:01:00", "2023-05-04T10:02:00", seed=2),
]


# ============================================
# Example 1: Summed Slices
# ============================================
print("1. Summed Slices")
print("-" * 60)

config = ProcessingConfig(
    window_id="cycle",
    window_start=1683194400,
    window_duration=60.0,
    n_slices=10,
)
report = Processor(config).partition_events_summed(runs, workdir / "summed")
print(f"Wrote {len(report.written)} files from {report.frames_processed} frames")


# ============================================
# Example 2: Pulses Spanning Runs
# ============================================
print("\n2. Pulses Spanning Runs")
print("-" * 60)

pulses = [
    Pulse("early", 1683194400, 1683194430),
    Pulse("straddle", 1683194445, 1683194475, start_run="0001", end_run="0002"),
]
report = Processor(config).partition_pulses(runs, pulses, workdir / "pulses")
for path in report.written:
    print(f"  {path}")


# ============================================
# Example 3: Plotting
# ============================================
print("\n3. Plotting")
print("-" * 60)

processor = Processor(config)
slice_set = processor.prepare_slices(runs[0], workdir / "plot", replicate=False)
for store in processor.iter_sources(runs):
    processor.fold(store, slice_set)

plot_slice_frames(slice_set)
plot_detector_map(slice_set[0].destination.histograms)
plt.show()
