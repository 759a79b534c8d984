"""
Example: Working with EventStore

This example builds a synthetic frame-structured event stream and shows
windowed histogramming, masked accumulation and per-spectrum event times.
"""

import numpy as np
from pulseflow import EventStore, Window
from pulseflow.core.binning import BinEdges


# ============================================
# Example 1: Creating an EventStore
# ============================================
print("1. Creating an EventStore")
print("-" * 60)

# 50 Hz source, 10 minutes, 16 detectors
np.random.seed(42)
n_frames = 30000
start_epoch = 1683194400  # 2023-05-04T10:00:00 UTC
events_per_frame = np.random.poisson(lam=5, size=n_frames)
n_events = int(events_per_frame.sum())

store = EventStore(
    spectrum_ids=np.arange(1, 17),
    start_epoch=start_epoch,
    end_epoch=start_epoch + 600,
    frame_offsets=np.arange(n_frames) * 0.02,
    events_per_frame=events_per_frame,
    event_indices=np.random.randint(0, 17, size=n_events),
    event_times=np.random.gamma(4, 2500, size=n_events),  # microseconds
    bin_edges=BinEdges.from_width(0.0, 20000.0, 100.0),
    monitor_counts={1: np.random.poisson(1000, size=200)},
)

print(f"Created: {store}")
print(f"Duration: {store.duration} s")


# ============================================
# Example 2: Histogramming a Window
# ============================================
print("\n2. Histogramming the First Minute")
print("-" * 60)

first_minute = Window('minute', start_epoch, 60.0)
histograms, n_frames_in = store.create_histogram(first_minute, absolute=True)

print(f"Frames in window: {n_frames_in}")
print(f"Total counts: {histograms.total_counts()}")
print(f"Counts in spectrum 5: {histograms[5].total}")


# ============================================
# Example 3: Accumulating Into a Destination
# ============================================
print("\n3. Accumulating Two Windows Into One Destination")
print("-" * 60)

destination = EventStore.from_layout(store.layout)
store.bin_interval(Window('a', start_epoch, 30.0), destination, absolute=True)
store.bin_interval(Window('b', start_epoch + 300, 30.0), destination, absolute=True)
store.add_monitors(60.0 / store.duration, destination)

print(f"Good frames accumulated: {destination.processed_good_frames}")
print(f"Monitor 1 total: {destination.monitor_counts[1].sum()}")


# ============================================
# Example 4: Masked Accumulation
# ============================================
print("\n4. Masked Accumulation")
print("-" * 60)

masked, _ = store.create_histogram((0.0, 600.0), mask=[1, 2, 3])
print(f"Spectra in mask: {masked.spectrum_ids}")
print(f"Counts: {masked.total_counts()}")


# ============================================
# Example 5: Event Times per Spectrum
# ============================================
print("\n5. Event Times per Spectrum")
print("-" * 60)

partitions = store.partitions_with_relative_times(1, 4)
for spectrum_id, times in partitions.items():
    print(f"Spectrum {spectrum_id}: {len(times)} events, last at {times[-1]:.3f} s")
