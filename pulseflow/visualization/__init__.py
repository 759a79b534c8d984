"""
Visualization tools for detector histograms and slices.

Plotting functions using matplotlib and seaborn.
"""

from pulseflow.visualization.plotting import (
    plot_histogram,
    plot_detector_map,
    plot_slice_frames,
)

__all__ = [
    'plot_histogram',
    'plot_detector_map',
    'plot_slice_frames',
]
