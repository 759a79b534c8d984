"""
Visualization tools for accumulated detector histograms.

This module provides plotting functions for single time-of-flight
histograms, spectrum-vs-time-of-flight maps of a detector bank, and the
good frame totals of a slice set, using matplotlib and seaborn.
"""

from typing import Optional, Tuple, Sequence
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.figure import Figure
from matplotlib.axes import Axes
from matplotlib.colors import LogNorm, Normalize

from pulseflow.core.histogram import Histogram, DetectorHistograms
from pulseflow.core.slices import Slice


sns.set_style("whitegrid")
sns.set_context("paper")


def plot_histogram(
    histogram: Histogram,
    log_y: bool = False,
    show_uncertainty: bool = True,
    tof_range: Optional[Tuple[float, float]] = None,
    fig: Optional[Figure] = None,
    ax: Optional[Axes] = None,
    label: Optional[str] = None,
    color: Optional[str] = None,
    **kwargs
) -> Tuple[Figure, Axes]:
    """
    Plot a single time-of-flight histogram.

    Parameters
    ----------
    histogram : Histogram
        Histogram to plot.
    log_y : bool, optional
        Use logarithmic y-axis. Default is False.
    show_uncertainty : bool, optional
        Show Poisson uncertainty bands. Default is True.
    tof_range : tuple of float, optional
        (t_min, t_max) for x-axis limits. If None, use full range.
    fig : Figure, optional
        Existing figure to plot on. If None, create new figure.
    ax : Axes, optional
        Existing axes to plot on. If None, create new axes.
    label : str, optional
        Label for legend.
    color : str, optional
        Color for the plot.
    **kwargs
        Additional keyword arguments passed to matplotlib step plot.

    Returns
    -------
    fig : Figure
        Matplotlib figure.
    ax : Axes
        Matplotlib axes.

    Examples
    --------
    >>> bank = store.full_histogram()
    >>> fig, ax = plot_histogram(bank[12], label='spectrum 12')
    >>> plot_histogram(bank[13], fig=fig, ax=ax, label='spectrum 13')
    >>> ax.legend()
    """
    if fig is None or ax is None:
        fig, ax = plt.subplots(figsize=(10, 6))

    x = histogram.edges
    y = histogram.counts

    ax.step(x, np.append(y, y[-1]), where='post', label=label, color=color, **kwargs)

    if show_uncertainty:
        uncertainty = histogram.uncertainty
        ax.fill_between(
            histogram.centers, y - uncertainty, y + uncertainty,
            alpha=0.3, color=color, step='mid', linewidth=0
        )

    if log_y:
        ax.set_yscale('log')
        y_min = np.min(y[y > 0]) if np.any(y > 0) else 0.1
        ax.set_ylim(bottom=y_min * 0.5)

    if tof_range is not None:
        ax.set_xlim(tof_range)

    ax.set_xlabel(r'Time of flight ($\mu$s)', fontsize=12)
    ax.set_ylabel('Counts', fontsize=12)
    if histogram.spectrum_id is not None and label is None:
        ax.set_title(f'Spectrum {histogram.spectrum_id}', fontsize=14)
    ax.grid(True, alpha=0.3)

    fig.tight_layout()

    return fig, ax


def plot_detector_map(
    histograms: DetectorHistograms,
    spectrum_ids: Optional[Sequence[int]] = None,
    log_scale: bool = True,
    cmap: str = 'viridis',
    fig: Optional[Figure] = None,
    ax: Optional[Axes] = None,
    colorbar: bool = True,
    **kwargs
) -> Tuple[Figure, Axes]:
    """
    Plot a detector bank as a 2D map of spectrum against time of flight.

    Parameters
    ----------
    histograms : DetectorHistograms
        Bank to plot.
    spectrum_ids : sequence of int, optional
        Spectra to show, in row order. Default is every allocated spectrum.
    log_scale : bool, optional
        Use logarithmic color scale. Default is True.
    cmap : str, optional
        Matplotlib colormap name. Default is 'viridis'.
    fig : Figure, optional
        Existing figure to plot on.
    ax : Axes, optional
        Existing axes to plot on.
    colorbar : bool, optional
        Show colorbar. Default is True.
    **kwargs
        Additional keyword arguments passed to matplotlib pcolormesh.

    Returns
    -------
    fig : Figure
        Matplotlib figure.
    ax : Axes
        Matplotlib axes.
    """
    if histograms.n_spectra == 0:
        raise ValueError("Cannot plot an empty detector bank")

    if fig is None or ax is None:
        fig, ax = plt.subplots(figsize=(12, 8))

    if spectrum_ids is None:
        spectrum_ids = histograms.spectrum_ids
    data = histograms.counts_for(spectrum_ids).astype(float)

    if log_scale:
        # Avoid log(0) issues
        vmin = np.min(data[data > 0]) if np.any(data > 0) else 1e-1
        vmax = max(np.max(data), vmin * 10)
        norm = LogNorm(vmin=vmin, vmax=vmax)
        data = np.ma.masked_less_equal(data, 0)
    else:
        norm = Normalize(vmin=np.min(data), vmax=np.max(data))

    row_edges = np.arange(len(spectrum_ids) + 1)
    T, S = np.meshgrid(histograms.edges, row_edges)

    im = ax.pcolormesh(T, S, data, cmap=cmap, norm=norm, shading='flat', **kwargs)

    if colorbar:
        fig.colorbar(im, ax=ax, label='Counts')

    if len(spectrum_ids) <= 20:
        ax.set_yticks(row_edges[:-1] + 0.5)
        ax.set_yticklabels([str(s) for s in spectrum_ids])

    ax.set_xlabel(r'Time of flight ($\mu$s)', fontsize=12)
    ax.set_ylabel('Spectrum', fontsize=12)
    ax.set_title('Detector Map', fontsize=14, fontweight='bold')

    fig.tight_layout()

    return fig, ax


def plot_slice_frames(
    slices: Sequence[Slice],
    fig: Optional[Figure] = None,
    ax: Optional[Axes] = None,
    color: Optional[str] = None,
    **kwargs
) -> Tuple[Figure, Axes]:
    """
    Plot the good frames accumulated by each slice against slice start time.

    Each slice is drawn as a bar spanning its window.

    Parameters
    ----------
    slices : sequence of Slice
        Slices to plot (e.g. a SliceSet).
    fig : Figure, optional
        Existing figure to plot on.
    ax : Axes, optional
        Existing axes to plot on.
    color : str, optional
        Bar color.
    **kwargs
        Additional keyword arguments passed to matplotlib bar.

    Returns
    -------
    fig : Figure
        Matplotlib figure.
    ax : Axes
        Matplotlib axes.
    """
    if fig is None or ax is None:
        fig, ax = plt.subplots(figsize=(12, 5))

    starts = np.array([s.window.start_time for s in slices], dtype=float)
    durations = np.array([s.window.duration for s in slices], dtype=float)
    frames = np.array([s.destination.processed_good_frames for s in slices])

    # Relative to the first slice so Unix times stay readable
    t0 = starts[0] if len(starts) else 0.0
    ax.bar(starts - t0, frames, width=durations, align='edge',
           color=color, edgecolor='black', linewidth=0.5, **kwargs)

    ax.set_xlabel(f'Time since {t0:.0f} (s)', fontsize=12)
    ax.set_ylabel('Good frames', fontsize=12)
    ax.set_title('Frames per Slice', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    fig.tight_layout()

    return fig, ax
