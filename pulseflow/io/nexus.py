"""
NeXus (HDF5) reading and writing of ISIS-style ``raw_data_1`` event files.

This module provides the NeXusFile class, which loads EventStores from run
files, replicates a run file as the template of an output file, and writes
accumulated histograms, monitor spectra and good frame totals back.
"""

from typing import Optional, Dict, List, Iterable, Sequence
import logging
import posixpath
import numpy as np
import numpy.typing as npt
import h5py

from pulseflow.core.binning import BinEdges
from pulseflow.core.event_store import EventStore, TemplateLayout
from pulseflow.core.histogram import DetectorHistograms
from pulseflow.io.timestamps import parse_epoch
from pulseflow.utils.exceptions import BinningError, LoadError, WriteError

logger = logging.getLogger(__name__)


ROOT = "raw_data_1"
SPECTRUM_INDEX = "raw_data_1/detector_1/spectrum_index"
DETECTOR_COUNTS = "raw_data_1/detector_1/counts"
RAW_FRAMES = "raw_data_1/raw_frames"
GOOD_FRAMES = "raw_data_1/good_frames"
START_TIME = "raw_data_1/start_time"
END_TIME = "raw_data_1/end_time"
EVENT_ID = "raw_data_1/detector_1_events/event_id"
EVENT_TIME_OFFSET = "raw_data_1/detector_1_events/event_time_offset"
EVENT_TIME_ZERO = "raw_data_1/detector_1_events/event_time_zero"
EVENTS_PER_FRAME = "raw_data_1/framelog/events_log/value"
TIME_OF_FLIGHT = "raw_data_1/monitor_1/time_of_flight"

# Groups copied from the template run into every output file
DEFAULT_TEMPLATE_PATHS = [
    "raw_data_1/detector_1",
    "raw_data_1/raw_frames",
    "raw_data_1/good_frames",
    "raw_data_1/start_time",
    "raw_data_1/end_time",
]


def monitor_group(number: int) -> str:
    """Path of the group holding monitor ``number``."""
    return f"{ROOT}/monitor_{number}"


def _get(node: h5py.Group, path: str):
    """Walk ``path`` from ``node``; None if any component is missing."""
    for part in path.split("/"):
        if not isinstance(node, h5py.Group) or part not in node:
            return None
        node = node[part]
    return node


def _read_string(dataset: h5py.Dataset) -> str:
    value = dataset[()]
    if isinstance(value, np.ndarray):
        value = value.ravel()[0]
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value)


def _replace_dataset(group: h5py.Group, name: str, data: np.ndarray) -> None:
    """Overwrite a dataset in place if shapes match, otherwise recreate it."""
    if name in group:
        existing = group[name]
        if isinstance(existing, h5py.Dataset) and existing.shape == data.shape:
            existing[...] = data
            return
        del group[name]
    group.create_dataset(name, data=data)


class NeXusFile:
    """
    A NeXus run file on disk.

    Parameters
    ----------
    path : str
        Path to the HDF5 file.

    Examples
    --------
    >>> nxs = NeXusFile('run_1234.nxs')
    >>> store = nxs.load(advanced=True)
    >>> layout = nxs.load_template_layout()

    >>> # Replicate the run as an output file and fill it
    >>> dest = nxs.create_destination('out/slice-001.nxs')
    >>> store.bin_interval((0.0, 600.0), dest)
    >>> NeXusFile('out/slice-001.nxs').write_destination(dest)
    """

    def __init__(self, path: str):
        self.path = str(path)

    def __repr__(self) -> str:
        return f"NeXusFile({self.path!r})"

    # ========================================
    # Reading
    # ========================================

    def _open_for_reading(self) -> h5py.File:
        try:
            return h5py.File(self.path, "r")
        except OSError as e:
            raise LoadError(f"Cannot open file: {e}", path=self.path) from e

    def _dataset(self, f: h5py.File, name: str) -> h5py.Dataset:
        dataset = _get(f, name)
        if not isinstance(dataset, h5py.Dataset):
            raise LoadError(f"Required table '{name}' not found", path=self.path, table=name)
        return dataset

    def _array(self, f: h5py.File, name: str, dtype) -> np.ndarray:
        try:
            return np.asarray(self._dataset(f, name)[()], dtype=dtype).ravel()
        except (TypeError, ValueError) as e:
            raise LoadError(f"Malformed table '{name}': {e}", path=self.path, table=name) from e

    def _first(self, f: h5py.File, name: str) -> int:
        values = self._array(f, name, np.int64)
        if len(values) == 0:
            raise LoadError(f"Table '{name}' is empty", path=self.path, table=name)
        return int(values[0])

    def _epoch(self, f: h5py.File, name: str) -> int:
        try:
            return parse_epoch(_read_string(self._dataset(f, name)))
        except ValueError as e:
            raise LoadError(str(e), path=self.path, table=name) from e

    def _bin_edges(self, f: h5py.File) -> BinEdges:
        try:
            return BinEdges(self._array(f, TIME_OF_FLIGHT, float))
        except BinningError as e:
            raise LoadError(str(e), path=self.path, table=TIME_OF_FLIGHT) from e

    def _monitors(self, f: h5py.File) -> Dict[int, np.ndarray]:
        """Read monitors 1..N, stopping at the first missing monitor number."""
        monitors = {}
        number = 1
        while True:
            dataset = _get(f, f"{monitor_group(number)}/data")
            if not isinstance(dataset, h5py.Dataset):
                break
            monitors[number] = np.asarray(dataset[()], dtype=np.int64).ravel()
            number += 1
        return monitors

    def load(self, advanced: bool = False) -> EventStore:
        """
        Load the run into an EventStore.

        Parameters
        ----------
        advanced : bool, optional
            Also load event data, frame structure, bin edges and monitors.
            Default is False.

        Returns
        -------
        EventStore
            The loaded store.

        Raises
        ------
        LoadError
            If the file cannot be opened or a required table is missing
            or malformed.
        """
        logger.info("Loading %s", self.path)
        with self._open_for_reading() as f:
            spectrum_ids = self._array(f, SPECTRUM_INDEX, np.int64)
            raw_frames = self._first(f, RAW_FRAMES)
            good_frames = self._first(f, GOOD_FRAMES)
            start_epoch = self._epoch(f, START_TIME)
            end_epoch = self._epoch(f, END_TIME)

            event_data = {}
            if advanced:
                event_data = dict(
                    event_indices=self._array(f, EVENT_ID, np.int64),
                    event_times=self._array(f, EVENT_TIME_OFFSET, float),
                    events_per_frame=self._array(f, EVENTS_PER_FRAME, np.int64),
                    frame_offsets=self._array(f, EVENT_TIME_ZERO, float),
                    bin_edges=self._bin_edges(f),
                    monitor_counts=self._monitors(f),
                )

        store = EventStore(
            spectrum_ids=spectrum_ids,
            start_epoch=start_epoch,
            end_epoch=end_epoch,
            raw_frames=raw_frames,
            good_frames=good_frames,
            path=self.path,
            **event_data,
        )
        logger.info(
            "... file '%s' has %d goodframes and %d events",
            self.path, store.good_frames, store.n_events,
        )
        return store

    def load_template_layout(self) -> TemplateLayout:
        """
        Read the spectra, bin edges and monitor sizes of the run.

        Raises
        ------
        LoadError
            If a required table is missing or malformed.
        """
        with self._open_for_reading() as f:
            spectrum_ids = self._array(f, SPECTRUM_INDEX, np.int64)
            logger.debug("... got spectra.")
            bin_edges = self._bin_edges(f)
            logger.debug("... got ranges.")
            monitor_layout = {
                number: len(counts) for number, counts in self._monitors(f).items()
            }
        return TemplateLayout(spectrum_ids, bin_edges, monitor_layout)

    # ========================================
    # Templating
    # ========================================

    def copy_subtree(self, destination: str, paths: Iterable[str]) -> List[str]:
        """
        Copy groups/datasets of this file into a new destination file.

        The destination is created (truncated if it exists). Attributes of
        intermediate groups are copied along.

        Parameters
        ----------
        destination : str
            Output file path.
        paths : iterable of str
            Paths to copy.

        Returns
        -------
        list of str
            Paths that were not present in this file and so were skipped.

        Raises
        ------
        WriteError
            If the destination cannot be created or written.
        """
        missing = []
        try:
            with self._open_for_reading() as src, h5py.File(destination, "w") as dst:
                for path in paths:
                    path = path.strip("/")
                    if _get(src, path) is None:
                        missing.append(path)
                        continue
                    parent_path = posixpath.dirname(path)
                    parent = dst.require_group(parent_path) if parent_path else dst
                    if parent_path:
                        self._copy_group_attrs(src, dst, parent_path)
                    if posixpath.basename(path) not in parent:
                        src.copy(src[path], parent, name=posixpath.basename(path))
        except (OSError, ValueError, KeyError) as e:
            raise WriteError(f"Cannot copy template from {self.path}: {e}", path=destination) from e
        return missing

    @staticmethod
    def _copy_group_attrs(src: h5py.File, dst: h5py.File, group_path: str) -> None:
        prefix = ""
        for part in group_path.split("/"):
            prefix = f"{prefix}/{part}" if prefix else part
            for key, value in src[prefix].attrs.items():
                dst[prefix].attrs[key] = value

    def create_destination(
        self,
        output_path: str,
        extra_paths: Optional[Sequence[str]] = None,
    ) -> EventStore:
        """
        Use this run as the template of an output file.

        Copies the detector, frame count, run time and monitor groups (plus
        any ``extra_paths``) into ``output_path`` and returns an empty
        destination EventStore with the run's histogram layout.

        Parameters
        ----------
        output_path : str
            Output file to create.
        extra_paths : sequence of str or None, optional
            Additional paths to copy. Paths absent from the template are
            skipped with a warning.

        Returns
        -------
        EventStore
            Destination store whose ``path`` is ``output_path``.

        Raises
        ------
        LoadError
            If the template lacks a table required for the layout or output.
        WriteError
            If the output file cannot be created.
        """
        layout = self.load_template_layout()
        self.replicate(output_path, layout, extra_paths)
        return EventStore.from_layout(layout, path=output_path, metadata={"template": self.path})

    def replicate(
        self,
        output_path: str,
        layout: TemplateLayout,
        extra_paths: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Create ``output_path`` as a copy of this run's output-relevant groups.

        Raises
        ------
        LoadError
            If a group needed by the output is missing from this run.
        WriteError
            If the output file cannot be created.
        """
        required = DEFAULT_TEMPLATE_PATHS + [monitor_group(n) for n in layout.monitor_layout]
        extras = [p for p in (extra_paths or []) if p.strip("/") not in required]

        logger.info("Copying source NeXus file %s to template %s", self.path, output_path)
        missing = self.copy_subtree(output_path, required + extras)
        for path in missing:
            if path in required:
                raise LoadError(f"Required table '{path}' not found", path=self.path, table=path)
            logger.warning("Template path '%s' not found in %s; skipped", path, self.path)

    # ========================================
    # Writing
    # ========================================

    def _open_for_writing(self, mode: str = "r+") -> h5py.File:
        try:
            return h5py.File(self.path, mode)
        except OSError as e:
            raise WriteError(f"Cannot open file for writing: {e}", path=self.path) from e

    @staticmethod
    def _write_counts(f: h5py.File, spectrum_ids: npt.ArrayLike, histograms: DetectorHistograms) -> None:
        counts = histograms.counts_for(spectrum_ids).astype(np.int32)
        group = f.require_group(posixpath.dirname(DETECTOR_COUNTS))
        _replace_dataset(group, posixpath.basename(DETECTOR_COUNTS), counts[np.newaxis, :, :])

    @staticmethod
    def _write_monitors(f: h5py.File, monitor_counts: Dict[int, np.ndarray]) -> None:
        for number, counts in monitor_counts.items():
            group = f.require_group(monitor_group(number))
            data = np.asarray(counts, dtype=np.int32).reshape(1, 1, -1)
            _replace_dataset(group, "data", data)

    @staticmethod
    def _write_scalar(f: h5py.File, path: str, value: int) -> None:
        group = f.require_group(posixpath.dirname(path))
        _replace_dataset(group, posixpath.basename(path), np.array([value], dtype=np.int32))

    def _guarded(self, action, *args) -> None:
        with self._open_for_writing() as f:
            try:
                action(f, *args)
            except (OSError, ValueError, TypeError, KeyError) as e:
                raise WriteError(str(e), path=self.path) from e

    def write_counts(self, spectrum_ids: npt.ArrayLike, histograms: DetectorHistograms) -> None:
        """Write detector histograms as ``(1, n_spectra, n_bins)`` counts."""
        self._guarded(self._write_counts, spectrum_ids, histograms)

    def write_monitors(self, monitor_counts: Dict[int, np.ndarray]) -> None:
        """Write monitor spectra as ``(1, 1, n_bins)`` data."""
        self._guarded(self._write_monitors, monitor_counts)

    def write_good_frames(self, count: int) -> None:
        """Write the good frame total."""
        self._guarded(self._write_scalar, GOOD_FRAMES, count)

    def write_destination(self, store: EventStore) -> None:
        """
        Write a destination store's counts, monitors and good frames.

        Raises
        ------
        WriteError
            If any part of the write fails.
        """
        if not store.is_destination:
            raise WriteError("Store has no histograms to write", path=self.path)

        def _write_all(f):
            self._write_counts(f, store.spectrum_ids, store.histograms)
            self._write_monitors(f, store.monitor_counts)
            self._write_scalar(f, GOOD_FRAMES, store.processed_good_frames)

        self._guarded(_write_all)
        logger.info(
            "Wrote %s (%d good frames, %d counts)",
            self.path, store.processed_good_frames, store.histograms.total_counts(),
        )

    def write_sequence(self, key: str, values: npt.ArrayLike) -> None:
        """Write a 1D float sequence as dataset ``key`` (file created if needed)."""
        with self._open_for_writing("a") as f:
            try:
                _replace_dataset(f, str(key), np.asarray(values, dtype=np.float64))
            except (OSError, ValueError, TypeError) as e:
                raise WriteError(str(e), path=self.path) from e

    def write_partitions(self, partitions: Dict[int, np.ndarray]) -> None:
        """Write each spectrum's event times as a dataset named by spectrum id, replacing the file."""
        with self._open_for_writing("w") as f:
            try:
                for spectrum_id, times in partitions.items():
                    f.create_dataset(str(spectrum_id), data=np.asarray(times, dtype=np.float64))
            except (OSError, ValueError, TypeError) as e:
                raise WriteError(str(e), path=self.path) from e
